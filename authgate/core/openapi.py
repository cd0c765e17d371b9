"""OpenAPI metadata and customization utilities.

Provides a helper to enrich the generated OpenAPI schema with:
- Tags metadata
- Session cookie security scheme, applied to routes that require a session

This keeps documentation concerns decoupled from the app factory.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

from authgate.core.config import settings

SESSION_PATHS = ("/auth/me", "/auth/resend-verification")


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to add metadata and security.

    - Injects components.securitySchemes for the session cookie
    - Marks session-protected operations with that scheme
    - Adds tags metadata if not present
    """

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        schema = original_openapi()

        # Components / security scheme
        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes.setdefault(
            "SessionCookie",
            {
                "type": "apiKey",
                "in": "cookie",
                "name": settings.auth.session_cookie_name,
                "description": "HttpOnly session cookie set by /auth/login and /auth/register.",
            },
        )

        # Tags metadata
        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        desired_tags = [
            {
                "name": "Auth",
                "description": "Registration, sessions, email verification and password recovery.",
            },
            {
                "name": "Health",
                "description": "Liveness and readiness checks.",
            },
        ]
        for tag in desired_tags:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        paths = schema.get("paths", {})
        for path in SESSION_PATHS:
            for method_obj in paths.get(path, {}).values():
                if isinstance(method_obj, dict):
                    method_obj["security"] = [{"SessionCookie": []}]

        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
