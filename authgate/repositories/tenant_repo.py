"""Data access helpers for tenants and memberships."""
from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from authgate.models.tenant import Membership, Tenant

__all__ = ["TenantRepository"]


class TenantRepository:
    """Read access to tenant context for a user."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def get_active_by_slug(self, slug: str) -> Tenant | None:
        result = self.session.execute(
            select(Tenant).where(Tenant.slug == slug, Tenant.is_active.is_(True))
        )
        return result.scalars().first()

    def get_membership(self, tenant_id: str, user_id: str) -> Membership | None:
        result = self.session.execute(
            select(Membership).where(
                Membership.tenant_id == tenant_id,
                Membership.user_id == user_id,
            )
        )
        return result.scalars().first()

    def list_active_for_user(self, user_id: str) -> list[tuple[Tenant, Membership]]:
        """Return ``(tenant, membership)`` pairs for every active tenant of a user."""
        result = self.session.execute(
            select(Tenant, Membership)
            .join(Membership, Membership.tenant_id == Tenant.id)
            .where(Membership.user_id == user_id, Tenant.is_active.is_(True))
            .order_by(Membership.created_at)
        )
        return [(tenant, membership) for tenant, membership in result.all()]
