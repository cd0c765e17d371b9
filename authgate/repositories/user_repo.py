"""Data access helpers for user credential records."""
from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from authgate.models.user import User

__all__ = ["UserRepository", "normalize_email"]


def normalize_email(email: str) -> str:
    """Case-normalise an email address for storage and lookup."""
    return email.strip().lower()


class UserRepository:
    """Thin wrapper around database access for users."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def get_by_id(self, user_id: str) -> User | None:
        return self.session.get(User, user_id)

    def get_by_email(self, email: str) -> User | None:
        result = self.session.execute(select(User).where(User.email == normalize_email(email)))
        return result.scalars().first()

    def create(self, *, email: str, password_hash: str, name: str) -> User:
        """Insert a new user and return the persisted ORM instance."""
        user = User(
            email=normalize_email(email),
            password_hash=password_hash,
            name=name,
            email_verified=False,
        )
        self.session.add(user)
        self.session.flush()
        return user
