"""Data access helpers for server-side sessions."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from authgate.models.session import UserSession

__all__ = ["SessionRepository"]


class SessionRepository:
    """Thin wrapper around database access for sessions."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def get_by_token_hash(self, token_hash: str) -> UserSession | None:
        result = self.session.execute(
            select(UserSession).where(UserSession.token_hash == token_hash)
        )
        return result.scalars().first()

    def list_for_user(self, user_id: str) -> list[UserSession]:
        result = self.session.execute(select(UserSession).where(UserSession.user_id == user_id))
        return list(result.scalars())

    def create(self, *, user_id: str, token_hash: str, expires_at: datetime) -> UserSession:
        record = UserSession(user_id=user_id, token_hash=token_hash, expires_at=expires_at)
        self.session.add(record)
        self.session.flush()
        return record

    def delete(self, record: UserSession) -> None:
        self.session.delete(record)
        self.session.flush()

    def delete_by_token_hash(self, token_hash: str) -> int:
        result = self.session.execute(
            delete(UserSession).where(UserSession.token_hash == token_hash)
        )
        return result.rowcount or 0

    def delete_expired_for_user(self, user_id: str, now: datetime) -> int:
        result = self.session.execute(
            delete(UserSession).where(
                UserSession.user_id == user_id,
                UserSession.expires_at < now,
            )
        )
        return result.rowcount or 0

    def delete_all_for_user(self, user_id: str) -> int:
        result = self.session.execute(delete(UserSession).where(UserSession.user_id == user_id))
        return result.rowcount or 0
