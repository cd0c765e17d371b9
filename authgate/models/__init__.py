"""ORM models."""

from authgate.models.session import UserSession
from authgate.models.tenant import Membership, Tenant
from authgate.models.user import User

__all__ = ["Membership", "Tenant", "User", "UserSession"]
