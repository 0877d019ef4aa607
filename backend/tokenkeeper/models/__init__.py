"""Database models"""

from tokenkeeper.models.user import User
from tokenkeeper.models.security import RefreshToken, LoginAttempt
from tokenkeeper.models.audit import AuditEvent

__all__ = ["User", "RefreshToken", "LoginAttempt", "AuditEvent"]
