"""Pydantic schemas for API validation"""

from tokenkeeper.schemas.user import UserCreate, UserResponse, UserRole
from tokenkeeper.schemas.auth import (
    LoginRequest,
    RefreshTokenRequest,
    LogoutRequest,
    TokenResponse,
    SessionResponse,
    SessionStatsResponse,
    SecurityEventResponse,
    RevocationResponse,
)

__all__ = [
    "UserCreate", "UserResponse", "UserRole",
    "LoginRequest", "RefreshTokenRequest", "LogoutRequest", "TokenResponse",
    "SessionResponse", "SessionStatsResponse", "SecurityEventResponse", "RevocationResponse",
]
