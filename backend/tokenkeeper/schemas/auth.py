"""Token lifecycle schemas"""

from pydantic import BaseModel, Field
from typing import Any, Dict, Optional
from datetime import datetime

from tokenkeeper.schemas.user import UserResponse


class LoginRequest(BaseModel):
    """Credentials plus the client device"""
    identifier: str = Field(..., min_length=3, max_length=255, description="Email or phone")
    password: str = Field(..., min_length=1)
    device_id: Optional[str] = Field(None, min_length=1, max_length=128)
    device_name: Optional[str] = Field(None, max_length=255)


class RefreshTokenRequest(BaseModel):
    """Refresh token exchange"""
    refresh_token: str = Field(..., min_length=10)


class LogoutRequest(BaseModel):
    """Logout of one refresh token, or of the current device when omitted"""
    refresh_token: Optional[str] = None


class TokenResponse(BaseModel):
    """JWT token pair response"""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    device_id: str
    user: Optional[UserResponse] = None


class SessionResponse(BaseModel):
    """Active refresh token session"""
    device_id: str
    device_name: Optional[str]
    ip_address: Optional[str]
    user_agent: Optional[str]
    login_method: str
    issued_at: datetime
    expires_at: datetime
    current: bool = False

    class Config:
        from_attributes = True


class SessionStatsResponse(BaseModel):
    """Refresh token counts for the current user"""
    total: int
    expired: int
    revoked: int
    active: int
    devices: int


class SecurityEventResponse(BaseModel):
    """Audit trail entry visible to its user"""
    action: str
    target_type: Optional[str]
    target_id: Optional[str]
    ip_address: Optional[str]
    details: Dict[str, Any]
    created_at: datetime

    class Config:
        from_attributes = True


class RevocationResponse(BaseModel):
    """Outcome of a logout or revocation"""
    success: bool = True
    message: str
    revoked_sessions: int = 0
