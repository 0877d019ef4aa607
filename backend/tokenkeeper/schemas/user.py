"""User schemas"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime
from enum import Enum


class UserRole(str, Enum):
    """User role enumeration"""
    ADMIN = "admin"
    MEMBER = "member"


class UserCreate(BaseModel):
    """User creation schema"""
    email: str = Field(..., min_length=3, max_length=255)
    phone: Optional[str] = Field(None, min_length=5, max_length=32)
    password: str = Field(..., min_length=8)
    role: UserRole = UserRole.MEMBER

    @field_validator('email')
    @classmethod
    def email_normalized(cls, v):
        """Lower-case and require a single @"""
        v = v.strip().lower()
        if v.count('@') != 1 or v.startswith('@') or v.endswith('@'):
            raise ValueError('Invalid email address')
        return v


class UserResponse(BaseModel):
    """User response schema"""
    id: int
    email: str
    role: str
    is_active: bool
    created_at: Optional[datetime]
    last_login: Optional[datetime]

    class Config:
        from_attributes = True
