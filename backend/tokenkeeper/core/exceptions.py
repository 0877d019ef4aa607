"""Custom exception classes for the application"""

from typing import Optional, Dict, Any


class BaseAPIException(Exception):
    """Base exception for all API errors"""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


# Authentication Errors
class AuthenticationError(BaseAPIException):
    """Base authentication error"""
    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=401, details=details)


class InvalidCredentialsError(AuthenticationError):
    """Invalid identifier or password"""
    def __init__(self, remaining_attempts: Optional[int] = None):
        details = {"remaining_attempts": remaining_attempts} if remaining_attempts is not None else None
        super().__init__("Invalid credentials", details=details)


class DeviceMismatchError(AuthenticationError):
    """Login presents a device id whose active session belongs to another client"""
    def __init__(self):
        super().__init__("Device does not match its active session", details={"reason": "device_inconsistency"})


class TokenExpiredError(AuthenticationError):
    """JWT token has expired"""
    def __init__(self, message: str = "Token has expired"):
        super().__init__(message)


class MalformedTokenError(AuthenticationError):
    """Signature, issuer, audience, algorithm or required claims did not verify"""
    def __init__(self, message: str = "Invalid token"):
        super().__init__(message)


class WrongTokenTypeError(AuthenticationError):
    """Token verified but carries the wrong ``type`` claim"""
    def __init__(self, expected: str):
        super().__init__(f"Expected a {expected} token", details={"expected_type": expected})


class TokenNotFoundError(AuthenticationError):
    """No refresh token record exists for the presented jti"""
    def __init__(self):
        super().__init__("Refresh token not recognized")


class TokenRevokedError(AuthenticationError):
    """Refresh token record is revoked or expired"""
    def __init__(self):
        super().__init__("Refresh token has been revoked")


class TokenReuseDetectedError(AuthenticationError):
    """
    An already consumed refresh token was presented again.

    Raised after every session on the device has been revoked; clients must
    perform a full logout.
    """
    def __init__(self, revoked_count: int = 0):
        super().__init__(
            "Token reuse detected - all sessions on this device were revoked",
            details={"reason": "token_reuse", "revoked_sessions": revoked_count},
        )
        self.revoked_count = revoked_count


# Authorization Errors
class UserInactiveError(BaseAPIException):
    """User is disabled or soft-deleted"""
    def __init__(self):
        super().__init__("User account is inactive", status_code=403)


class RateLimitedError(BaseAPIException):
    """Too many failed authentication attempts"""
    def __init__(self, retry_after: int, message: str = "Too many failed login attempts. Please try again later."):
        super().__init__(message, status_code=429, details={"retry_after": retry_after})
        self.retry_after = retry_after


# Resource Errors
class DuplicateUserError(BaseAPIException):
    """User already exists"""
    def __init__(self, email: str):
        super().__init__(f"User '{email}' already exists", status_code=409)


# System Errors
class ConfigurationError(BaseAPIException):
    """Signing key material is missing or unusable"""
    def __init__(self, message: str = "Signing key material is not configured"):
        super().__init__(message, status_code=500)


class PersistenceError(BaseAPIException):
    """Token or login attempt store is unavailable"""
    def __init__(self, message: str = "Token store unavailable"):
        super().__init__(message, status_code=503)
