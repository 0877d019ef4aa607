"""Security utilities - JWT codec, password hashing"""

from calendar import timegm
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, Tuple
import hashlib
import secrets

from jose import ExpiredSignatureError, JWTError, jwt
import bcrypt

from tokenkeeper.config import settings
from tokenkeeper.core import clock
from tokenkeeper.core.exceptions import MalformedTokenError, TokenExpiredError, WrongTokenTypeError
from tokenkeeper.core.keys import get_key_material

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against its hash

    Args:
        plain_password: Plain text password
        hashed_password: Hashed password

    Returns:
        bool: True if password matches
    """
    return bcrypt.checkpw(
        plain_password.encode('utf-8'),
        hashed_password.encode('utf-8')
    )


def get_password_hash(password: str) -> str:
    """
    Hash a password using bcrypt

    Args:
        password: Plain text password

    Returns:
        str: Hashed password
    """
    return bcrypt.hashpw(
        password.encode('utf-8'),
        bcrypt.gensalt()
    ).decode('utf-8')


def generate_jti() -> str:
    """Unique token id"""
    return secrets.token_urlsafe(32)


def hash_token(token: str) -> str:
    """SHA-256 digest of a signed token, stored instead of the raw value."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _to_timestamp(dt: datetime) -> int:
    return timegm(dt.utctimetuple())


def _from_timestamp(value: Any) -> datetime:
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class AccessTokenClaims:
    """Claims carried by an access token."""

    user_id: int
    email: str
    role: str
    jti: str
    login_method: str
    issued_at: datetime
    expires_at: datetime
    device_id: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "AccessTokenClaims":
        try:
            user_id = int(payload["userId"])
            if str(user_id) != payload["sub"]:
                raise ValueError("subject mismatch")
            return cls(
                user_id=user_id,
                email=str(payload["email"]),
                role=str(payload["role"]),
                jti=str(payload["jti"]),
                login_method=str(payload.get("loginMethod") or "email"),
                issued_at=_from_timestamp(payload["iat"]),
                expires_at=_from_timestamp(payload["exp"]),
                device_id=payload.get("deviceId"),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise MalformedTokenError("Access token claims are malformed") from exc


@dataclass(frozen=True)
class RefreshTokenClaims:
    """Claims carried by a refresh token."""

    user_id: int
    device_id: str
    jti: str
    issued_at: datetime
    expires_at: datetime

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "RefreshTokenClaims":
        try:
            user_id = int(payload["userId"])
            if str(user_id) != payload["sub"]:
                raise ValueError("subject mismatch")
            device_id = payload["deviceId"]
            if not device_id:
                raise ValueError("missing device")
            return cls(
                user_id=user_id,
                device_id=str(device_id),
                jti=str(payload["jti"]),
                issued_at=_from_timestamp(payload["iat"]),
                expires_at=_from_timestamp(payload["exp"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise MalformedTokenError("Refresh token claims are malformed") from exc


def _encode(payload: Dict[str, Any]) -> str:
    keys = get_key_material()
    payload.update({"iss": settings.JWT_ISSUER, "aud": settings.JWT_AUDIENCE})
    return jwt.encode(payload, keys.private_key, algorithm=settings.JWT_ALGORITHM)


def _issue_window(issued_at: Optional[datetime], lifetime: timedelta) -> Tuple[datetime, datetime]:
    # JWT timestamps have second precision; keep the record and the claims identical.
    issued_at = (issued_at or clock.utcnow()).replace(microsecond=0)
    return issued_at, issued_at + lifetime


def create_access_token(
    *,
    user_id: int,
    email: str,
    role: str,
    device_id: Optional[str] = None,
    login_method: str = "email",
    issued_at: Optional[datetime] = None,
    expires_delta: Optional[timedelta] = None,
) -> Tuple[str, AccessTokenClaims]:
    """
    Create an RS256 access token

    Returns:
        The encoded token and the claims it carries
    """
    lifetime = expires_delta or settings.access_token_lifetime
    iat, exp = _issue_window(issued_at, lifetime)
    claims = AccessTokenClaims(
        user_id=user_id,
        email=email or "",
        role=role,
        jti=generate_jti(),
        login_method=login_method,
        issued_at=iat,
        expires_at=exp,
        device_id=device_id,
    )
    payload: Dict[str, Any] = {
        "sub": str(user_id),
        "userId": user_id,
        "email": claims.email,
        "role": role,
        "type": ACCESS_TOKEN_TYPE,
        "loginMethod": login_method,
        "jti": claims.jti,
        "iat": _to_timestamp(iat),
        "exp": _to_timestamp(exp),
    }
    if device_id:
        payload["deviceId"] = device_id
    return _encode(payload), claims


def create_refresh_token(
    *,
    user_id: int,
    device_id: str,
    issued_at: Optional[datetime] = None,
    expires_delta: Optional[timedelta] = None,
) -> Tuple[str, RefreshTokenClaims]:
    """
    Create an RS256 refresh token bound to a device

    Returns:
        The encoded token and the claims it carries
    """
    lifetime = expires_delta or settings.refresh_token_lifetime
    iat, exp = _issue_window(issued_at, lifetime)
    claims = RefreshTokenClaims(
        user_id=user_id,
        device_id=device_id,
        jti=generate_jti(),
        issued_at=iat,
        expires_at=exp,
    )
    payload = {
        "sub": str(user_id),
        "userId": user_id,
        "deviceId": device_id,
        "type": REFRESH_TOKEN_TYPE,
        "jti": claims.jti,
        "iat": _to_timestamp(iat),
        "exp": _to_timestamp(exp),
    }
    return _encode(payload), claims


def decode_token(token: str, expected_type: str, verify_exp: bool = True) -> Dict[str, Any]:
    """
    Decode and verify a token

    Args:
        token: JWT string
        expected_type: Required value of the ``type`` claim
        verify_exp: Reject expired tokens

    Returns:
        Dict: Verified payload

    Raises:
        TokenExpiredError: Signature valid but token expired
        MalformedTokenError: Signature, issuer, audience, algorithm or required claims invalid
        WrongTokenTypeError: ``type`` claim differs from ``expected_type``
    """
    keys = get_key_material()
    try:
        payload = jwt.decode(
            token,
            keys.public_key,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
            issuer=settings.JWT_ISSUER,
            options={
                "verify_exp": verify_exp,
                "require_exp": verify_exp,
                "require_iat": True,
                "require_jti": True,
                "require_sub": True,
            },
        )
    except ExpiredSignatureError as exc:
        raise TokenExpiredError() from exc
    except JWTError as exc:
        raise MalformedTokenError() from exc

    if payload.get("type") != expected_type:
        raise WrongTokenTypeError(expected_type)
    return payload


def decode_access_token(token: str) -> AccessTokenClaims:
    """Stateless access token verification"""
    return AccessTokenClaims.from_payload(decode_token(token, ACCESS_TOKEN_TYPE))


def decode_refresh_token(token: str, verify_exp: bool = True) -> RefreshTokenClaims:
    """Stateless refresh token verification"""
    return RefreshTokenClaims.from_payload(decode_token(token, REFRESH_TOKEN_TYPE, verify_exp=verify_exp))
