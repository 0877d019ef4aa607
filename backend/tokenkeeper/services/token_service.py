"""Token issuance, verification and refresh token rotation."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple
import logging
import secrets

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tokenkeeper.core import clock
from tokenkeeper.core.exceptions import (
    PersistenceError,
    TokenExpiredError,
    TokenNotFoundError,
    TokenReuseDetectedError,
    TokenRevokedError,
    UserInactiveError,
)
from tokenkeeper.core.metrics import TOKEN_REUSE, TOKEN_ROTATIONS
from tokenkeeper.core.security import (
    AccessTokenClaims,
    RefreshTokenClaims,
    create_access_token,
    create_refresh_token,
    decode_access_token,
    decode_refresh_token,
    hash_token,
)
from tokenkeeper.models.security import RefreshToken
from tokenkeeper.models.user import User
from tokenkeeper.services.audit_service import TOKEN_REUSE_DETECTED, audit_service
from tokenkeeper.services.device_limiter import device_limiter
from tokenkeeper.services.revocation_service import revocation_service
from tokenkeeper.services.token_store import refresh_token_store, user_lookup

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssuedTokens:
    """Access/refresh pair handed to the client."""

    user_id: int
    access_token: str
    refresh_token: str
    expires_in: int
    device_id: str
    refresh_jti: str
    refresh_expires_at: datetime


class TokenService:
    """Manage the refresh token lifecycle."""

    @staticmethod
    def _naive_utc(dt: datetime) -> datetime:
        return dt.replace(tzinfo=None) if dt and dt.tzinfo else dt

    @staticmethod
    def _mint_pair(
        user: User,
        *,
        device_id: str,
        device_name: Optional[str],
        user_agent: Optional[str],
        ip_address: Optional[str],
        login_method: str,
        now: datetime,
    ) -> Tuple[IssuedTokens, RefreshToken]:
        access_token, access_claims = create_access_token(
            user_id=user.id,
            email=user.email,
            role=user.role,
            device_id=device_id,
            login_method=login_method,
            issued_at=now,
        )
        refresh_token, refresh_claims = create_refresh_token(
            user_id=user.id,
            device_id=device_id,
            issued_at=now,
        )
        record = RefreshToken(
            token_jti=refresh_claims.jti,
            token_hash=hash_token(refresh_token),
            user_id=user.id,
            device_id=device_id,
            device_name=device_name,
            user_agent=user_agent,
            ip_address=ip_address,
            login_method=login_method,
            issued_at=refresh_claims.issued_at,
            expires_at=refresh_claims.expires_at,
            is_revoked=False,
            replaced_by_jti=None,
        )
        issued = IssuedTokens(
            user_id=user.id,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=int((access_claims.expires_at - access_claims.issued_at).total_seconds()),
            device_id=device_id,
            refresh_jti=refresh_claims.jti,
            refresh_expires_at=refresh_claims.expires_at,
        )
        return issued, record

    @staticmethod
    def issue_token_pair(
        db: Session,
        user: User,
        *,
        device_id: Optional[str] = None,
        device_name: Optional[str] = None,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
        login_method: str = "email",
        enforce_device_limit: bool = True,
    ) -> IssuedTokens:
        """
        Mint an access/refresh pair and persist the refresh record

        Args:
            db: Database session
            user: Authenticated user
            device_id: Client device identifier, generated when absent
            device_name: Display name of the device
            user_agent: Client user agent
            ip_address: Originating IP
            login_method: email or phone
            enforce_device_limit: Evict the oldest devices past MAX_DEVICES_PER_USER

        Returns:
            IssuedTokens, only after the refresh record is committed

        Raises:
            ConfigurationError: Signing keys unavailable
            UserInactiveError: User disabled or deleted
            PersistenceError: Refresh record could not be written
        """
        if not user.is_usable:
            raise UserInactiveError()

        device_id = device_id or secrets.token_urlsafe(16)
        issued, record = TokenService._mint_pair(
            user,
            device_id=device_id,
            device_name=device_name,
            user_agent=user_agent,
            ip_address=ip_address,
            login_method=login_method,
            now=clock.utcnow(),
        )

        try:
            refresh_token_store.create(db, record)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Failed to persist refresh token for user %s: %s", user.id, exc.__class__.__name__)
            raise PersistenceError("Failed to persist refresh token") from exc

        logger.info("Issued token pair for user %s on device %s", user.id, device_id)

        if enforce_device_limit:
            try:
                device_limiter.enforce(db, user.id)
            except PersistenceError:
                logger.warning("Device limit enforcement failed for user %s", user.id)

        return issued

    @staticmethod
    def resolve_access_token(db: Session, token: str) -> Tuple[AccessTokenClaims, User]:
        claims = decode_access_token(token)
        try:
            user = user_lookup.get_active_user(db, claims.user_id)
        except SQLAlchemyError as exc:
            raise PersistenceError() from exc
        if user is None:
            raise UserInactiveError()
        return claims, user

    @staticmethod
    def verify_access_token(db: Session, token: str) -> AccessTokenClaims:
        """Verify signature, claims and that the user is still active."""
        claims, _ = TokenService.resolve_access_token(db, token)
        return claims

    @staticmethod
    def verify_refresh_token(db: Session, token: str) -> Tuple[RefreshTokenClaims, RefreshToken]:
        """
        Verify a refresh token against its persisted record

        Raises:
            TokenExpiredError, MalformedTokenError, WrongTokenTypeError,
            TokenNotFoundError, TokenRevokedError, UserInactiveError
        """
        claims = decode_refresh_token(token)
        try:
            record = refresh_token_store.find_by_jti(db, claims.jti)
        except SQLAlchemyError as exc:
            raise PersistenceError() from exc

        if record is None or record.user_id != claims.user_id:
            raise TokenNotFoundError()
        if record.is_consumed:
            raise TokenRevokedError()
        if TokenService._naive_utc(record.expires_at) <= clock.utcnow():
            raise TokenExpiredError("Refresh token expired")
        try:
            user = user_lookup.get_active_user(db, record.user_id)
        except SQLAlchemyError as exc:
            raise PersistenceError() from exc
        if user is None:
            raise UserInactiveError()
        return claims, record

    @staticmethod
    def _handle_reuse(db: Session, *, user_id: int, device_id: str) -> None:
        revoked = revocation_service.revoke_family(db, user_id, device_id)
        TOKEN_REUSE.inc()
        logger.warning(
            "Refresh token reuse detected for user %s on device %s; revoked %d sessions",
            user_id,
            device_id,
            revoked,
        )
        try:
            audit_service.log_event(
                db,
                user_id=user_id,
                action=TOKEN_REUSE_DETECTED,
                target_type="device",
                target_id=device_id,
                metadata={"revoked_sessions": revoked},
            )
        except SQLAlchemyError:
            db.rollback()
            logger.error("Failed to write audit event for token reuse by user %s", user_id)
        raise TokenReuseDetectedError(revoked)

    @staticmethod
    def rotate_refresh_token(db: Session, refresh_token: str) -> IssuedTokens:
        """
        Exchange a refresh token for a new pair, exactly once

        The presented record is swapped to revoked+replaced with a conditional
        update, so of two concurrent callers presenting the same token only one
        can succeed; the other is handled as reuse.

        Raises:
            TokenReuseDetectedError: Token already consumed; device family revoked
            TokenExpiredError, MalformedTokenError, WrongTokenTypeError,
            TokenNotFoundError, UserInactiveError, PersistenceError
        """
        claims = decode_refresh_token(refresh_token)
        now = clock.utcnow()

        try:
            record = refresh_token_store.find_by_jti(db, claims.jti)
        except SQLAlchemyError as exc:
            raise PersistenceError() from exc

        if record is None or record.user_id != claims.user_id:
            raise TokenNotFoundError()

        user_id = record.user_id
        device_id = record.device_id

        if record.is_consumed:
            TokenService._handle_reuse(db, user_id=user_id, device_id=device_id)

        if TokenService._naive_utc(record.expires_at) <= now:
            raise TokenExpiredError("Refresh token expired")

        try:
            user = user_lookup.get_active_user(db, user_id)
        except SQLAlchemyError as exc:
            raise PersistenceError() from exc
        if user is None:
            raise UserInactiveError()

        issued, new_record = TokenService._mint_pair(
            user,
            device_id=device_id,
            device_name=record.device_name,
            user_agent=record.user_agent,
            ip_address=record.ip_address,
            login_method=record.login_method,
            now=now,
        )

        try:
            swapped = refresh_token_store.update_by_jti_if(
                db,
                claims.jti,
                precondition=[
                    RefreshToken.is_revoked == False,  # noqa: E712
                    RefreshToken.replaced_by_jti.is_(None),
                ],
                patch={
                    "is_revoked": True,
                    "revoked_at": now,
                    "replaced_by_jti": new_record.token_jti,
                },
            )
            if swapped:
                refresh_token_store.create(db, new_record)
                db.commit()
            else:
                db.rollback()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Refresh token rotation failed for user %s: %s", user_id, exc.__class__.__name__)
            raise PersistenceError("Failed to rotate refresh token") from exc

        if not swapped:
            # Another caller consumed this token between our read and write.
            TokenService._handle_reuse(db, user_id=user_id, device_id=device_id)

        TOKEN_ROTATIONS.inc()
        logger.info("Rotated refresh token for user %s on device %s", user_id, device_id)
        return issued


token_service = TokenService()
