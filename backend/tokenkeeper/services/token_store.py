"""Persistence operations for refresh tokens, login attempts and user lookup.

Store methods flush but never commit; the calling service owns the
transaction boundary.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from tokenkeeper.models.security import LoginAttempt, RefreshToken
from tokenkeeper.models.user import User


class RefreshTokenStore:
    """Durable refresh token records keyed by jti."""

    @staticmethod
    def create(db: Session, record: RefreshToken) -> RefreshToken:
        db.add(record)
        db.flush()
        return record

    @staticmethod
    def find_by_jti(db: Session, token_jti: str) -> Optional[RefreshToken]:
        return db.query(RefreshToken).filter(RefreshToken.token_jti == token_jti).first()

    @staticmethod
    def update_by_jti_if(
        db: Session,
        token_jti: str,
        precondition: List[Any],
        patch: Dict[str, Any],
    ) -> bool:
        """
        Compare-and-swap update of a single record.

        Args:
            db: Database session
            token_jti: Record key
            precondition: Extra filter criteria that must hold for the row
            patch: Column values to write

        Returns:
            True if exactly one row matched and was updated
        """
        updated = (
            db.query(RefreshToken)
            .filter(RefreshToken.token_jti == token_jti, *precondition)
            .update(patch, synchronize_session=False)
        )
        return updated == 1

    @staticmethod
    def revoke_where(db: Session, criteria: List[Any], revoked_at: datetime) -> int:
        """Mark every non-revoked record matching ``criteria`` revoked."""
        return (
            db.query(RefreshToken)
            .filter(RefreshToken.is_revoked == False, *criteria)  # noqa: E712
            .update({"is_revoked": True, "revoked_at": revoked_at}, synchronize_session=False)
        )

    @staticmethod
    def delete_many(db: Session, criteria: List[Any]) -> int:
        return db.query(RefreshToken).filter(*criteria).delete(synchronize_session=False)

    @staticmethod
    def find_ids(db: Session, criteria: List[Any], limit: int) -> List[int]:
        rows = (
            db.query(RefreshToken.id)
            .filter(*criteria)
            .order_by(RefreshToken.id.asc())
            .limit(limit)
            .all()
        )
        return [row[0] for row in rows]

    @staticmethod
    def list_active_by_user_device(db: Session, user_id: int, device_id: str, now: datetime) -> List[RefreshToken]:
        return (
            db.query(RefreshToken)
            .filter(
                RefreshToken.user_id == user_id,
                RefreshToken.device_id == device_id,
                RefreshToken.is_revoked == False,  # noqa: E712
                RefreshToken.expires_at > now,
            )
            .order_by(RefreshToken.issued_at.asc(), RefreshToken.id.asc())
            .all()
        )

    @staticmethod
    def list_active_by_user(db: Session, user_id: int, now: datetime) -> List[RefreshToken]:
        return (
            db.query(RefreshToken)
            .filter(
                RefreshToken.user_id == user_id,
                RefreshToken.is_revoked == False,  # noqa: E712
                RefreshToken.expires_at > now,
            )
            .order_by(RefreshToken.issued_at.desc(), RefreshToken.id.desc())
            .all()
        )

    @staticmethod
    def list_by_user(db: Session, user_id: int) -> List[RefreshToken]:
        return db.query(RefreshToken).filter(RefreshToken.user_id == user_id).all()


class LoginAttemptStore:
    """Append-only log of authentication attempts."""

    @staticmethod
    def append(db: Session, attempt: LoginAttempt) -> LoginAttempt:
        db.add(attempt)
        db.flush()
        return attempt

    @staticmethod
    def _failed_since(db: Session, key_column: Any, key: str, since: datetime, ignore_reasons: List[str]):
        query = db.query(LoginAttempt).filter(
            key_column == key,
            LoginAttempt.success == False,  # noqa: E712
            LoginAttempt.created_at >= since,
        )
        if ignore_reasons:
            query = query.filter(
                or_(LoginAttempt.reason.is_(None), LoginAttempt.reason.notin_(ignore_reasons))
            )
        return query

    @staticmethod
    def count_failed_since(
        db: Session,
        *,
        since: datetime,
        identifier: Optional[str] = None,
        ip_address: Optional[str] = None,
        ignore_reasons: Optional[List[str]] = None,
    ) -> int:
        """Failed attempts for exactly one of ``identifier`` or ``ip_address``."""
        key_column, key = LoginAttemptStore._key(identifier, ip_address)
        return LoginAttemptStore._failed_since(db, key_column, key, since, ignore_reasons or []).count()

    @staticmethod
    def failed_attempt_times_since(
        db: Session,
        *,
        since: datetime,
        identifier: Optional[str] = None,
        ip_address: Optional[str] = None,
        ignore_reasons: Optional[List[str]] = None,
    ) -> List[datetime]:
        """Timestamps of failed attempts, oldest first."""
        key_column, key = LoginAttemptStore._key(identifier, ip_address)
        query = LoginAttemptStore._failed_since(db, key_column, key, since, ignore_reasons or [])
        rows = query.with_entities(LoginAttempt.created_at).order_by(LoginAttempt.created_at.asc()).all()
        return [row[0] for row in rows]

    @staticmethod
    def _key(identifier: Optional[str], ip_address: Optional[str]):
        if (identifier is None) == (ip_address is None):
            raise ValueError("Exactly one of identifier or ip_address is required")
        if identifier is not None:
            return LoginAttempt.identifier, identifier
        return LoginAttempt.ip_address, ip_address


class UserLookup:
    """Read-only user access for the token services."""

    @staticmethod
    def get_active_user(db: Session, user_id: int) -> Optional[User]:
        return (
            db.query(User)
            .filter(User.id == user_id, User.is_active == True, User.deleted_at.is_(None))  # noqa: E712
            .first()
        )

    @staticmethod
    def get_by_identifier(db: Session, identifier: str) -> Optional[User]:
        """Find a user by email (case-insensitive) or phone."""
        value = identifier.strip()
        if "@" in value:
            return db.query(User).filter(User.email == value.lower()).first()
        return db.query(User).filter(User.phone == value).first()


refresh_token_store = RefreshTokenStore()
login_attempt_store = LoginAttemptStore()
user_lookup = UserLookup()
