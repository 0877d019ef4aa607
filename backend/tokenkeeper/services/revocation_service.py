"""Refresh token revocation."""

from __future__ import annotations

import logging
from typing import Any, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tokenkeeper.core import clock
from tokenkeeper.core.exceptions import PersistenceError
from tokenkeeper.core.security import decode_refresh_token
from tokenkeeper.models.security import RefreshToken
from tokenkeeper.services.token_store import refresh_token_store

logger = logging.getLogger(__name__)


class RevocationService:
    """
    Revoke one token, a device family, or every token of a user.

    All operations are idempotent and only ever flip ``is_revoked``; rows are
    removed by the cleanup scheduler.
    """

    @staticmethod
    def _revoke(db: Session, criteria: List[Any]) -> int:
        try:
            count = refresh_token_store.revoke_where(db, criteria, clock.utcnow())
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceError("Failed to revoke refresh tokens") from exc
        return count

    @staticmethod
    def revoke_one(db: Session, token_jti: str) -> bool:
        """Returns True if the record changed state."""
        return RevocationService._revoke(db, [RefreshToken.token_jti == token_jti]) > 0

    @staticmethod
    def revoke_all_for_user(db: Session, user_id: int) -> int:
        count = RevocationService._revoke(db, [RefreshToken.user_id == user_id])
        logger.info("Revoked %d sessions for user %s", count, user_id)
        return count

    @staticmethod
    def revoke_family(db: Session, user_id: int, device_id: str) -> int:
        count = RevocationService._revoke(
            db,
            [RefreshToken.user_id == user_id, RefreshToken.device_id == device_id],
        )
        logger.info("Revoked %d sessions for user %s on device %s", count, user_id, device_id)
        return count

    @staticmethod
    def revoke_other_devices(db: Session, user_id: int, keep_device_id: str) -> int:
        count = RevocationService._revoke(
            db,
            [RefreshToken.user_id == user_id, RefreshToken.device_id != keep_device_id],
        )
        logger.info("Revoked %d sessions on other devices for user %s", count, user_id)
        return count

    @staticmethod
    def revoke_by_token(db: Session, refresh_token: str, user_id: Optional[int] = None) -> bool:
        """
        Revoke the record behind a presented refresh token (logout).

        The signature must verify; expiry is not checked so that an expired
        token can still be logged out.

        Args:
            db: Database session
            refresh_token: Signed refresh token
            user_id: When given, the token must belong to this user

        Returns:
            True if this call revoked the record; False for an unknown,
            foreign or already revoked token
        """
        claims = decode_refresh_token(refresh_token, verify_exp=False)
        if user_id is not None and claims.user_id != user_id:
            return False
        try:
            record = refresh_token_store.find_by_jti(db, claims.jti)
        except SQLAlchemyError as exc:
            raise PersistenceError() from exc
        if record is None or record.user_id != claims.user_id:
            return False
        return RevocationService.revoke_one(db, claims.jti)


revocation_service = RevocationService()
