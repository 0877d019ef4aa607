"""Read-side queries over a user's refresh token sessions."""

from __future__ import annotations

from datetime import timedelta
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from tokenkeeper.core import clock
from tokenkeeper.models.security import RefreshToken
from tokenkeeper.services.token_store import refresh_token_store

DEVICE_CONSISTENCY_WINDOW = timedelta(hours=24)


class SessionService:
    """Active session listings and statistics."""

    @staticmethod
    def list_active_sessions(db: Session, user_id: int) -> List[RefreshToken]:
        """Non-revoked, non-expired records, newest first."""
        return refresh_token_store.list_active_by_user(db, user_id, clock.utcnow())

    @staticmethod
    def list_active_devices(db: Session, user_id: int) -> List[RefreshToken]:
        """Most recently issued active record for each device."""
        devices: Dict[str, RefreshToken] = {}
        for record in SessionService.list_active_sessions(db, user_id):
            devices.setdefault(record.device_id, record)
        return list(devices.values())

    @staticmethod
    def list_device_sessions(db: Session, user_id: int, device_id: str) -> List[RefreshToken]:
        """Active records of one device family, oldest first."""
        return refresh_token_store.list_active_by_user_device(db, user_id, device_id, clock.utcnow())

    @staticmethod
    def token_stats(db: Session, user_id: int) -> Dict[str, int]:
        now = clock.utcnow()
        records = refresh_token_store.list_by_user(db, user_id)
        expired = sum(1 for record in records if record.expires_at <= now)
        active = sum(1 for record in records if not record.is_revoked and record.expires_at > now)
        return {
            "total": len(records),
            "expired": expired,
            "revoked": sum(1 for record in records if record.is_revoked),
            "active": active,
            "devices": len({record.device_id for record in records if not record.is_revoked and record.expires_at > now}),
        }

    @staticmethod
    def is_device_consistent(db: Session, user_id: int, device_id: str, user_agent: Optional[str]) -> bool:
        """
        Compare a device's user agent with the user's most recent active token on it.

        A device with no token issued in the last 24 hours, or a side with no
        user agent, is considered consistent.
        """
        recent = (
            db.query(RefreshToken)
            .filter(
                RefreshToken.user_id == user_id,
                RefreshToken.device_id == device_id,
                RefreshToken.is_revoked == False,  # noqa: E712
                RefreshToken.issued_at >= clock.utcnow() - DEVICE_CONSISTENCY_WINDOW,
            )
            .order_by(RefreshToken.issued_at.desc(), RefreshToken.id.desc())
            .first()
        )
        if recent is None or not recent.user_agent or not user_agent:
            return True
        return recent.user_agent == user_agent


session_service = SessionService()
