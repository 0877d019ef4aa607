"""Per-user cap on concurrently active devices."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tokenkeeper.config import settings
from tokenkeeper.core import clock
from tokenkeeper.core.exceptions import PersistenceError
from tokenkeeper.models.security import RefreshToken
from tokenkeeper.services.audit_service import DEVICE_SESSION_EVICTED, audit_service
from tokenkeeper.services.token_store import refresh_token_store

logger = logging.getLogger(__name__)


class DeviceSessionLimiter:
    """Evict the least recently issued devices once a user exceeds the cap."""

    @staticmethod
    def enforce(db: Session, user_id: int, max_devices: Optional[int] = None) -> List[str]:
        """
        Revoke sessions on the oldest devices until at most ``max_devices`` remain.

        Args:
            db: Database session
            user_id: Owner of the sessions
            max_devices: Threshold, defaults to MAX_DEVICES_PER_USER

        Returns:
            Evicted device ids, oldest first
        """
        limit = settings.MAX_DEVICES_PER_USER if max_devices is None else max_devices
        if limit < 1:
            raise ValueError("max_devices must be at least 1")

        now = clock.utcnow()
        try:
            records = refresh_token_store.list_active_by_user(db, user_id, now)
        except SQLAlchemyError as exc:
            raise PersistenceError() from exc

        # Newest issuance per device; record id breaks ties.
        latest: Dict[str, Tuple[datetime, int]] = {}
        for record in records:
            key = (record.issued_at, record.id)
            if record.device_id not in latest or key > latest[record.device_id]:
                latest[record.device_id] = key

        excess = len(latest) - limit
        if excess <= 0:
            return []

        evicted = sorted(latest, key=lambda device: latest[device])[:excess]
        try:
            revoked = refresh_token_store.revoke_where(
                db,
                [RefreshToken.user_id == user_id, RefreshToken.device_id.in_(evicted)],
                now,
            )
            audit_service.log_event(
                db,
                user_id=user_id,
                action=DEVICE_SESSION_EVICTED,
                target_type="user",
                target_id=str(user_id),
                metadata={"devices": len(evicted), "revoked_sessions": revoked, "limit": limit},
                commit=False,
            )
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceError("Failed to evict device sessions") from exc

        logger.info("Evicted %d devices for user %s (limit %d)", len(evicted), user_id, limit)
        return evicted


device_limiter = DeviceSessionLimiter()
