"""Write and read the token audit trail."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from tokenkeeper.models.audit import AuditEvent

logger = logging.getLogger(__name__)

TOKEN_REUSE_DETECTED = "token_reuse_detected"
DEVICE_SESSION_EVICTED = "device_session_evicted"
DEVICE_SESSION_REVOKED = "device_session_revoked"
LOGOUT_ALL = "logout_all"


class AuditService:
    """
    Record who lost which sessions and why.

    Metadata holds counts and ids only; token values and hashes never go
    into the trail.
    """

    @staticmethod
    def log_event(
        db: Session,
        *,
        user_id: Optional[int],
        action: str,
        target_type: Optional[str] = None,
        target_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        commit: bool = True,
    ) -> AuditEvent:
        """
        Add an event to ``db``.

        Args:
            commit: Commit immediately; pass False to join the caller's transaction
        """
        event = AuditEvent(
            user_id=user_id,
            action=action,
            target_type=target_type,
            target_id=target_id,
            ip_address=ip_address,
            metadata_json=json.dumps(metadata or {}, sort_keys=True),
        )
        db.add(event)
        if commit:
            db.commit()
            db.refresh(event)
        logger.debug("Audit %s for user %s", action, user_id)
        return event

    @staticmethod
    def list_events(db: Session, *, user_id: int, action: Optional[str] = None) -> List[AuditEvent]:
        """Events for one user, oldest first"""
        query = db.query(AuditEvent).filter(AuditEvent.user_id == user_id)
        if action:
            query = query.filter(AuditEvent.action == action)
        return query.order_by(AuditEvent.created_at.asc(), AuditEvent.id.asc()).all()


audit_service = AuditService()
