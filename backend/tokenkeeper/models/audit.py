"""Security audit trail for token events."""

import json
from typing import Any, Dict

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from tokenkeeper.core import clock
from tokenkeeper.core.database import Base


class AuditEvent(Base):
    """One security-relevant event, never updated after insert."""

    __tablename__ = "audit_events"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    action = Column(String(64), nullable=False, index=True)
    target_type = Column(String(64), nullable=True, index=True)
    target_id = Column(String(128), nullable=True, index=True)
    ip_address = Column(String(64), nullable=True)
    metadata_json = Column(Text, nullable=True)
    created_at = Column(DateTime, default=lambda: clock.utcnow(), nullable=False)

    user = relationship("User", back_populates="audit_events")

    __table_args__ = (
        Index("idx_audit_events_created_at", "created_at"),
    )

    @property
    def details(self) -> Dict[str, Any]:
        return json.loads(self.metadata_json) if self.metadata_json else {}

    def __repr__(self):
        return f"<AuditEvent(id={self.id}, action='{self.action}', user_id={self.user_id})>"
