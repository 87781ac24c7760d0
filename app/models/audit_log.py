"""Append-only record of administrative actions (reviews, deletions, device resets, role changes)."""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Index, String

from app.db.base import Base, JSONType


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    actor_type = Column(String, nullable=False)  # admin / student / system
    actor_id = Column(String, nullable=True)
    action = Column(String, nullable=False)  # purchase_approved, device_reset, ...
    entity_type = Column(String, nullable=False)  # purchase / account
    entity_id = Column(String, nullable=True)
    payload = Column(JSONType, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        Index("ix_audit_logs_entity", "entity_type", "entity_id", "created_at"),
    )
