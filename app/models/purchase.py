"""
Purchase: a claim of payment for one folder (bundle), reviewed by an admin.
Partial unique index keeps at most one pending/approved row per (user_id, folder_id).
"""
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Index, Integer, String, Text, text

from app.db.base import Base


class PurchaseStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


ACTIVE_STATUSES = (PurchaseStatus.PENDING.value, PurchaseStatus.APPROVED.value)

_ACTIVE_PREDICATE = "status IN ('pending', 'approved')"


class Purchase(Base):
    __tablename__ = "purchases"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    folder_id = Column(String, nullable=False, index=True)      # bundle being purchased
    status = Column(String, nullable=False, default=PurchaseStatus.PENDING.value)
    amount = Column(Integer, nullable=False)
    proof_ref = Column(Text, nullable=False)                    # public URL of the payment screenshot
    proof_path = Column(Text, nullable=True)                    # storage path, for admin download
    buyer_name = Column(String, nullable=False)
    phone = Column(String, nullable=False)
    account_holder_name = Column(String, nullable=False)
    reviewed_by = Column(String, nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index(
            "uq_purchases_active_user_folder",
            "user_id",
            "folder_id",
            unique=True,
            postgresql_where=text(_ACTIVE_PREDICATE),
            sqlite_where=text(_ACTIVE_PREDICATE),
        ),
        Index("ix_purchases_status_created", "status", "created_at"),
    )
