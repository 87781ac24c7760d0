"""
Access gate: can_access(db, user_id, bundle_id) -> bool.
True iff an approved purchase exists for exactly this (user, folder).
Evaluated against the database on every content request, never cached,
so approvals, rejections and deletions apply immediately.
"""
from __future__ import annotations

from sqlalchemy import exists
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.purchase import Purchase, PurchaseStatus
from app.paywall.audit import record_access_denied
from app.paywall.models import AccessDecision
from app.services.purchases.service import PurchaseService
from app.utils.metrics import access_checks_total


def can_access(db: Session, user_id: str, bundle_id: str) -> bool:
    if not user_id or not bundle_id:
        return False
    return bool(
        db.query(
            exists().where(
                Purchase.user_id == user_id,
                Purchase.folder_id == bundle_id,
                Purchase.status == PurchaseStatus.APPROVED.value,
            )
        ).scalar()
    )


def decide_access(db: Session, user_id: str, bundle_id: str) -> AccessDecision:
    """
    can_access plus the state of the latest purchase for the locked screen
    (pending: "awaiting verification", rejected: show the reason and allow resubmission).
    """
    allowed = can_access(db, user_id, bundle_id)
    latest = PurchaseService(db).get_latest(user_id, bundle_id)
    decision = AccessDecision(
        user_id=user_id,
        bundle_id=bundle_id,
        allowed=allowed,
        purchase_state=latest.status if latest else "none",
        purchase_id=latest.id if latest else None,
        rejection_reason=latest.rejection_reason if latest else None,
        price=settings.purchase_price,
    )
    access_checks_total.labels(result="allowed" if allowed else "denied").inc()
    if not allowed:
        record_access_denied(user_id, bundle_id, decision.purchase_state)
    return decision
