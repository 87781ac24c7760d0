"""
PurchaseService: the purchase ledger behind manual payment verification.

States: pending --approve--> approved, pending --reject--> rejected.
A rejected row is never edited back to pending: resubmission deletes it and
inserts a fresh pending row. At most one pending/approved row per
(user_id, folder_id) is guaranteed by a partial unique index; the losing
concurrent insert gets DuplicatePurchaseError.
"""
import logging
import os
import re
import time
from datetime import datetime, timezone

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import (
    DuplicatePurchaseError,
    InvalidTransitionError,
    PurchaseNotFoundError,
    TransientIOError,
    ValidationError,
)
from app.models.purchase import ACTIVE_STATUSES, Purchase, PurchaseStatus
from app.schemas.purchases import BuyerInfo
from app.services.audit.service import AuditService
from app.storage.base import Storage
from app.storage.local import LocalStorage
from app.utils.metrics import purchase_transitions_total

logger = logging.getLogger(__name__)

PHONE_RE = re.compile(r"^\d{10}$")
# folder ids end up as a path segment of the screenshot key
BUNDLE_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,63}$")
MAX_FIELD_LENGTH = 120


def validate_buyer(buyer: BuyerInfo) -> BuyerInfo:
    name = (buyer.buyer_name or "").strip()
    phone = (buyer.phone or "").strip()
    holder = (buyer.account_holder_name or "").strip()
    if not name or not phone or not holder:
        raise ValidationError("Please fill all fields and upload payment screenshot")
    if not PHONE_RE.match(phone):
        raise ValidationError("Please enter a valid 10-digit phone number")
    if len(name) > MAX_FIELD_LENGTH or len(holder) > MAX_FIELD_LENGTH:
        raise ValidationError("Name is too long")
    return BuyerInfo(buyer_name=name, phone=phone, account_holder_name=holder)


def normalize_bundle_id(bundle_id: str | None) -> str:
    bundle_id = (bundle_id or "").strip()
    if not bundle_id:
        raise ValidationError("Folder is required")
    if not BUNDLE_ID_RE.match(bundle_id):
        raise ValidationError("Unknown folder")
    return bundle_id


def _proof_extension(filename: str) -> str:
    ext = os.path.splitext(filename or "")[1].lower()
    if ext not in settings.allowed_extensions_set:
        raise ValidationError("Payment screenshot must be an image (jpg, png or webp)")
    return ext


class PurchaseService:
    def __init__(
        self,
        db: Session,
        storage: Storage | None = None,
        audit: AuditService | None = None,
    ) -> None:
        self.db = db
        self._storage = storage
        self.audit = audit or AuditService(db)

    @property
    def storage(self) -> Storage:
        if self._storage is None:
            self._storage = LocalStorage()
        return self._storage

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, order_id: str) -> Purchase | None:
        return self.db.query(Purchase).filter(Purchase.id == order_id).one_or_none()

    def get_active(self, user_id: str, bundle_id: str) -> Purchase | None:
        return (
            self.db.query(Purchase)
            .filter(
                Purchase.user_id == user_id,
                Purchase.folder_id == bundle_id,
                Purchase.status.in_(ACTIVE_STATUSES),
            )
            .one_or_none()
        )

    def get_latest(self, user_id: str, bundle_id: str) -> Purchase | None:
        return (
            self.db.query(Purchase)
            .filter(Purchase.user_id == user_id, Purchase.folder_id == bundle_id)
            .order_by(Purchase.created_at.desc())
            .first()
        )

    def list_for_user(self, user_id: str) -> list[Purchase]:
        return (
            self.db.query(Purchase)
            .filter(Purchase.user_id == user_id)
            .order_by(Purchase.created_at.desc())
            .all()
        )

    def list_by_status(self, status: PurchaseStatus | str, limit: int = 100, offset: int = 0) -> list[Purchase]:
        try:
            status = PurchaseStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown purchase status: {status}") from None
        return (
            self.db.query(Purchase)
            .filter(Purchase.status == status.value)
            .order_by(Purchase.created_at.asc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    def list_pending(self, limit: int = 100, offset: int = 0) -> list[Purchase]:
        """Oldest first: review queue order."""
        return self.list_by_status(PurchaseStatus.PENDING, limit=limit, offset=offset)

    def count_by_status(self) -> dict[str, int]:
        counts = {s.value: 0 for s in PurchaseStatus}
        for status in counts:
            counts[status] = self.db.query(Purchase).filter(Purchase.status == status).count()
        return counts

    # ------------------------------------------------------------------
    # Buyer flow
    # ------------------------------------------------------------------

    def create(
        self,
        user_id: str,
        bundle_id: str,
        proof_ref: str,
        buyer: BuyerInfo,
        amount: int | None = None,
        proof_path: str | None = None,
    ) -> Purchase:
        """
        Insert a pending row, replacing a rejected one for the same pair.
        Both writes share one transaction; a unique-index violation rolls back both.
        """
        buyer = validate_buyer(buyer)
        bundle_id = normalize_bundle_id(bundle_id)
        if not proof_ref:
            raise ValidationError("Please fill all fields and upload payment screenshot")
        amount = settings.purchase_price if amount is None else amount
        if amount <= 0:
            raise ValidationError("Amount must be positive")

        replaced = self.db.execute(
            delete(Purchase)
            .where(
                Purchase.user_id == user_id,
                Purchase.folder_id == bundle_id,
                Purchase.status == PurchaseStatus.REJECTED.value,
            )
            .execution_options(synchronize_session=False)
        ).rowcount
        purchase = Purchase(
            user_id=user_id,
            folder_id=bundle_id,
            status=PurchaseStatus.PENDING.value,
            amount=amount,
            proof_ref=proof_ref,
            proof_path=proof_path,
            buyer_name=buyer.buyer_name,
            phone=buyer.phone,
            account_holder_name=buyer.account_holder_name,
        )
        self.db.add(purchase)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            purchase_transitions_total.labels(transition="duplicate").inc()
            logger.info("purchase_duplicate", extra={"user_id": user_id, "bundle_id": bundle_id})
            raise DuplicatePurchaseError()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("purchase_create_failed", extra={"user_id": user_id, "bundle_id": bundle_id, "error": str(e)})
            raise TransientIOError() from e
        self.db.refresh(purchase)
        purchase_transitions_total.labels(transition="created").inc()
        logger.info(
            "purchase_created",
            extra={"order_id": purchase.id, "user_id": user_id, "bundle_id": bundle_id, "status": purchase.status},
        )
        if replaced:
            logger.info("purchase_resubmitted", extra={"user_id": user_id, "bundle_id": bundle_id})
        return purchase

    def submit(
        self,
        user_id: str,
        bundle_id: str,
        proof: bytes,
        filename: str,
        buyer: BuyerInfo,
    ) -> Purchase:
        """Upload the screenshot, then record the claim. An orphan upload is tolerated."""
        bundle_id = normalize_bundle_id(bundle_id)
        buyer = validate_buyer(buyer)
        if not proof:
            raise ValidationError("Please fill all fields and upload payment screenshot")
        if len(proof) > settings.max_proof_size_mb * 1024 * 1024:
            raise ValidationError(f"Screenshot is larger than {settings.max_proof_size_mb} MB")
        ext = _proof_extension(filename)
        if self.get_active(user_id, bundle_id) is not None:
            raise DuplicatePurchaseError()

        path = f"{user_id}/{bundle_id}/{int(time.time() * 1000)}{ext}"
        try:
            url = self.storage.upload(path, proof)
        except ValueError as e:
            logger.error("purchase_proof_path_rejected", extra={"user_id": user_id, "bundle_id": bundle_id, "error": str(e)})
            raise ValidationError("Unknown folder") from e
        except OSError as e:
            logger.warning("purchase_proof_upload_failed", extra={"user_id": user_id, "bundle_id": bundle_id, "error": str(e)})
            raise TransientIOError("Upload failed. Please try again.") from e
        return self.create(user_id, bundle_id, url, buyer, proof_path=path)

    # ------------------------------------------------------------------
    # Admin review
    # ------------------------------------------------------------------

    def approve(self, order_id: str, reviewer_id: str) -> Purchase:
        """Idempotent if already approved."""
        return self._transition(
            order_id,
            reviewer_id,
            PurchaseStatus.APPROVED,
            {"rejection_reason": None},
        )

    def reject(self, order_id: str, reviewer_id: str, reason: str | None = None) -> Purchase:
        reason = (reason or "").strip() or settings.default_rejection_reason
        return self._transition(
            order_id,
            reviewer_id,
            PurchaseStatus.REJECTED,
            {"rejection_reason": reason},
        )

    def _transition(
        self,
        order_id: str,
        reviewer_id: str,
        target: PurchaseStatus,
        values: dict,
    ) -> Purchase:
        result = self.db.execute(
            update(Purchase)
            .where(Purchase.id == order_id, Purchase.status == PurchaseStatus.PENDING.value)
            .values(
                status=target.value,
                reviewed_by=reviewer_id,
                reviewed_at=datetime.now(timezone.utc),
                **values,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.db.rollback()
            purchase = self.get(order_id)
            if purchase is None:
                raise PurchaseNotFoundError()
            if purchase.status == target.value:
                return purchase
            raise InvalidTransitionError(
                f"Purchase is already {purchase.status} and cannot be {target.value}"
            )

        self.audit.log(
            "admin",
            reviewer_id,
            f"purchase_{target.value}",
            "purchase",
            order_id,
            payload={"rejection_reason": values.get("rejection_reason")} if target is PurchaseStatus.REJECTED else {},
            commit=False,
        )
        self.db.commit()
        purchase = self.get(order_id)
        purchase_transitions_total.labels(transition=target.value).inc()
        logger.info(
            f"purchase_{target.value}",
            extra={
                "order_id": order_id,
                "reviewer_id": reviewer_id,
                "user_id": purchase.user_id,
                "bundle_id": purchase.folder_id,
            },
        )
        return purchase

    def delete(self, order_id: str, admin_id: str) -> None:
        """Administrative removal; access granted by this row ends immediately."""
        purchase = self.get(order_id)
        if purchase is None:
            raise PurchaseNotFoundError()
        self.db.delete(purchase)
        self.audit.log(
            "admin",
            admin_id,
            "purchase_deleted",
            "purchase",
            order_id,
            payload={"user_id": purchase.user_id, "folder_id": purchase.folder_id, "status": purchase.status},
            commit=False,
        )
        self.db.commit()
        purchase_transitions_total.labels(transition="deleted").inc()
        logger.info("purchase_deleted", extra={"order_id": order_id, "reviewer_id": admin_id})
