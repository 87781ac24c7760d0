"""
Admin API: purchase review queue, account listing, device reset, role changes.
Every route requires an admin session.
"""
from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.deps import require_admin
from app.db.session import get_db
from app.models.account import AccountRole, parse_role
from app.schemas.accounts import AccountAdminOut, AccountProfile
from app.schemas.purchases import AuditEntryOut, PurchaseOut, PurchaseRejectRequest
from app.services.accounts.service import AccountService
from app.services.audit.service import AuditService
from app.services.purchases.service import PurchaseService
from app.utils.metrics import device_bindings_total

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


class RoleUpdate(BaseModel):
    role: str


# ---------- Purchases ----------
@router.get("/purchases", response_model=list[PurchaseOut])
def purchases_list(
    status_filter: str = Query("pending", alias="status"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    return PurchaseService(db).list_by_status(status_filter, limit=limit, offset=offset)


@router.get("/purchases/stats")
def purchases_stats(db: Session = Depends(get_db)):
    return PurchaseService(db).count_by_status()


@router.post("/purchases/{order_id}/approve", response_model=PurchaseOut)
def purchase_approve(
    order_id: str,
    admin: AccountProfile = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return PurchaseService(db).approve(order_id, admin.id)


@router.post("/purchases/{order_id}/reject", response_model=PurchaseOut)
def purchase_reject(
    order_id: str,
    body: PurchaseRejectRequest | None = Body(None),
    admin: AccountProfile = Depends(require_admin),
    db: Session = Depends(get_db),
):
    reason = body.reason if body else None
    return PurchaseService(db).reject(order_id, admin.id, reason)


@router.get("/purchases/{order_id}/audit", response_model=list[AuditEntryOut])
def purchase_audit(order_id: str, db: Session = Depends(get_db)):
    """Review history of one order (kept after the order itself is deleted)."""
    return AuditService(db).list_for_entity("purchase", order_id)


@router.delete("/purchases/{order_id}", status_code=status.HTTP_204_NO_CONTENT)
def purchase_delete(
    order_id: str,
    admin: AccountProfile = Depends(require_admin),
    db: Session = Depends(get_db),
):
    PurchaseService(db).delete(order_id, admin.id)


# ---------- Accounts ----------
@router.get("/accounts", response_model=list[AccountAdminOut])
def accounts_list(
    role: str | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    try:
        role_filter = parse_role(role) if role else None
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown role: {role}")
    return AccountService(db).list_accounts(role=role_filter, limit=limit, offset=offset)


@router.post("/accounts/{account_id}/reset-device", response_model=AccountAdminOut)
def account_reset_device(
    account_id: str,
    admin: AccountProfile = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Unbinds the device; the student's next sign-in binds whatever device they use."""
    svc = AccountService(db)
    previous = svc.get_bound_device(account_id)
    account = svc.reset_device(account_id)
    if account is None:
        raise HTTPException(status_code=404, detail="Account not found")
    AuditService(db).log(
        "admin",
        admin.id,
        "device_reset",
        "account",
        account_id,
        payload={"previous_device_id": previous},
    )
    device_bindings_total.labels(event="reset").inc()
    return account


@router.put("/accounts/{account_id}/role", response_model=AccountAdminOut)
def account_set_role(
    account_id: str,
    body: RoleUpdate,
    admin: AccountProfile = Depends(require_admin),
    db: Session = Depends(get_db),
):
    try:
        role = parse_role(body.role)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown role: {body.role}")
    if account_id == admin.id and role is not AccountRole.ADMIN:
        raise HTTPException(status_code=400, detail="Cannot demote your own account")
    account = AccountService(db).set_role(account_id, role)
    if account is None:
        raise HTTPException(status_code=404, detail="Account not found")
    AuditService(db).log("admin", admin.id, "role_changed", "account", account_id, payload={"role": role.value})
    return account
