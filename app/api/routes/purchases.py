"""
Buyer-side routes: submit payment proof, list own purchases, check folder access.
"""
from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_account
from app.core.config import settings
from app.db.session import get_db
from app.paywall.access import decide_access
from app.paywall.models import AccessDecision
from app.schemas.accounts import AccountProfile
from app.schemas.purchases import BuyerInfo, PurchaseOut
from app.services.purchases.service import PurchaseService

router = APIRouter(tags=["purchases"])


@router.post("/purchases", response_model=PurchaseOut, status_code=status.HTTP_201_CREATED)
def submit_purchase(
    folder_id: str = Form(...),
    buyer_name: str = Form(...),
    phone: str = Form(...),
    account_holder_name: str = Form(...),
    screenshot: UploadFile = File(...),
    profile: AccountProfile = Depends(get_current_account),
    db: Session = Depends(get_db),
):
    """Payment proof for one folder; stays pending until an admin reviews it."""
    # one byte past the limit is enough for the size check
    content = screenshot.file.read(settings.max_proof_size_mb * 1024 * 1024 + 1)
    buyer = BuyerInfo(buyer_name=buyer_name, phone=phone, account_holder_name=account_holder_name)
    return PurchaseService(db).submit(profile.id, folder_id, content, screenshot.filename or "", buyer)


@router.get("/purchases/mine", response_model=list[PurchaseOut])
def my_purchases(
    profile: AccountProfile = Depends(get_current_account),
    db: Session = Depends(get_db),
):
    return PurchaseService(db).list_for_user(profile.id)


@router.get("/bundles/{bundle_id}/access", response_model=AccessDecision)
def bundle_access(
    bundle_id: str,
    profile: AccountProfile = Depends(get_current_account),
    db: Session = Depends(get_db),
):
    """Never cached: reflects the latest review decision."""
    return decide_access(db, profile.id, bundle_id)
