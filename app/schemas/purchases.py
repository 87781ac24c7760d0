from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class BuyerInfo(BaseModel):
    """Details the buyer typed on the payment form."""

    buyer_name: str
    phone: str
    account_holder_name: str


class PurchaseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    folder_id: str
    status: str
    amount: int
    proof_ref: str
    buyer_name: str
    phone: str
    account_holder_name: str
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    rejection_reason: str | None = None
    created_at: datetime


class PurchaseRejectRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)


class AuditEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    actor_type: str
    actor_id: str | None = None
    action: str
    payload: dict
    created_at: datetime
