"""
DTO paywall: AccessDecision (result of decide_access for one user and one folder).
"""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

PurchaseState = Literal["none", "pending", "approved", "rejected"]


class AccessDecision(BaseModel):
    """Whether the folder's notes may be served, plus the buyer-facing purchase state."""

    user_id: str
    bundle_id: str
    allowed: bool = Field(..., description="True only with an approved purchase for this exact folder")
    purchase_state: PurchaseState = Field(
        "none",
        description="State of the buyer's latest purchase for the folder, for the locked screen",
    )
    purchase_id: str | None = None
    rejection_reason: str | None = None
    price: int = Field(..., description="Price shown on the locked screen")

    model_config = {"frozen": True}
