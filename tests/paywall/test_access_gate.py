"""
Access gate: approved purchase for exactly this (user, folder), re-checked on every call.
"""
from unittest.mock import MagicMock, patch

import pytest

from app.paywall import can_access, decide_access
from app.schemas.purchases import BuyerInfo
from app.services.purchases.service import PurchaseService


@pytest.fixture
def purchases(db):
    return PurchaseService(db, storage=MagicMock())


def _create(purchases, user_id="u1", bundle_id="B1"):
    buyer = BuyerInfo(buyer_name="Priya", phone="9876543210", account_holder_name="Priya S")
    return purchases.create(user_id, bundle_id, "https://cdn.example.com/proof.png", buyer)


class TestCanAccess:
    def test_nothing_purchased(self, db):
        assert can_access(db, "u1", "B1") is False

    def test_blank_ids(self, db):
        assert can_access(db, "", "B1") is False
        assert can_access(db, "u1", "") is False

    def test_follows_review_decisions_immediately(self, db, purchases):
        purchase = _create(purchases)
        assert can_access(db, "u1", "B1") is False

        purchases.approve(purchase.id, "admin-1")
        assert can_access(db, "u1", "B1") is True

        purchases.delete(purchase.id, "admin-1")
        assert can_access(db, "u1", "B1") is False


class TestDecideAccess:
    def test_locked_screen_without_purchase(self, db):
        decision = decide_access(db, "u1", "B1")

        assert decision.allowed is False
        assert decision.purchase_state == "none"
        assert decision.purchase_id is None
        assert decision.price == 199

    def test_pending(self, db, purchases):
        purchase = _create(purchases)

        decision = decide_access(db, "u1", "B1")

        assert decision.allowed is False
        assert decision.purchase_state == "pending"
        assert decision.purchase_id == purchase.id

    def test_rejected_shows_reason(self, db, purchases):
        purchase = _create(purchases)
        purchases.reject(purchase.id, "admin-1", "Amount mismatch")

        decision = decide_access(db, "u1", "B1")

        assert decision.purchase_state == "rejected"
        assert decision.rejection_reason == "Amount mismatch"

    def test_approved(self, db, purchases):
        purchase = _create(purchases)
        purchases.approve(purchase.id, "admin-1")

        decision = decide_access(db, "u1", "B1")

        assert decision.allowed is True
        assert decision.purchase_state == "approved"

    @patch("app.paywall.access.record_access_denied")
    def test_denials_are_recorded(self, record, db):
        decide_access(db, "u1", "B1")
        record.assert_called_once_with("u1", "B1", "none")

    @patch("app.paywall.access.record_access_denied")
    def test_grants_are_not_recorded(self, record, db, purchases):
        purchases.approve(_create(purchases).id, "admin-1")
        decide_access(db, "u1", "B1")
        record.assert_not_called()
