"""
require_bundle_access guard on a content route: 403 until the purchase is approved.
"""
from unittest.mock import MagicMock

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from app.api.deps import get_identity_provider, get_token_denylist, require_bundle_access
from app.db.session import get_db
from app.main import access_core_error_handler
from app.core.errors import AccessCoreError
from app.schemas.accounts import AccountProfile
from app.schemas.purchases import BuyerInfo
from app.services.accounts.service import AccountService
from app.services.auth.jwt import TokenDenylist
from app.services.purchases.service import PurchaseService

PASSWORD = "secret-pass"


@pytest.fixture
def content_app(db, identity, redis_client):
    content = FastAPI()
    content.add_exception_handler(AccessCoreError, access_core_error_handler)

    @content.get("/bundles/{bundle_id}/notes")
    def notes(bundle_id: str, profile: AccountProfile = Depends(require_bundle_access)):
        return {"bundle_id": bundle_id, "reader": profile.id}

    content.dependency_overrides[get_db] = lambda: db
    content.dependency_overrides[get_identity_provider] = lambda: identity
    content.dependency_overrides[get_token_denylist] = lambda: TokenDenylist(client=redis_client)
    return TestClient(content)


def _student_token(db, identity):
    user = identity.sign_up("s@example.com", PASSWORD, {"role": "student"}).user
    AccountService(db).upsert_profile(user.id, "s@example.com")
    return user.id, identity.sign_in("s@example.com", PASSWORD).access_token


def test_notes_locked_until_approved(db, identity, content_app):
    user_id, token = _student_token(db, identity)
    headers = {"Authorization": f"Bearer {token}"}

    assert content_app.get("/bundles/B1/notes", headers=headers).status_code == 403

    purchases = PurchaseService(db, storage=MagicMock())
    buyer = BuyerInfo(buyer_name="Asha", phone="9876543210", account_holder_name="Asha K")
    purchase = purchases.create(user_id, "B1", "https://cdn.example.com/p.png", buyer)
    assert content_app.get("/bundles/B1/notes", headers=headers).status_code == 403

    purchases.approve(purchase.id, "admin-1")
    resp = content_app.get("/bundles/B1/notes", headers=headers)
    assert resp.status_code == 200
    assert resp.json() == {"bundle_id": "B1", "reader": user_id}

    assert content_app.get("/bundles/B2/notes", headers=headers).status_code == 403


def test_notes_require_sign_in(content_app):
    assert content_app.get("/bundles/B1/notes").status_code == 401
