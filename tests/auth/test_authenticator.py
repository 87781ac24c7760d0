"""Tests for SessionAuthenticator: device binding on sign-in, admin path, failure policy."""
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from app.core.config import settings
from app.core.errors import (
    AuthenticationError,
    DeviceConflictError,
    TransientIOError,
    ValidationError,
)
from app.device.fingerprint import RequestDeviceFingerprint
from app.models.account import AccountRole
from app.services.accounts.service import AccountService
from app.services.auth.authenticator import SessionAuthenticator

PASSWORD = "secret-pass"


def _register(identity, db, email, role=AccountRole.STUDENT, with_profile=True):
    result = identity.sign_up(email, PASSWORD, {"full_name": "Test User", "role": role.value})
    if with_profile:
        AccountService(db).upsert_profile(result.user.id, email, full_name="Test User", role=role, verified=True)
    return result.user


def _revoked(redis_client):
    return [k for k in redis_client.store if k.startswith("revoked_token:")]


@pytest.fixture
def auth(db, identity):
    return SessionAuthenticator(db, identity)


class TestStudentSignIn:
    def test_first_sign_in_binds_device(self, db, identity, auth):
        user = _register(identity, db, "s@example.com")

        result = auth.sign_in("S@example.com", PASSWORD, RequestDeviceFingerprint("dev-A"))

        assert result.device_bound_now is True
        assert result.access_token
        assert result.profile.device_bound is True
        assert AccountService(db).get_bound_device(user.id) == "dev-A"

    def test_same_device_signs_in_again(self, db, identity, auth):
        _register(identity, db, "s@example.com")
        auth.sign_in("s@example.com", PASSWORD, RequestDeviceFingerprint("dev-A"))

        result = auth.sign_in("s@example.com", PASSWORD, RequestDeviceFingerprint("dev-A"))

        assert result.device_bound_now is False
        assert result.profile.device_bound is True

    def test_other_device_is_refused_and_session_revoked(self, db, identity, auth, redis_client):
        user = _register(identity, db, "s@example.com")
        auth.sign_in("s@example.com", PASSWORD, RequestDeviceFingerprint("dev-A"))

        with pytest.raises(DeviceConflictError) as exc:
            auth.sign_in("s@example.com", PASSWORD, RequestDeviceFingerprint("dev-B"))

        assert exc.value.message == (
            "This account is already registered on another device. Please contact admin to reset."
        )
        assert len(_revoked(redis_client)) == 1
        assert AccountService(db).get_bound_device(user.id) == "dev-A"

    def test_admin_reset_lets_new_device_bind(self, db, identity, auth):
        user = _register(identity, db, "s@example.com")
        auth.sign_in("s@example.com", PASSWORD, RequestDeviceFingerprint("dev-A"))
        AccountService(db).reset_device(user.id)

        result = auth.sign_in("s@example.com", PASSWORD, RequestDeviceFingerprint("dev-B"))

        assert result.device_bound_now is True
        assert AccountService(db).get_bound_device(user.id) == "dev-B"

    def test_missing_device_rejected(self, db, identity, auth, redis_client):
        _register(identity, db, "s@example.com")

        with pytest.raises(ValidationError):
            auth.sign_in("s@example.com", PASSWORD, None)
        assert len(_revoked(redis_client)) == 1


class TestCredentials:
    def test_wrong_password_passes_provider_message(self, db, identity, auth):
        _register(identity, db, "s@example.com")

        with pytest.raises(AuthenticationError) as exc:
            auth.sign_in("s@example.com", "wrong-pass", RequestDeviceFingerprint("dev-A"))
        assert exc.value.message == "Invalid login credentials"

    def test_unknown_email(self, auth):
        with pytest.raises(AuthenticationError):
            auth.sign_in("ghost@example.com", PASSWORD, RequestDeviceFingerprint("dev-A"))

    def test_blank_input(self, auth):
        with pytest.raises(ValidationError):
            auth.sign_in("", "", RequestDeviceFingerprint("dev-A"))


class TestAdminSignIn:
    def test_admin_never_binds_device(self, db, identity, auth):
        user = _register(identity, db, "admin@example.com", role=AccountRole.ADMIN)

        result = auth.sign_in("admin@example.com", PASSWORD, RequestDeviceFingerprint("dev-A"))
        auth.sign_in("admin@example.com", PASSWORD, RequestDeviceFingerprint("dev-B"))
        auth.sign_in("admin@example.com", PASSWORD, None, admin_only=True)

        assert result.profile.is_admin
        assert result.device_bound_now is False
        assert AccountService(db).get_bound_device(user.id) is None

    def test_admin_only_refuses_students(self, db, identity, auth, redis_client):
        _register(identity, db, "s@example.com")

        with pytest.raises(AuthenticationError) as exc:
            auth.sign_in("s@example.com", PASSWORD, None, admin_only=True)
        assert exc.value.message == "Admin access only"
        assert len(_revoked(redis_client)) == 1


class TestProfileFallback:
    def test_missing_profile_is_rebuilt_from_metadata(self, db, identity, auth):
        user = _register(identity, db, "s@example.com", with_profile=False)

        result = auth.sign_in("s@example.com", PASSWORD, RequestDeviceFingerprint("dev-A"))

        account = AccountService(db).get(user.id)
        assert account is not None
        assert account.full_name == "Test User"
        assert account.device_id == "dev-A"
        assert result.profile.persisted is True

    def test_invalid_role_in_metadata(self, db, identity, auth):
        identity.sign_up("odd@example.com", PASSWORD, {"role": "lecturer"})

        with pytest.raises(AuthenticationError) as exc:
            auth.sign_in("odd@example.com", PASSWORD, RequestDeviceFingerprint("dev-A"))
        assert "misconfigured" in exc.value.message


class TestDeviceCheckFailure:
    @staticmethod
    def _db_down(*args, **kwargs):
        raise OperationalError("UPDATE accounts", {}, Exception("connection lost"))

    def test_fail_open_lets_user_in(self, db, identity, auth):
        _register(identity, db, "s@example.com")

        with patch.object(AccountService, "bind_device_if_unbound", side_effect=self._db_down):
            result = auth.sign_in("s@example.com", PASSWORD, RequestDeviceFingerprint("dev-A"))

        assert result.access_token
        assert result.device_bound_now is False

    def test_fail_closed_denies_and_revokes(self, db, identity, auth, redis_client):
        _register(identity, db, "s@example.com")

        with patch.object(settings, "device_check_fail_open", False), patch.object(
            AccountService, "bind_device_if_unbound", side_effect=self._db_down
        ):
            with pytest.raises(TransientIOError):
                auth.sign_in("s@example.com", PASSWORD, RequestDeviceFingerprint("dev-A"))

        assert len(_revoked(redis_client)) == 1
