"""
SessionAuthenticator: sign-in with "one student account, one device".

1. Credentials are checked by the identity provider; its error goes back verbatim.
2. Admins skip device binding entirely.
3. Students: bind-if-null in a single conditional UPDATE; a different bound
   device revokes the fresh session and raises DeviceConflictError.
4. If the binding lookup itself fails, settings.device_check_fail_open decides:
   True logs and lets the user in, False revokes and raises TransientIOError.

A missing profile row is synthesized from identity metadata (and re-saved)
so an account whose profile write failed at registration can still sign in.
"""
import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import (
    AuthenticationError,
    DeviceConflictError,
    TransientIOError,
    ValidationError,
)
from app.device.fingerprint import DeviceFingerprintProvider
from app.models.account import Account
from app.schemas.accounts import AccountProfile
from app.services.accounts.service import AccountService
from app.services.identity.provider import IdentityProvider, IdentityUser
from app.utils.metrics import device_bindings_total, sign_in_total

logger = logging.getLogger("auth")

ADMIN_ONLY = "Admin access only"
ACCOUNT_MISCONFIGURED = "Account is misconfigured. Please contact admin."


@dataclass
class SignInResult:
    profile: AccountProfile
    access_token: str
    device_bound_now: bool = False


class _DeviceLookupFailed(Exception):
    pass


def profile_from_account(account: Account) -> AccountProfile:
    return AccountProfile(
        id=account.id,
        email=account.email,
        role=account.account_role,
        full_name=account.full_name,
        department=account.department,
        semester=account.semester,
        verified_at=account.verified_at,
        device_bound=account.device_id is not None,
    )


def resolve_profile(accounts: AccountService, user: IdentityUser) -> AccountProfile:
    """
    Persisted profile, or one synthesized from provider metadata.
    The synthesized profile is written back; a failed write is logged and swallowed.
    Raises ValueError for an unknown role, SQLAlchemyError if the read fails.
    """
    account = accounts.get(user.id)
    if account is not None:
        return profile_from_account(account)

    fields = AccountService.profile_from_metadata(user.id, user.email, user.user_metadata)
    logger.warning("profile_missing_synthesized", extra={"user_id": user.id})
    try:
        account = accounts.upsert_profile(verified=True, **fields)
        return profile_from_account(account)
    except SQLAlchemyError as e:
        accounts.db.rollback()
        logger.warning("profile_upsert_retry_failed", extra={"user_id": user.id, "error": str(e)})
    return AccountProfile(
        id=user.id,
        email=user.email,
        role=fields["role"],
        full_name=fields["full_name"],
        department=fields["department"],
        semester=fields["semester"],
        persisted=False,
    )


class SessionAuthenticator:
    def __init__(
        self,
        db: Session,
        identity: IdentityProvider,
        accounts: AccountService | None = None,
    ) -> None:
        self.db = db
        self.identity = identity
        self.accounts = accounts or AccountService(db)

    def sign_in(
        self,
        email: str,
        password: str,
        device: DeviceFingerprintProvider | None,
        admin_only: bool = False,
    ) -> SignInResult:
        email = (email or "").strip().lower()
        if not email or not password:
            raise ValidationError("Please enter email and password.")

        result = self.identity.sign_in(email, password)
        if result.error or result.user is None or not result.access_token:
            sign_in_total.labels(result="bad_credentials").inc()
            logger.info("sign_in_failed", extra={"email": email})
            raise AuthenticationError(result.error or "Invalid login credentials")

        user, token = result.user, result.access_token
        try:
            profile = resolve_profile(self.accounts, user)
        except ValueError:
            self._revoke(token, user.id)
            logger.error("account_role_invalid", extra={"user_id": user.id})
            raise AuthenticationError(ACCOUNT_MISCONFIGURED)
        except SQLAlchemyError as e:
            self.db.rollback()
            profile = self._profile_lookup_failed(user, token, e)

        if admin_only and not profile.is_admin:
            self._revoke(token, user.id)
            sign_in_total.labels(result="not_admin").inc()
            raise AuthenticationError(ADMIN_ONLY)

        if profile.is_admin:
            sign_in_total.labels(result="success").inc()
            logger.info("sign_in_admin", extra={"user_id": user.id})
            return SignInResult(profile=profile, access_token=token)

        if device is None:
            self._revoke(token, user.id)
            raise ValidationError("Device identifier is required")

        bound_now = self._enforce_device(user.id, device.get_device_id(), token)
        if bound_now:
            profile = profile.model_copy(update={"device_bound": True})
        sign_in_total.labels(result="success").inc()
        logger.info("sign_in_student", extra={"user_id": user.id})
        return SignInResult(profile=profile, access_token=token, device_bound_now=bound_now)

    def _enforce_device(self, account_id: str, device_id: str, token: str) -> bool:
        try:
            if self.accounts.bind_device_if_unbound(account_id, device_id):
                device_bindings_total.labels(event="bound").inc()
                logger.info("device_bound", extra={"user_id": account_id})
                return True
            current = self.accounts.get_bound_device(account_id)
            if current is None:
                # No row to bind against (profile never persisted).
                raise _DeviceLookupFailed("account row missing")
        except (SQLAlchemyError, _DeviceLookupFailed) as e:
            if isinstance(e, SQLAlchemyError):
                self.db.rollback()
            return self._device_lookup_failed(account_id, token, e)

        if current != device_id:
            self._revoke(token, account_id)
            sign_in_total.labels(result="device_conflict").inc()
            logger.warning("device_conflict", extra={"user_id": account_id})
            raise DeviceConflictError()
        return False

    def _device_lookup_failed(self, account_id: str, token: str, error: Exception) -> bool:
        sign_in_total.labels(result="device_check_failed").inc()
        if settings.device_check_fail_open:
            logger.warning(
                "device_check_failed_open",
                extra={"user_id": account_id, "error": str(error)},
            )
            return False
        self._revoke(token, account_id)
        logger.error("device_check_failed_closed", extra={"user_id": account_id, "error": str(error)})
        raise TransientIOError()

    def _profile_lookup_failed(self, user: IdentityUser, token: str, error: Exception) -> AccountProfile:
        # Same policy as the device lookup: the role cannot be trusted from the DB right now.
        self._device_lookup_failed(user.id, token, error)
        fields = AccountService.profile_from_metadata(user.id, user.email, user.user_metadata)
        return AccountProfile(
            id=user.id,
            email=user.email,
            role=fields["role"],
            full_name=fields["full_name"],
            department=fields["department"],
            semester=fields["semester"],
            persisted=False,
        )

    def _revoke(self, token: str, account_id: str) -> None:
        try:
            self.identity.sign_out(token)
        except Exception as e:
            # The token is never handed to the client on this path.
            logger.warning("session_revoke_failed", extra={"user_id": account_id, "error": str(e)})
