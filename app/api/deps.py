"""
Request-scoped dependencies: services, current account, device fingerprint, folder access.
"""
from fastapi import Depends, Path, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import AccessDeniedError, AuthenticationError
from app.db.session import get_db
from app.device.fingerprint import RequestDeviceFingerprint
from app.paywall.access import can_access
from app.paywall.audit import record_access_denied
from app.schemas.accounts import AccountProfile
from app.services.accounts.service import AccountService
from app.services.auth.authenticator import resolve_profile
from app.services.auth.jwt import TokenDenylist, decode_access_token
from app.services.identity.provider import IdentityProvider, LocalIdentityProvider

bearer_scheme = HTTPBearer(auto_error=False)

SESSION_EXPIRED = "Session expired. Please sign in again."


def get_identity_provider(db: Session = Depends(get_db)) -> IdentityProvider:
    return LocalIdentityProvider(db)


def get_token_denylist() -> TokenDenylist:
    return TokenDenylist()


def get_request_device(request: Request) -> RequestDeviceFingerprint:
    """Fingerprint sent by the client install; ValidationError if absent."""
    return RequestDeviceFingerprint(request.headers.get(settings.device_id_header))


def get_access_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Please sign in to continue.")
    return credentials.credentials


def get_current_account(
    token: str = Depends(get_access_token),
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
    denylist: TokenDenylist = Depends(get_token_denylist),
) -> AccountProfile:
    claims = decode_access_token(token)
    if denylist.is_revoked(claims["jti"]):
        raise AuthenticationError(SESSION_EXPIRED)
    user = identity.get_user(claims["sub"])
    if user is None:
        raise AuthenticationError(SESSION_EXPIRED)
    try:
        return resolve_profile(AccountService(db), user)
    except ValueError:
        raise AuthenticationError("Account is misconfigured. Please contact admin.") from None


def require_admin(profile: AccountProfile = Depends(get_current_account)) -> AccountProfile:
    if not profile.is_admin:
        raise AccessDeniedError("Admin access only")
    return profile


def require_bundle_access(
    bundle_id: str = Path(...),
    profile: AccountProfile = Depends(get_current_account),
    db: Session = Depends(get_db),
) -> AccountProfile:
    """Guard for content-serving routes: checked against the ledger on every request."""
    if not can_access(db, profile.id, bundle_id):
        record_access_denied(profile.id, bundle_id, "not_approved")
        raise AccessDeniedError()
    return profile
