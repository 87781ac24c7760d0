"""
Student/admin authentication routes.
Sign-up is a two-step OTP flow; sign-in enforces the device binding (students only).
Sign-in is rate limited per client IP.
"""
from fastapi import APIRouter, Body, Depends, HTTPException, Request, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

from app.api.deps import (
    get_access_token,
    get_current_account,
    get_identity_provider,
    get_request_device,
)
from app.db.session import get_db
from app.device.fingerprint import RequestDeviceFingerprint
from app.schemas.accounts import AccountProfile, SignInRequest, SignInResponse
from app.services.auth.authenticator import SessionAuthenticator
from app.services.auth.login_rate_limit import (
    check_login_rate_limit,
    get_client_ip,
    reset_login_attempts,
    retry_after_seconds,
)
from app.services.identity.provider import IdentityProvider
from app.services.otp.service import normalize_email
from app.services.registration.service import (
    RegistrationForm,
    RegistrationService,
    RegistrationStatus,
)

router = APIRouter(prefix="/auth", tags=["auth"])


class RegisterRequest(BaseModel):
    email: str
    password: str
    full_name: str
    department: str | None = None
    semester: str | None = None


class ResendRequest(BaseModel):
    email: EmailStr


class VerifyRequest(BaseModel):
    email: EmailStr
    code: str = Field(..., min_length=1, max_length=12)
    password: str


def get_registration_service(
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> RegistrationService:
    return RegistrationService(db, identity)


def get_authenticator(
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> SessionAuthenticator:
    return SessionAuthenticator(db, identity)


def _throttle(subject: str, scope: str, detail: str = "Too many login attempts. Try again later.") -> None:
    if not check_login_rate_limit(subject, scope=scope):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=detail,
            headers={"Retry-After": str(retry_after_seconds(subject, scope))},
        )


def _rate_limit(request: Request, scope: str) -> str:
    client_ip = get_client_ip(request)
    _throttle(client_ip, scope)
    return client_ip


@router.post("/register", response_model=RegistrationStatus)
def register(
    body: RegisterRequest = Body(...),
    service: RegistrationService = Depends(get_registration_service),
):
    """Step 1: validate the form and email a 6-digit code."""
    return service.start(RegistrationForm(**body.model_dump()))


@router.post("/register/resend", response_model=RegistrationStatus)
def register_resend(
    body: ResendRequest = Body(...),
    service: RegistrationService = Depends(get_registration_service),
):
    """New code, new 5-minute window. Limited to one per minute per email."""
    return service.resend(body.email)


@router.post("/register/verify", response_model=AccountProfile, status_code=status.HTTP_201_CREATED)
def register_verify(
    request: Request,
    body: VerifyRequest = Body(...),
    service: RegistrationService = Depends(get_registration_service),
):
    """
    Step 2: check the code and create the account. The user signs in afterwards.
    Attempts are counted per IP and per email, so guessing a code is bounded either way.
    """
    detail = "Too many verification attempts. Try again later."
    _throttle(get_client_ip(request), "otp_verify", detail)
    _throttle(normalize_email(body.email), "otp_verify", detail)
    return service.verify(body.email, body.code, body.password)


@router.post("/sign-in", response_model=SignInResponse)
def sign_in(
    request: Request,
    body: SignInRequest = Body(...),
    device: RequestDeviceFingerprint = Depends(get_request_device),
    authenticator: SessionAuthenticator = Depends(get_authenticator),
):
    """Student sign-in. Requires the install's X-Device-Id header."""
    client_ip = _rate_limit(request, "student")
    result = authenticator.sign_in(body.email, body.password, device)
    reset_login_attempts(client_ip, "student")
    return SignInResponse(access_token=result.access_token, profile=result.profile)


@router.post("/admin/sign-in", response_model=SignInResponse)
def admin_sign_in(
    request: Request,
    body: SignInRequest = Body(...),
    authenticator: SessionAuthenticator = Depends(get_authenticator),
):
    """Admin sign-in: no device binding, non-admin accounts are refused."""
    client_ip = _rate_limit(request, "admin")
    result = authenticator.sign_in(body.email, body.password, device=None, admin_only=True)
    reset_login_attempts(client_ip, "admin")
    return SignInResponse(access_token=result.access_token, profile=result.profile)


@router.post("/sign-out")
def sign_out(
    token: str = Depends(get_access_token),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    identity.sign_out(token)
    return {"message": "Successfully signed out"}


@router.get("/me", response_model=AccountProfile)
def get_me(profile: AccountProfile = Depends(get_current_account)):
    return profile
