"""
RegistrationService: sign-up gated by an email OTP.

Per-email flow state (signed, in Redis):
    form -> otp_sent -> verified -> account_created

- start():  validate the form, remember the non-secret profile fields, issue the OTP.
- resend(): new code, new 5-minute window; the previous code stops working.
- verify(): check the code, create the identity, then upsert the profile.
  A failed profile write is logged and swallowed: sign-in rebuilds the profile
  from identity metadata. Raw passwords never enter the state store.
"""
import logging
from enum import Enum

from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import AuthenticationError, OtpInvalidOrExpired, ValidationError
from app.models.account import AccountRole
from app.schemas.accounts import AccountProfile
from app.services.accounts.service import AccountService
from app.services.auth.authenticator import profile_from_account
from app.services.identity.provider import (
    ALREADY_REGISTERED,
    IdentityProvider,
    hash_password,
    verify_password,
)
from app.services.otp.service import OtpService, normalize_email
from app.services.state import StateStore
from app.utils.metrics import registrations_total

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
MAX_NAME_LENGTH = 120


class RegistrationStep(str, Enum):
    FORM = "form"
    OTP_SENT = "otp_sent"
    VERIFIED = "verified"
    ACCOUNT_CREATED = "account_created"


class RegistrationForm(BaseModel):
    email: str
    password: str
    full_name: str
    department: str | None = None
    semester: str | None = None


class RegistrationStatus(BaseModel):
    email: str
    step: RegistrationStep
    resend_in: int = 0
    expires_in: int = 0


def _clean(value: str | None) -> str | None:
    value = (value or "").strip()
    return value or None


def validate_password(password: str | None) -> str:
    if not password:
        raise ValidationError("Please fill in all required fields.")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError("Password must be at least 6 characters.")
    return password


def validate_form(form: RegistrationForm) -> RegistrationForm:
    email = normalize_email(form.email)
    full_name = _clean(form.full_name)
    if not email or not full_name or not form.password:
        raise ValidationError("Please fill in all required fields.")
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError:
        raise ValidationError("Please enter a valid email address.") from None
    if len(full_name) > MAX_NAME_LENGTH:
        raise ValidationError("Name is too long.")
    validate_password(form.password)
    return RegistrationForm(
        email=email,
        password=form.password,
        full_name=full_name,
        department=_clean(form.department),
        semester=_clean(form.semester),
    )


class RegistrationService:
    def __init__(
        self,
        db: Session,
        identity: IdentityProvider,
        otp: OtpService | None = None,
        accounts: AccountService | None = None,
        state: StateStore | None = None,
    ) -> None:
        self.db = db
        self.identity = identity
        self.otp = otp or OtpService(db)
        self.accounts = accounts or AccountService(db)
        self.state = state or StateStore("registration")

    def _status(self, email: str, step: RegistrationStep) -> RegistrationStatus:
        sent = step == RegistrationStep.OTP_SENT
        return RegistrationStatus(
            email=email,
            step=step,
            resend_in=settings.otp_resend_cooldown_seconds if sent else 0,
            expires_in=settings.otp_ttl_seconds if sent else 0,
        )

    def get_step(self, email: str) -> RegistrationStep:
        data = self.state.get(normalize_email(email))
        try:
            return RegistrationStep(data.get("step", RegistrationStep.FORM.value))
        except ValueError:
            return RegistrationStep.FORM

    def start(self, form: RegistrationForm) -> RegistrationStatus:
        """FORM -> OTP_SENT. Validation errors are raised before anything is written."""
        form = validate_form(form)
        if self.accounts.get_by_email(form.email) is not None:
            raise ValidationError("An account with this email already exists. Please sign in.")

        # Stored before sending: a failed send still leaves a resendable flow.
        self.state.set(form.email, {
            "step": RegistrationStep.OTP_SENT.value,
            "full_name": form.full_name,
            "department": form.department,
            "semester": form.semester,
        })
        self.otp.issue(form.email)
        registrations_total.labels(step="otp_sent").inc()
        logger.info("registration_otp_sent", extra={"email": form.email})
        return self._status(form.email, RegistrationStep.OTP_SENT)

    def resend(self, email: str) -> RegistrationStatus:
        email = normalize_email(email)
        if self.get_step(email) != RegistrationStep.OTP_SENT:
            raise ValidationError("No pending registration for this email. Please sign up again.")
        self.otp.issue(email)
        logger.info("registration_otp_resent", extra={"email": email})
        return self._status(email, RegistrationStep.OTP_SENT)

    def verify(self, email: str, code: str, password: str) -> AccountProfile:
        """
        OTP_SENT -> VERIFIED -> ACCOUNT_CREATED.
        A flow left at VERIFIED (identity sign-up failed) finishes only with the
        password given when the code was accepted; its bcrypt hash is kept in the
        signed state until the account exists.
        """
        email = normalize_email(email)
        password = validate_password(password)
        data = self.state.get(email)
        step = data.get("step")

        if step == RegistrationStep.OTP_SENT.value:
            if not self.otp.verify(email, code):
                raise OtpInvalidOrExpired()
            data = self.state.update(email, {
                "step": RegistrationStep.VERIFIED.value,
                "password_hash": hash_password(password),
            })
            registrations_total.labels(step="verified").inc()
        elif step == RegistrationStep.VERIFIED.value:
            if not verify_password(password, data.get("password_hash") or ""):
                logger.warning("registration_retry_password_mismatch", extra={"email": email})
                raise AuthenticationError(
                    "Use the password you entered when verifying your email, or sign up again."
                )
        else:
            raise ValidationError("No pending registration for this email. Please sign up again.")

        metadata = {
            "full_name": data.get("full_name"),
            "role": AccountRole.STUDENT.value,
            "department": data.get("department"),
            "semester": data.get("semester"),
        }
        result = self.identity.sign_up(email, password, metadata)
        if result.error or result.user is None:
            if result.error == ALREADY_REGISTERED:
                self.state.clear(email)
                raise ValidationError("An account with this email already exists. Please sign in.")
            raise AuthenticationError(result.error or "Sign up failed")

        user = result.user
        profile = self._save_profile(user.id, email, metadata)
        self.state.clear(email)
        registrations_total.labels(step="account_created").inc()
        logger.info("registration_completed", extra={"user_id": user.id, "email": email})
        return profile

    def _save_profile(self, user_id: str, email: str, metadata: dict) -> AccountProfile:
        try:
            account = self.accounts.upsert_profile(
                account_id=user_id,
                email=email,
                full_name=metadata["full_name"],
                role=AccountRole.STUDENT,
                department=metadata["department"],
                semester=metadata["semester"],
                verified=True,
            )
            return profile_from_account(account)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning("registration_profile_upsert_failed", extra={"user_id": user_id, "error": str(e)})
        return AccountProfile(
            id=user_id,
            email=email,
            role=AccountRole.STUDENT,
            full_name=metadata["full_name"],
            department=metadata["department"],
            semester=metadata["semester"],
            persisted=False,
        )
