"""
OtpService: one-time codes that prove control of an email address.

- issue(): CSPRNG 6-digit code, replaces any previous challenge for the email
  (delete + insert in one transaction), commits, then sends the email.
- verify(): fails closed; a successful check deletes the row (single use),
  a failed one leaves it for another try until expiry or resend.
- Per-email issuance limits live in Redis (resend cooldown + hourly cap).
"""
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone

import redis
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import OtpRateLimitedError, TransientIOError
from app.models.email_otp import EmailOtp
from app.services.email.transport import EmailTransport, SmtpEmailTransport
from app.utils.metrics import otp_issued_total, otp_rate_limited_total, otp_verifications_total

logger = logging.getLogger(__name__)

OTP_EMAIL_SUBJECT = "DiploMate - Email Verification Code"
OTP_EMAIL_TEXT = (
    "Your verification code is: {code}\n\n"
    "This code expires in {minutes} minutes.\n\n"
    "If you did not request this code, please ignore this email."
)
OTP_EMAIL_HTML = (
    '<div style="font-family: \'Segoe UI\', Tahoma, sans-serif; max-width: 480px; margin: 0 auto; padding: 32px;">'
    '<h1 style="color: #1e293b; font-size: 24px; text-align: center;">DiploMate</h1>'
    '<p style="color: #475569; text-align: center;">Your verification code is:</p>'
    '<h2 style="color: #3b82f6; font-size: 36px; letter-spacing: 8px; text-align: center; font-family: monospace;">{code}</h2>'
    '<p style="color: #94a3b8; font-size: 12px; text-align: center;">'
    "This code expires in {minutes} minutes.<br/>If you did not request this, please ignore this email."
    "</p></div>"
)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def generate_code(length: int | None = None) -> str:
    length = length or settings.otp_length
    return "".join(str(secrets.randbelow(10)) for _ in range(length))


def _as_utc(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


class OtpIssueLimiter:
    """
    Redis counters per email: one issuance per cooldown, N per window.
    Fail open if Redis is down (the cooldown is also enforced client side).
    """

    def __init__(self, client: redis.Redis | None = None) -> None:
        self.client = client or redis.Redis.from_url(settings.redis_url, decode_responses=True)

    def check(self, email: str) -> None:
        try:
            cooldown_key = f"otp:cooldown:{email}"
            if not self.client.set(cooldown_key, "1", nx=True, ex=settings.otp_resend_cooldown_seconds):
                ttl = self.client.ttl(cooldown_key)
                self._refuse(email, ttl if ttl and ttl > 0 else settings.otp_resend_cooldown_seconds)

            window_key = f"otp:issued:{email}"
            issued = self.client.incr(window_key)
            if issued == 1:
                self.client.expire(window_key, settings.otp_issue_window_seconds)
            if issued > settings.otp_max_issues_per_window:
                ttl = self.client.ttl(window_key)
                self._refuse(email, ttl if ttl and ttl > 0 else settings.otp_issue_window_seconds)
        except redis.RedisError as e:
            logger.warning("otp_rate_limit_redis_error", extra={"email": email, "error": str(e)})

    @staticmethod
    def _refuse(email: str, retry_after: int) -> None:
        otp_rate_limited_total.inc()
        logger.warning("otp_rate_limited", extra={"email": email, "retry_after": retry_after})
        raise OtpRateLimitedError(retry_after=int(retry_after))


class OtpService:
    def __init__(
        self,
        db: Session,
        transport: EmailTransport | None = None,
        limiter: OtpIssueLimiter | None = None,
    ) -> None:
        self.db = db
        self.transport = transport or SmtpEmailTransport()
        self.limiter = limiter or OtpIssueLimiter()

    def get_challenge(self, email: str) -> EmailOtp | None:
        return self.db.query(EmailOtp).filter(EmailOtp.email == normalize_email(email)).one_or_none()

    def issue(self, email: str) -> str:
        """
        Store a fresh challenge and email it. Returns the code.
        The row is committed before sending: a failed send raises TransientIOError
        but the challenge stays valid and can be resent.
        """
        email = normalize_email(email)
        self.limiter.check(email)

        code = generate_code()
        self._store(email, code)
        otp_issued_total.inc()
        logger.info("otp_issued", extra={"email": email})

        minutes = settings.otp_ttl_seconds // 60
        self.transport.send(
            email,
            OTP_EMAIL_SUBJECT,
            OTP_EMAIL_TEXT.format(code=code, minutes=minutes),
            OTP_EMAIL_HTML.format(code=code, minutes=minutes),
        )
        return code

    def _store(self, email: str, code: str) -> None:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=settings.otp_ttl_seconds)
        # Two attempts: a concurrent issue for the same email may win the insert race.
        for attempt in (1, 2):
            try:
                existing = self.get_challenge(email)
                if existing is not None:
                    self.db.delete(existing)
                    self.db.flush()
                self.db.add(EmailOtp(email=email, otp=code, expires_at=expires_at))
                self.db.commit()
                return
            except IntegrityError:
                self.db.rollback()
                if attempt == 2:
                    raise TransientIOError()
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error("otp_store_failed", extra={"email": email, "error": str(e)})
                raise TransientIOError() from e

    def verify(self, email: str, code: str) -> bool:
        email = normalize_email(email)
        code = (code or "").strip()
        valid = self._check(email, code)
        otp_verifications_total.labels(result="valid" if valid else "invalid").inc()
        logger.info("otp_verified" if valid else "otp_rejected", extra={"email": email})
        return valid

    def _check(self, email: str, code: str) -> bool:
        if len(code) != settings.otp_length or not code.isdigit():
            return False
        challenge = self.get_challenge(email)
        if challenge is None:
            return False
        if datetime.now(timezone.utc) > _as_utc(challenge.expires_at):
            return False
        if not hmac.compare_digest(challenge.otp, code):
            return False
        # Consume: conditional delete, so of two racing verifications only one wins.
        result = self.db.execute(
            delete(EmailOtp).where(EmailOtp.email == email, EmailOtp.otp == code)
        )
        self.db.commit()
        return result.rowcount == 1
