"""
Email transport: send(to, subject, text, html) -> None, raises TransientIOError on failure.
SMTP over SSL (Gmail app password by default), guarded by the "email" circuit breaker.
Failures are reported to the caller, never retried here.
"""
import logging
import smtplib
import time
from email.message import EmailMessage
from email.utils import formataddr
from typing import Protocol

import pybreaker

from app.core.config import settings
from app.core.errors import TransientIOError, ValidationError
from app.services.circuit_breaker import get_circuit_breaker
from app.utils.metrics import email_send_duration_seconds, email_send_total

logger = logging.getLogger(__name__)


class EmailTransport(Protocol):
    def send(self, to: str, subject: str, text: str, html: str | None = None) -> None: ...


class SmtpEmailTransport:
    def __init__(self, breaker: pybreaker.CircuitBreaker | None = None) -> None:
        self._breaker = breaker

    @property
    def breaker(self) -> pybreaker.CircuitBreaker:
        if self._breaker is None:
            # refused recipients do not count as SMTP failures
            self._breaker = get_circuit_breaker("email", exclude=[smtplib.SMTPRecipientsRefused])
        return self._breaker

    def build_message(self, to: str, subject: str, text: str, html: str | None = None) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = formataddr((settings.email_from_name, settings.email_sender))
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(text)
        if html:
            msg.add_alternative(html, subtype="html")
        return msg

    def send(self, to: str, subject: str, text: str, html: str | None = None) -> None:
        msg = self.build_message(to, subject, text, html)
        start = time.time()
        try:
            self.breaker.call(self._deliver, msg)
        except smtplib.SMTPRecipientsRefused as e:
            email_send_total.labels(status="refused").inc()
            logger.warning("email_recipient_refused", extra={"email": to})
            raise ValidationError("This email address cannot receive mail.") from e
        except (smtplib.SMTPException, OSError, pybreaker.CircuitBreakerError) as e:
            email_send_total.labels(status="error").inc()
            logger.warning("email_send_failed", extra={"email": to, "error": type(e).__name__})
            raise TransientIOError("Could not send the email. Please try again.") from e
        finally:
            email_send_duration_seconds.observe(time.time() - start)
        email_send_total.labels(status="success").inc()
        logger.info("email_sent", extra={"email": to})

    def _deliver(self, msg: EmailMessage) -> None:
        if settings.smtp_use_ssl:
            with smtplib.SMTP_SSL(settings.smtp_host, settings.smtp_port, timeout=settings.smtp_timeout) as smtp:
                self._login_and_send(smtp, msg)
        else:
            with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=settings.smtp_timeout) as smtp:
                smtp.starttls()
                self._login_and_send(smtp, msg)

    @staticmethod
    def _login_and_send(smtp: smtplib.SMTP, msg: EmailMessage) -> None:
        if settings.smtp_username:
            smtp.login(settings.smtp_username, settings.smtp_password)
        smtp.send_message(msg)
