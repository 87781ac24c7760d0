"""Tests for OtpService: issuance, single use, expiry, send failures, per-email limits."""
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
import redis

from app.core.errors import OtpRateLimitedError, TransientIOError
from app.models.email_otp import EmailOtp
from app.services.otp.service import OTP_EMAIL_SUBJECT, OtpIssueLimiter, OtpService, generate_code


@pytest.fixture
def service(db, transport):
    return OtpService(db, transport=transport, limiter=MagicMock())


class TestIssue:
    def test_issue_stores_and_sends(self, db, service, transport):
        code = service.issue("  Student@Example.com ")

        assert len(code) == 6 and code.isdigit()
        row = db.query(EmailOtp).one()
        assert row.email == "student@example.com"
        assert row.otp == code
        to, subject, text, html = transport.send.call_args[0]
        assert to == "student@example.com"
        assert subject == OTP_EMAIL_SUBJECT
        assert code in text and code in html

    def test_reissue_keeps_single_row_and_only_latest_code(self, db, service):
        codes = [service.issue("a@example.com") for _ in range(4)]

        assert db.query(EmailOtp).count() == 1
        assert db.query(EmailOtp).one().otp == codes[-1]
        for old in codes[:-1]:
            if old != codes[-1]:
                assert service.verify("a@example.com", old) is False
        assert service.verify("a@example.com", codes[-1]) is True

    def test_send_failure_keeps_challenge(self, db, service, transport):
        transport.send.side_effect = TransientIOError("Could not send the email. Please try again.")

        with pytest.raises(TransientIOError):
            service.issue("a@example.com")

        assert db.query(EmailOtp).count() == 1

    def test_generate_code_is_zero_padded_digits(self):
        for _ in range(50):
            code = generate_code()
            assert len(code) == 6 and code.isdigit()


class TestVerify:
    def test_code_is_single_use(self, service):
        code = service.issue("a@example.com")

        assert service.verify("a@example.com", code) is True
        assert service.verify("a@example.com", code) is False

    def test_failed_attempt_leaves_challenge(self, db, service):
        code = service.issue("a@example.com")
        wrong = "000000" if code != "000000" else "111111"

        assert service.verify("a@example.com", wrong) is False
        assert db.query(EmailOtp).count() == 1
        assert service.verify("A@example.com", code) is True

    def test_expired_code_rejected(self, db, service):
        code = service.issue("a@example.com")
        row = db.query(EmailOtp).one()
        row.expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)
        db.commit()

        assert service.verify("a@example.com", code) is False

    def test_malformed_code_rejected(self, service):
        service.issue("a@example.com")
        for code in ("", "12345", "1234567", "abcdef", None):
            assert service.verify("a@example.com", code) is False

    def test_no_challenge(self, service):
        assert service.verify("nobody@example.com", "123456") is False


class TestIssueLimiter:
    def test_cooldown_refuses_second_request(self, redis_client):
        limiter = OtpIssueLimiter(client=redis_client)
        limiter.check("a@example.com")

        with pytest.raises(OtpRateLimitedError) as exc:
            limiter.check("a@example.com")
        assert exc.value.retry_after == 42

    def test_hourly_cap(self, redis_client):
        limiter = OtpIssueLimiter(client=redis_client)
        for _ in range(5):
            redis_client.store.pop("otp:cooldown:a@example.com", None)
            limiter.check("a@example.com")

        redis_client.store.pop("otp:cooldown:a@example.com", None)
        with pytest.raises(OtpRateLimitedError):
            limiter.check("a@example.com")

    def test_limits_are_per_email(self, redis_client):
        limiter = OtpIssueLimiter(client=redis_client)
        limiter.check("a@example.com")
        limiter.check("b@example.com")

    def test_redis_down_fails_open(self):
        client = MagicMock()
        client.set.side_effect = redis.ConnectionError("down")
        OtpIssueLimiter(client=client).check("a@example.com")

    def test_rate_limited_issue_stores_nothing(self, db, transport, redis_client):
        service = OtpService(db, transport=transport, limiter=OtpIssueLimiter(client=redis_client))
        service.issue("a@example.com")
        first = db.query(EmailOtp).one().otp

        with pytest.raises(OtpRateLimitedError):
            service.issue("a@example.com")

        assert db.query(EmailOtp).one().otp == first
        assert transport.send.call_count == 1
