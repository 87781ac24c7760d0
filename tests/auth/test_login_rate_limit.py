from unittest.mock import MagicMock, patch

import pytest
import redis

from app.core.config import settings
from app.services.auth.login_rate_limit import (
    check_login_rate_limit,
    get_client_ip,
    reset_login_attempts,
    retry_after_seconds,
)


@pytest.fixture
def limited(redis_client):
    with patch("app.services.auth.login_rate_limit._client", return_value=redis_client):
        yield redis_client


def test_blocks_after_limit(limited):
    results = [check_login_rate_limit("10.0.0.1") for _ in range(6)]
    # admin sign-in has its own counter
    assert check_login_rate_limit("10.0.0.1", scope="admin") is True

    assert results == [True] * 5 + [False]


def test_admin_scope_is_stricter(limited):
    results = [check_login_rate_limit("10.0.0.1", scope="admin") for _ in range(4)]

    assert results == [True] * settings.admin_login_rate_limit_attempts + [False]


def test_reset_clears_counter(limited):
    for _ in range(5):
        check_login_rate_limit("10.0.0.1")
    reset_login_attempts("10.0.0.1")

    assert check_login_rate_limit("10.0.0.1") is True


def test_unknown_scope_rejected(limited):
    with pytest.raises(ValueError):
        check_login_rate_limit("10.0.0.1", scope="lecturer")


def test_retry_after_uses_key_ttl(limited):
    assert retry_after_seconds("10.0.0.1") == 42


def test_redis_down_allows_login():
    broken = MagicMock()
    broken.incr.side_effect = redis.ConnectionError("down")
    broken.ttl.side_effect = redis.ConnectionError("down")
    with patch("app.services.auth.login_rate_limit._client", return_value=broken):
        assert check_login_rate_limit("10.0.0.1") is True
        assert retry_after_seconds("10.0.0.1") == settings.login_rate_limit_window_seconds


def test_forwarded_header_ignored_outside_production():
    request = MagicMock()
    request.headers = {"X-Forwarded-For": "1.2.3.4"}
    request.client.host = "10.0.0.9"
    assert get_client_ip(request) == "10.0.0.9"


def test_otp_verify_scope_counts_ip_and_email_separately(limited):
    email_results = [check_login_rate_limit("a@example.com", scope="otp_verify") for _ in range(11)]

    assert email_results == [True] * settings.otp_verify_rate_limit_attempts + [False]
    assert check_login_rate_limit("10.0.0.1", scope="otp_verify") is True
    assert "login_attempts:otp_verify:a@example.com" in limited.store
