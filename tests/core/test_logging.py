import json
import logging

from app.core.logging import JsonFormatter, mask_email


def _record(**extra):
    record = logging.LogRecord("app.test", logging.INFO, __file__, 1, "otp_issued", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_mask_email():
    assert mask_email("student@example.com") == "s***@example.com"
    assert mask_email("not-an-email") == "***"


def test_formatter_masks_email_and_keeps_whitelisted_fields():
    line = JsonFormatter().format(_record(email="student@example.com", user_id="u1", password="x"))
    payload = json.loads(line)

    assert payload["message"] == "otp_issued"
    assert payload["level"] == "INFO"
    assert payload["email"] == "s***@example.com"
    assert payload["user_id"] == "u1"
    assert "password" not in payload


def test_formatter_without_masking():
    payload = json.loads(JsonFormatter(mask_emails=False).format(_record(email="student@example.com")))
    assert payload["email"] == "student@example.com"
