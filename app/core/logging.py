import json
import logging
from logging.handlers import RotatingFileHandler
from datetime import datetime, timezone

from app.core.config import settings


def mask_email(value: str) -> str:
    """student@example.com -> s***@example.com"""
    local, sep, domain = str(value).partition("@")
    if not sep:
        return "***"
    return f"{local[:1]}***@{domain}"


class JsonFormatter(logging.Formatter):
    """One JSON object per line: event name as message, plus whitelisted extra fields."""

    # Fields to extract from log record's extra dict
    EXTRA_FIELDS = (
        "user_id", "email", "order_id", "bundle_id", "reviewer_id",
        "status", "error", "ip", "attempts", "retry_after",
        "breaker_name", "old_state", "new_state",
    )

    def __init__(self, mask_emails: bool = True) -> None:
        super().__init__()
        self.mask_emails = mask_emails

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in self.EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is None:
                continue
            if field == "email" and self.mask_emails:
                value = mask_email(value)
            payload[field] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging() -> None:
    formatter = JsonFormatter(mask_emails=settings.log_mask_emails)
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    handlers: list[logging.Handler] = [handler]
    if settings.log_file:
        file_handler = RotatingFileHandler(
            settings.log_file,
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    root = logging.getLogger()
    root.setLevel(settings.log_level.upper())
    root.handlers = handlers
    # python-multipart logs every parsed form part at DEBUG
    logging.getLogger("multipart").setLevel(logging.WARNING)
