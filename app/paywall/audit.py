"""
Access audit: one structured log line per denied content request.
"""
from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


def record_access_denied(user_id: str, bundle_id: str, purchase_state: str) -> None:
    """Called by the gate whenever content is refused; no DB writes on the read path."""
    logger.info(
        "paywall_access_denied",
        extra={
            "user_id": user_id,
            "bundle_id": bundle_id,
            "status": purchase_state,
        },
    )
