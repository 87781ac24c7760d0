"""
Device fingerprint providers: a stable per-install identifier.

- InstallDeviceFingerprint: platform-supplied id on native installs, otherwise
  a UUID generated once and persisted locally (same value on every later call).
- RequestDeviceFingerprint: server side, the id the calling install sent in the
  X-Device-Id header.

Neither ever returns an empty string.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable, Protocol
from uuid import uuid4

from app.core.config import settings
from app.core.errors import ValidationError

logger = logging.getLogger(__name__)

DEVICE_ID_KEY = "diplomate_device_id"
MAX_DEVICE_ID_LENGTH = 128


class DeviceFingerprintProvider(Protocol):
    def get_device_id(self) -> str: ...


class InstallDeviceFingerprint:
    """
    native_source: callable returning the platform id (e.g. Android ID); None on web.
    The local file plays the role of browser localStorage under DEVICE_ID_KEY.
    """

    def __init__(
        self,
        native_source: Callable[[], str] | None = None,
        storage_path: str | os.PathLike | None = None,
    ) -> None:
        self._native_source = native_source
        self._path = Path(os.path.expanduser(str(storage_path or settings.device_id_file)))
        self._unpersisted_id: str | None = None

    def get_device_id(self) -> str:
        if self._native_source is not None:
            try:
                identifier = (self._native_source() or "").strip()
                if identifier:
                    return identifier
                logger.warning("device_native_id_empty")
            except Exception as e:
                logger.warning("device_native_id_failed", extra={"error": str(e)})
        return self._get_or_create_local_id()

    def _get_or_create_local_id(self) -> str:
        try:
            existing = self._path.read_text(encoding="utf-8").strip()
            if existing:
                return existing
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("device_local_id_unreadable", extra={"error": str(e)})

        if self._unpersisted_id:
            new_id = self._unpersisted_id
        else:
            new_id = str(uuid4())
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(new_id, encoding="utf-8")
            self._unpersisted_id = None
        except OSError as e:
            # Kept in memory so this process keeps returning the same id.
            self._unpersisted_id = new_id
            logger.warning("device_local_id_not_persisted", extra={"error": str(e)})
        return new_id


class RequestDeviceFingerprint:
    """Wraps the header value sent by the client install."""

    def __init__(self, header_value: str | None) -> None:
        value = (header_value or "").strip()
        if not value:
            raise ValidationError("Device identifier is required")
        if len(value) > MAX_DEVICE_ID_LENGTH:
            raise ValidationError("Device identifier is too long")
        self._value = value

    def get_device_id(self) -> str:
        return self._value
