"""
Device fingerprint providers: stable per-install id, never empty.
"""
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory
from uuid import UUID

from app.core.errors import ValidationError
from app.device.fingerprint import InstallDeviceFingerprint, RequestDeviceFingerprint


class TestInstallDeviceFingerprint(unittest.TestCase):
    def setUp(self):
        self._tmp = TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        self.path = self.tmp / "nested" / "device_id"

    def tearDown(self):
        self._tmp.cleanup()

    def test_native_id_wins(self):
        provider = InstallDeviceFingerprint(native_source=lambda: "android-123", storage_path=self.path)
        self.assertEqual(provider.get_device_id(), "android-123")
        self.assertFalse(self.path.exists())

    def test_generated_id_is_persisted_and_stable(self):
        first = InstallDeviceFingerprint(storage_path=self.path).get_device_id()
        UUID(first)  # valid uuid
        self.assertEqual(self.path.read_text(encoding="utf-8"), first)
        # a fresh provider (app restart) reads the same value back
        self.assertEqual(InstallDeviceFingerprint(storage_path=self.path).get_device_id(), first)

    def test_native_failure_falls_back_to_local_id(self):
        def broken():
            raise RuntimeError("plugin unavailable")

        provider = InstallDeviceFingerprint(native_source=broken, storage_path=self.path)
        device_id = provider.get_device_id()
        self.assertTrue(device_id)
        self.assertEqual(provider.get_device_id(), device_id)

    def test_empty_native_id_falls_back(self):
        provider = InstallDeviceFingerprint(native_source=lambda: "  ", storage_path=self.path)
        self.assertEqual(provider.get_device_id(), self.path.read_text(encoding="utf-8"))

    def test_unwritable_storage_keeps_id_in_memory(self):
        blocker = self.tmp / "blocker"
        blocker.write_text("not a directory", encoding="utf-8")
        provider = InstallDeviceFingerprint(storage_path=blocker / "device_id")
        first = provider.get_device_id()
        self.assertTrue(first)
        self.assertEqual(provider.get_device_id(), first)


class TestRequestDeviceFingerprint(unittest.TestCase):
    def test_header_value_is_stripped(self):
        self.assertEqual(RequestDeviceFingerprint("  abc ").get_device_id(), "abc")

    def test_missing_header_rejected(self):
        for value in (None, "", "   "):
            with self.assertRaises(ValidationError):
                RequestDeviceFingerprint(value)

    def test_too_long_rejected(self):
        with self.assertRaises(ValidationError):
            RequestDeviceFingerprint("x" * 129)
