"""Filesystem blob storage for payment screenshots (served by the web server under proof_public_base_url)."""
import os
from pathlib import Path

from app.core.config import settings
from app.storage.base import Storage


class LocalStorage(Storage):
    def __init__(self, base_path: str | None = None, public_base_url: str | None = None) -> None:
        self.base_path = Path(base_path or settings.proof_storage_path)
        self.public_base_url = (public_base_url or settings.proof_public_base_url).rstrip("/")

    def _resolve(self, path: str) -> Path:
        target = (self.base_path / path).resolve()
        if not str(target).startswith(str(self.base_path.resolve()) + os.sep):
            raise ValueError(f"Path escapes storage root: {path}")
        return target

    def upload(self, path: str, content: bytes) -> str:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        # "xb": upsert=False semantics, an existing blob is never replaced
        with open(target, "xb") as f:
            f.write(content)
        return f"{self.public_base_url}/{path}"

    def delete(self, path: str) -> None:
        target = self._resolve(path)
        if target.is_file():
            target.unlink()
