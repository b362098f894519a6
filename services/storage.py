"""
Local upload storage.

Files are written under UPLOAD_DIR with unique names
"{timestamp_ms}_{random}.{ext}"; the original filename is never used on disk.
"""

import logging
import os
import secrets
import time
from pathlib import Path

from services.errors import NotFoundError

log = logging.getLogger(__name__)


class LocalFileStorage:
    def __init__(self, base_dir: str):
        self.base_dir = Path(base_dir).resolve()

    def _ensure_dir(self) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def unique_name(filename: str) -> str:
        ext = Path(filename or "").suffix.lower().lstrip(".") or "bin"
        return f"{int(time.time() * 1000)}_{secrets.token_hex(6)}.{ext}"

    def _resolve(self, stored_name: str) -> Path:
        path = (self.base_dir / stored_name).resolve()
        # Stored names are generated by us; anything escaping base_dir is bogus
        if self.base_dir not in path.parents:
            raise NotFoundError(f"Stored file {stored_name} not found")
        return path

    def save(self, content: bytes, filename: str) -> str:
        """Write bytes and return the stored name (relative to base_dir)."""
        self._ensure_dir()
        stored_name = self.unique_name(filename)
        path = self.base_dir / stored_name
        with open(path, "wb") as f:
            f.write(content)
        log.info("Stored upload %s as %s (%s bytes)", filename, stored_name, len(content))
        return stored_name

    def read(self, stored_name: str) -> bytes:
        path = self._resolve(stored_name)
        if not path.is_file():
            raise NotFoundError(f"Stored file {stored_name} not found")
        with open(path, "rb") as f:
            return f.read()

    def delete(self, stored_name: str) -> bool:
        """Remove a stored file. Missing files are not an error."""
        if not stored_name:
            return False
        try:
            path = self._resolve(stored_name)
        except NotFoundError:
            return False
        if path.is_file():
            os.remove(path)
            log.info("Deleted stored file %s", stored_name)
            return True
        return False
