"""
Local Blob Store
=================
Write-once filesystem storage for encrypted document blobs.

  - Blobs are NEVER overwritten: a put on an existing key fails.
  - Writes go to a temp file and are renamed into place.
  - Every put reports the SHA-256 of what landed on disk.
  - Keys cannot escape the store root.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BlobPutResult:
    """Result of a put (write) operation."""

    success: bool
    key: str
    path: str
    sha256: str
    size_bytes: int
    error: Optional[str] = None
    conflict: bool = False  # key already existed


@dataclass(frozen=True)
class BlobGetResult:
    """Result of a get (read) operation."""

    success: bool
    data: Optional[bytes] = None
    size_bytes: int = 0
    error: Optional[str] = None


class LocalBlobStore:
    """
    Filesystem-backed blob storage.

    The root directory is created lazily on first write (recursive,
    idempotent), so a store can be constructed before the volume is mounted.
    """

    def __init__(self, root: str):
        self.root = Path(root).resolve()

    def _resolve(self, key: str) -> Path:
        # Prevent directory traversal
        resolved = (self.root / key).resolve()
        if resolved != self.root and self.root not in resolved.parents:
            raise ValueError(f"Key escapes store root: {key}")
        return resolved

    def path_for(self, key: str) -> str:
        return str(self._resolve(key))

    def put(self, key: str, data: bytes) -> BlobPutResult:
        path = self._resolve(key)
        tmp = path.with_suffix(path.suffix + ".tmp")
        sha256 = hashlib.sha256(data).hexdigest()

        try:
            path.parent.mkdir(parents=True, exist_ok=True)

            if path.exists():
                return BlobPutResult(
                    success=False,
                    key=key,
                    path=str(path),
                    sha256=sha256,
                    size_bytes=len(data),
                    error=f"Key already exists (immutability enforced): {key}",
                    conflict=True,
                )

            with open(tmp, "xb") as f:
                f.write(data)
            tmp.rename(path)

        except OSError as exc:
            tmp.unlink(missing_ok=True)
            logger.error("Blob write failed for %s: %s", key, exc)
            return BlobPutResult(
                success=False,
                key=key,
                path=str(path),
                sha256="",
                size_bytes=0,
                error=str(exc),
            )

        return BlobPutResult(
            success=True, key=key, path=str(path), sha256=sha256, size_bytes=len(data)
        )

    def get(self, key: str) -> BlobGetResult:
        path = self._resolve(key)
        if not path.exists():
            return BlobGetResult(success=False, error=f"Not found: {key}")
        data = path.read_bytes()
        return BlobGetResult(success=True, data=data, size_bytes=len(data))

    def exists(self, key: str) -> bool:
        return self._resolve(key).exists()

    def delete(self, key: str) -> bool:
        """
        Delete the key. Returns True if deleted, False if not found.

        Only used to discard a blob whose metadata row could not be written.
        """
        path = self._resolve(key)
        if path.exists():
            path.unlink()
            return True
        return False

    def is_writable(self) -> bool:
        """Health probe: root exists (or can be created) and accepts writes."""
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            probe = self.root / ".healthcheck"
            probe.write_bytes(b"ok")
            probe.unlink()
            return True
        except OSError as exc:
            logger.warning("Blob store %s not writable: %s", self.root, exc)
            return False
