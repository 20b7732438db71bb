"""Filesystem-backed blob store.

Snapshots are written under a local directory (``./backups`` by default),
the same place file backups have always landed.  "Signed" URLs are plain
``file://`` URIs carrying an ``expires`` timestamp; nothing enforces it,
it only tells the reader how long the link was meant to live.
"""

import time
from pathlib import Path


class LocalBlobStore:
    """``BlobStore`` implementation over a directory.

    Args:
        root: Directory that holds the blobs.  Created on first write.

    Example:
        store = LocalBlobStore("backups")
        path = await store.put("full_backup_2025-01-01_00-00-00.csv", data)
    """

    def __init__(self, root: str | Path = "backups") -> None:
        self._root = Path(root)

    def _resolve(self, path: str) -> Path:
        target = (self._root / path).resolve()
        if self._root.resolve() not in target.parents:
            raise ValueError(f"Blob path escapes storage root: {path}")
        return target

    async def put(self, name: str, data: bytes, content_type: str = "text/csv") -> str:
        """Write ``data`` to ``<root>/<name>``; existing files are never replaced."""
        target = self._resolve(name)
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "xb") as f:
            f.write(data)
        return name

    async def signed_url(self, path: str, ttl_seconds: int) -> str:
        target = self._resolve(path)
        if not target.exists():
            raise FileNotFoundError(f"Blob not found: {path}")
        expires = int(time.time()) + ttl_seconds
        return f"{target.as_uri()}?expires={expires}"

    async def delete(self, path: str) -> None:
        target = self._resolve(path)
        target.unlink(missing_ok=True)

    async def read(self, path: str) -> bytes:
        """Read a stored blob back."""
        return self._resolve(path).read_bytes()
