"""Blob store protocol for snapshot files.

The engine stores named snapshot blobs, reads them back for a restore,
hands out time-limited URLs for them and deletes them.

Usage:
    from isp_backup.storage.base import BlobStore

    async def publish(store: BlobStore, name: str, data: bytes) -> str:
        path = await store.put(name, data, "text/csv")
        return await store.signed_url(path, 3600)
"""

from typing import Protocol


class BlobStore(Protocol):
    """Object storage interface used for snapshot files."""

    async def put(self, name: str, data: bytes, content_type: str = "text/csv") -> str:
        """Store ``data`` under ``name`` and return its storage path.

        Raises:
            Exception: If a blob with that name already exists or the
                upload fails.
        """
        ...

    async def read(self, path: str) -> bytes:
        """Return the bytes stored at ``path``."""
        ...

    async def signed_url(self, path: str, ttl_seconds: int) -> str:
        """Return a URL granting read access to ``path`` for ``ttl_seconds``."""
        ...

    async def delete(self, path: str) -> None:
        """Delete the blob at ``path``."""
        ...
