"""Supabase Storage blob store.

Snapshots live in a private bucket (``customer-backups`` by default).
The async client is created lazily behind an ``asyncio.Lock``, exactly
like ``AsyncSupabaseAdapter``.
"""

import asyncio

from supabase import AsyncClient, acreate_client


class SupabaseBlobStore:
    """``BlobStore`` implementation over a Supabase Storage bucket.

    Args:
        url: Supabase project URL.
        key: Service-role key (the bucket is private).
        bucket: Bucket name.
    """

    def __init__(self, url: str, key: str, bucket: str = "customer-backups") -> None:
        self._url: str = url
        self._key: str = key
        self._bucket: str = bucket
        self._client: AsyncClient | None = None
        self._lock: asyncio.Lock = asyncio.Lock()

    async def _get_client(self) -> AsyncClient:
        if self._client is None:
            async with self._lock:
                if self._client is None:
                    self._client = await acreate_client(self._url, self._key)
        return self._client

    async def put(self, name: str, data: bytes, content_type: str = "text/csv") -> str:
        """Upload without upsert, so an existing snapshot is never replaced."""
        client = await self._get_client()
        await client.storage.from_(self._bucket).upload(
            path=name,
            file=data,
            file_options={"content-type": content_type, "upsert": "false"},
        )
        return name

    async def signed_url(self, path: str, ttl_seconds: int) -> str:
        client = await self._get_client()
        result = await client.storage.from_(self._bucket).create_signed_url(
            path, ttl_seconds
        )
        # supabase-py has returned both spellings across releases
        url = result.get("signedURL") or result.get("signedUrl")
        if not url:
            raise ValueError(f"Storage returned no signed URL for {path}")
        return url

    async def delete(self, path: str) -> None:
        client = await self._get_client()
        await client.storage.from_(self._bucket).remove([path])

    async def read(self, path: str) -> bytes:
        """Download a stored snapshot."""
        client = await self._get_client()
        return await client.storage.from_(self._bucket).download(path)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
