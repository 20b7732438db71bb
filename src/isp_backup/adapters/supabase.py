"""Supabase (PostgREST) store adapter.

Requires the ``supabase`` extra.  The async client is created on first
use; concurrent first calls share one client.

Usage:
    from isp_backup.adapters.supabase import AsyncSupabaseAdapter

    adapter = AsyncSupabaseAdapter(url="https://abc.supabase.co", key="eyJ...")
    rows = await adapter.select("packages", "id, name")
    await adapter.close()
"""

import asyncio
from datetime import date
from typing import Any

from supabase import AsyncClient, acreate_client

# PostgREST refuses an unfiltered DELETE; no row ever carries the nil UUID.
NIL_UUID = "00000000-0000-0000-0000-000000000000"
PAGE_SIZE = 1000


def _to_json(value: Any) -> Any:
    if isinstance(value, date):
        return value.isoformat()
    return value


def _matching(query: Any, filters: dict[str, Any] | None) -> Any:
    for column, value in (filters or {}).items():
        query = query.eq(column, value)
    return query


class AsyncSupabaseAdapter:
    """``DatabaseClient`` over a Supabase project's REST API.

    Args:
        url: Project URL.
        key: API key.  A restore writes every business table, so this is
            normally the service-role key.
    """

    def __init__(self, url: str, key: str) -> None:
        self._url = url
        self._key = key
        self._client: AsyncClient | None = None
        self._lock = asyncio.Lock()

    async def get_client(self) -> AsyncClient:
        """Return the shared async client, creating it once."""
        if self._client is None:
            async with self._lock:
                if self._client is None:
                    self._client = await acreate_client(self._url, self._key)
        return self._client

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict]:
        """Read every matching row.

        PostgREST caps a response at its max-rows setting, so rows are
        fetched ``PAGE_SIZE`` at a time until a short page comes back.
        """
        client = await self.get_client()
        rows: list[dict] = []
        offset = 0

        while True:
            query = _matching(client.table(table).select(columns), filters)
            if order_by:
                query = query.order(order_by)

            page = (await query.range(offset, offset + PAGE_SIZE - 1).execute()).data
            rows.extend(page)
            if len(page) < PAGE_SIZE:
                return rows
            offset += PAGE_SIZE

    async def insert(self, table: str, data: dict) -> dict:
        client = await self.get_client()
        payload = {k: _to_json(v) for k, v in data.items() if not k.startswith("_")}
        result = await client.table(table).insert(payload).execute()
        return result.data[0]

    async def update(self, table: str, data: dict, filters: dict[str, Any]) -> dict:
        client = await self.get_client()
        payload = {k: _to_json(v) for k, v in data.items()}
        result = await _matching(client.table(table).update(payload), filters).execute()
        if not result.data:
            raise ValueError(f"No rows matched filters: {filters}")
        return result.data[0]

    async def delete(self, table: str, filters: dict[str, Any]) -> None:
        if not filters:
            raise ValueError("delete() requires filters; use delete_all()")

        client = await self.get_client()
        await _matching(client.table(table).delete(), filters).execute()

    async def delete_all(self, table: str) -> None:
        client = await self.get_client()
        await client.table(table).delete().neq("id", NIL_UUID).execute()

    async def execute(self, sql: str, params: dict | None = None) -> None:
        """Raw SQL is not reachable through PostgREST.

        Raises:
            NotImplementedError: Always.
        """
        raise NotImplementedError("Raw SQL needs a postgres profile")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
