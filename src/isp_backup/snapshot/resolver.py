"""Natural-key resolution for one restore run.

A snapshot refers to rows by business keys (a customer's user ID, an
invoice number, an area name).  The store refers to them by surrogate
ids that never appear in the snapshot.  ``NaturalKeyResolver`` bridges
the two for one table family.

Usage:
    areas = NaturalKeyResolver(adapter, "areas", "name")
    area_id, created = await areas.ensure("Zone A", lambda: {"name": "Zone A"})
    await areas.refresh()
    areas.get("Zone A")
"""

from collections.abc import Callable
from typing import Any

from isp_backup.adapters.base import DatabaseClient


class NaturalKeyResolver:
    """Map natural key -> surrogate id for one table.

    Instances are created per restore call and handed from one restore
    step to the next; nothing is shared between runs.

    Args:
        adapter: Store adapter.
        table: Table holding the natural key.
        key_column: Unique column storing the natural key.
        pk: Surrogate id column.
    """

    def __init__(
        self,
        adapter: DatabaseClient,
        table: str,
        key_column: str,
        pk: str = "id",
    ) -> None:
        self._adapter = adapter
        self.table = table
        self.key_column = key_column
        self.pk = pk
        self._ids: dict[str, Any] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def get(self, key: str | None) -> Any | None:
        """Return the surrogate id for ``key`` or ``None``."""
        if not key:
            return None
        return self._ids.get(key)

    @property
    def mapping(self) -> dict[str, Any]:
        return dict(self._ids)

    async def find(self, key: str) -> Any | None:
        """Look ``key`` up in the store (not the cache)."""
        rows = await self._adapter.select(
            self.table, self.pk, filters={self.key_column: key}
        )
        if rows:
            return rows[0][self.pk]
        return None

    async def ensure(
        self,
        key: str,
        build_row: Callable[[], dict[str, Any]],
    ) -> tuple[Any, bool]:
        """Return the surrogate id for ``key``, inserting a row if needed.

        An existing row is reused untouched.  Otherwise ``build_row()`` is
        called (it may consult other resolvers) and its result inserted.

        Returns:
            ``(surrogate_id, created)``.

        Raises:
            Exception: Whatever the store raises on insert.
        """
        existing = await self.find(key)
        if existing is not None:
            self._ids[key] = existing
            return existing, False

        created = await self._adapter.insert(self.table, build_row())
        new_id = created[self.pk]
        self._ids[key] = new_id
        return new_id, True

    async def refresh(self) -> None:
        """Merge every row of the table into the map.

        Keys already mapped during this run keep their id.
        """
        rows = await self._adapter.select(self.table, f"{self.pk}, {self.key_column}")
        for row in rows:
            key = row.get(self.key_column)
            if key and key not in self._ids:
                self._ids[key] = row[self.pk]
