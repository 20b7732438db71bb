"""The store interface the snapshot engine is written against.

Defines the ``DatabaseClient`` Protocol that every store adapter implements.
The snapshot exporter and restorer only ever talk to the store through this
interface.  All methods are ``async def``.

Usage:
    from isp_backup.adapters.base import DatabaseClient

    async def count_areas(client: DatabaseClient) -> int:
        rows = await client.select("areas", "id, name")
        return len(rows)
"""

from typing import Any, Protocol


class DatabaseClient(Protocol):
    """Store interface used by the backup engine.

    Every call is an independent statement: there is no transaction
    spanning several calls, so each insert commits on its own.
    """

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict]:
        """Read rows.

        Args:
            table: Table name.
            columns: Comma-separated column names (e.g., ``"id, name"``).
            filters: Column equality filters; a row must satisfy every one.
            order_by: Optional column name to sort by (ascending).

        Returns:
            Matching rows as plain dicts (uuids and dates as strings).

        Example:
            rows = await client.select(
                "customers",
                "id, user_id",
                filters={"user_id": "ISP00001"},
            )
        """
        ...

    async def insert(self, table: str, data: dict) -> dict:
        """Insert one row and return it with the store-assigned ``id``.

        Raises:
            Exception: If a constraint is violated.

        Example:
            row = await client.insert("areas", {"name": "Zone A"})
            area_id = row["id"]
        """
        ...

    async def update(self, table: str, data: dict, filters: dict[str, Any]) -> dict:
        """Apply ``data`` to matching rows; return the first one.

        Raises:
            ValueError: If nothing matched.
        """
        ...

    async def delete(self, table: str, filters: dict[str, Any]) -> None:
        """Delete rows matching all ``filters``.

        Example:
            await client.delete("backup_logs", {"id": "abc-123"})
        """
        ...

    async def delete_all(self, table: str) -> None:
        """Delete every row of ``table``.

        Used by the destructive wipe that precedes a clean restore.

        Raises:
            Exception: If a foreign key still references a row being deleted.
        """
        ...

    async def execute(self, sql: str, params: dict | None = None) -> None:
        """Run a statement that returns nothing.

        Raises:
            NotImplementedError: If the adapter does not support raw SQL.
        """
        ...

    async def close(self) -> None:
        """Release connections; the adapter is unusable afterwards."""
        ...
