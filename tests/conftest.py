"""Shared fixtures: an in-memory ``DatabaseClient`` and a fake hasher."""

import copy
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import pytest

from isp_backup.snapshot.models import RestoreOptions


class ConstraintViolation(Exception):
    """Stands in for the store's integrity errors."""


# Natural keys the real schema declares UNIQUE.
UNIQUE_COLUMNS: dict[str, str] = {
    "areas": "name",
    "packages": "name",
    "customers": "user_id",
    "invoices": "invoice_number",
    "support_tickets": "ticket_number",
    "resellers": "reseller_code",
}

# (child table, FK column, parent table)
FOREIGN_KEYS: list[tuple[str, str, str]] = [
    ("customers", "area_id", "areas"),
    ("customers", "package_id", "packages"),
    ("mikrotik_users", "customer_id", "customers"),
    ("payments", "customer_id", "customers"),
    ("billing_records", "customer_id", "customers"),
    ("invoices", "customer_id", "customers"),
    ("invoice_items", "invoice_id", "invoices"),
    ("support_tickets", "customer_id", "customers"),
    ("ticket_comments", "ticket_id", "support_tickets"),
    ("call_records", "customer_id", "customers"),
    ("reminder_logs", "customer_id", "customers"),
    ("reseller_customers", "reseller_id", "resellers"),
    ("reseller_customers", "customer_id", "customers"),
    ("reseller_commissions", "reseller_id", "resellers"),
    ("transactions", "category_id", "expense_categories"),
]


class FakeStore:
    """In-memory store implementing the ``DatabaseClient`` protocol.

    Inserts get a uuid ``id`` and ``created_at``.  UNIQUE natural keys
    and foreign keys are enforced, so a wipe in the wrong order or a
    duplicate anchor fails the way PostgreSQL would.
    """

    def __init__(self) -> None:
        self.tables: dict[str, list[dict]] = {}
        self.wiped: list[str] = []
        self.closed = False
        self._insert_failures: list[tuple[str, Callable[[dict], bool], str]] = []
        self._wipe_failures: set[str] = set()
        self._select_failures: list[tuple[str, Callable[[dict | None], bool], str]] = []

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def rows(self, table: str) -> list[dict]:
        return self.tables.get(table, [])

    def count(self, table: str) -> int:
        return len(self.rows(table))

    def seed(self, table: str, **data: Any) -> dict:
        """Insert synchronously (fixtures only)."""
        return self._insert(table, data)

    def fail_insert(
        self,
        table: str,
        when: Callable[[dict], bool] = lambda row: True,
        message: str = "insert rejected",
    ) -> None:
        self._insert_failures.append((table, when, message))

    def fail_wipe(self, table: str) -> None:
        self._wipe_failures.add(table)

    def fail_select(
        self,
        table: str,
        when: Callable[[dict | None], bool] = lambda filters: True,
        message: str = "read rejected",
    ) -> None:
        """Make reads of ``table`` raise when ``when(filters)`` holds."""
        self._select_failures.append((table, when, message))

    # ------------------------------------------------------------------
    # DatabaseClient
    # ------------------------------------------------------------------

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict]:
        for failing_table, when, message in self._select_failures:
            if failing_table == table and when(filters):
                raise RuntimeError(message)
        rows = [
            row for row in self.rows(table)
            if all(row.get(k) == v for k, v in (filters or {}).items())
        ]
        if columns.strip() == "*":
            return copy.deepcopy(rows)
        names = [c.strip() for c in columns.split(",")]
        return [{name: row.get(name) for name in names} for row in rows]

    async def insert(self, table: str, data: dict) -> dict:
        for failing_table, when, message in self._insert_failures:
            if failing_table == table and when(data):
                raise ConstraintViolation(message)
        return copy.deepcopy(self._insert(table, data))

    async def update(self, table: str, data: dict, filters: dict[str, Any]) -> dict:
        for row in self.rows(table):
            if all(row.get(k) == v for k, v in filters.items()):
                row.update(data)
                return copy.deepcopy(row)
        raise ValueError(f"No rows matched filters: {filters}")

    async def delete(self, table: str, filters: dict[str, Any]) -> None:
        if not filters:
            raise ValueError("delete() requires filters; use delete_all()")
        doomed = [
            row for row in self.rows(table)
            if all(row.get(k) == v for k, v in filters.items())
        ]
        self._check_references(table, {row["id"] for row in doomed})
        self.tables[table] = [row for row in self.rows(table) if row not in doomed]

    async def delete_all(self, table: str) -> None:
        if table in self._wipe_failures:
            raise ConstraintViolation(f"permission denied for table {table}")
        self._check_references(table, {row["id"] for row in self.rows(table)})
        self.tables[table] = []
        self.wiped.append(table)

    async def execute(self, sql: str, params: dict | None = None) -> None:
        raise NotImplementedError("Raw SQL not supported by FakeStore")

    async def close(self) -> None:
        self.closed = True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _insert(self, table: str, data: dict) -> dict:
        row = {k: v for k, v in data.items() if not k.startswith("_")}
        row.setdefault("id", str(uuid.uuid4()))
        row.setdefault("created_at", datetime.now(timezone.utc).isoformat())

        key = UNIQUE_COLUMNS.get(table)
        if key and any(r.get(key) == row.get(key) for r in self.rows(table)):
            raise ConstraintViolation(
                f'duplicate key value violates unique constraint "{table}_{key}_key"'
            )
        for child, column, parent in FOREIGN_KEYS:
            if child == table and row.get(column) is not None:
                if not any(p["id"] == row[column] for p in self.rows(parent)):
                    raise ConstraintViolation(
                        f'insert on "{table}" violates foreign key on "{column}"'
                    )

        self.tables.setdefault(table, []).append(row)
        return row

    def _check_references(self, table: str, ids: set[str]) -> None:
        for child, column, parent in FOREIGN_KEYS:
            if parent != table:
                continue
            if any(row.get(column) in ids for row in self.rows(child)):
                raise ConstraintViolation(
                    f'delete on "{table}" violates foreign key from "{child}"'
                )


class FakeHasher:
    """Deterministic stand-in for bcrypt."""

    def __init__(self, result: str | None = None, error: Exception | None = None) -> None:
        self.calls: list[str] = []
        self._result = result
        self._error = error

    def hash(self, plaintext: str) -> str:
        self.calls.append(plaintext)
        if self._error is not None:
            raise self._error
        if self._result is not None:
            return self._result
        return f"hashed:{plaintext}"


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def hasher() -> FakeHasher:
    return FakeHasher()


@pytest.fixture
def options() -> RestoreOptions:
    return RestoreOptions()


ZONE_A_SNAPSHOT = (
    "=== Areas (1 records) ===\n"
    "Name,Description\n"
    "Zone A,North district\n"
    "\n"
    "=== Customers (1 records) ===\n"
    "User ID,Name,Phone,Area\n"
    "ISP00001,Jane Doe,01712345678,Zone A\n"
)


def populate_source(store: FakeStore) -> dict[str, dict]:
    """Fill ``store`` with one row (or two) per restorable table."""
    area = store.seed("areas", name="Zone A", description="North district")
    package = store.seed(
        "packages", name="Home 10", speed_mbps=10, monthly_price=500.0,
        validity_days=30, is_active=True, description=None,
    )
    jane = store.seed(
        "customers", user_id="ISP00001", full_name="Jane Doe", phone="8801712345678",
        alt_phone=None, email="jane@example.com", address="House 3, Road 7",
        area_id=area["id"], package_id=package["id"], status="active",
        connection_type="pppoe", billing_cycle="monthly",
        expiry_date="2025-02-01T00:00:00+00:00", total_due=0.0, auto_renew=True,
        password_hash="secret-hash",
    )
    john = store.seed(
        "customers", user_id="ISP00002", full_name="John Roe", phone="8801812345678",
        alt_phone=None, email=None, address="N/A", area_id=None,
        package_id=package["id"], status="suspended", connection_type="pppoe",
        billing_cycle="monthly", expiry_date=None, total_due=250.0, auto_renew=False,
        password_hash="secret-hash",
    )
    store.seed(
        "mikrotik_users", customer_id=jane["id"], username="jane", profile="10M",
        status="enabled", router_id=None, password_encrypted="router-secret",
    )
    store.seed(
        "payments", customer_id=jane["id"], amount=500.0, method="bkash",
        payment_date="2025-01-15T04:30:00+00:00", remaining_due=0.0,
        transaction_id="TX1", notes=None,
    )
    store.seed(
        "billing_records", customer_id=jane["id"], package_name="Home 10",
        amount=500.0, amount_paid=500.0, status="paid", billing_date="2025-01-01",
        due_date="2025-01-10", paid_date="2025-01-15", notes=None,
    )
    invoice = store.seed(
        "invoices", customer_id=jane["id"], invoice_number="INV-0001", subtotal=500.0,
        discount=0.0, tax=0.0, total=500.0, amount_paid=500.0, status="paid",
        issue_date="2025-01-01", due_date="2025-01-10", notes=None,
    )
    store.seed(
        "invoice_items", invoice_id=invoice["id"], description="Monthly fee, January",
        quantity=1, unit_price=500.0, total=500.0,
    )
    rent = store.seed("expense_categories", name="Rent")
    store.seed(
        "transactions", type="expense", amount=2000.0, payment_method="cash",
        category_id=rent["id"], transaction_date="2025-01-05",
        description="Office rent", reference_id=None,
    )
    ticket = store.seed(
        "support_tickets", customer_id=jane["id"], ticket_number="TKT-1",
        subject="No internet", category="connectivity", priority="high",
        status="open", sla_deadline=None, resolved_at=None,
    )
    store.seed(
        "ticket_comments", ticket_id=ticket["id"], comment='Checked "ONU" lights',
        is_internal=True,
    )
    store.seed(
        "call_records", customer_id=john["id"], notes="Asked about upgrade",
        call_date="2025-01-20T10:00:00+00:00",
    )
    store.seed(
        "reminder_logs", customer_id=john["id"], reminder_type="payment_due",
        channel="sms", message="Your bill is due", sent_at="2025-01-25T03:00:00+00:00",
    )
    reseller = store.seed(
        "resellers", reseller_code="RS-1", name="Net Partner", phone="8801900000000",
        email=None, address=None, commission_rate=12.5, status="active",
        password_hash="reseller-secret",
    )
    store.seed("reseller_customers", reseller_id=reseller["id"], customer_id=john["id"])

    return {
        "area": area, "package": package, "jane": jane, "john": john,
        "invoice": invoice, "rent": rent, "ticket": ticket, "reseller": reseller,
    }


# Display name -> table, for every restorable section
RESTORED_TABLES: dict[str, str] = {
    "Areas": "areas",
    "Packages": "packages",
    "Customers": "customers",
    "PPPoE Users": "mikrotik_users",
    "Payments": "payments",
    "Billing Records": "billing_records",
    "Invoices": "invoices",
    "Invoice Items": "invoice_items",
    "Transactions": "transactions",
    "Support Tickets": "support_tickets",
    "Ticket Comments": "ticket_comments",
    "Call Records": "call_records",
    "Reminders": "reminder_logs",
    "Resellers": "resellers",
    "Reseller Customers": "reseller_customers",
}
