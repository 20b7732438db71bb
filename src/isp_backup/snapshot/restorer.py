"""Dependency-ordered snapshot restore.

Rebuilds the business dataset from parsed snapshot tables.  The run is a
fixed, linear sequence of steps:

1. seed one replacement credential
2. wipe every business table (only when ``clean_existing``)
3. anchors: Areas, Packages
4. Customers
5. customer dependents, invoice items, tickets, resellers

Each step that owns a natural key returns a ``NaturalKeyResolver`` and
later steps take the resolvers they need as arguments.  Rows are handled
one at a time: a failing row is recorded in its table's outcome and the
loop moves on.

Usage:
    from isp_backup.snapshot.parser import parse_snapshot_strict
    from isp_backup.snapshot.restorer import restore_snapshot

    tables = parse_snapshot_strict(text)
    report = await restore_snapshot(adapter, tables, clean_existing=True,
                                    hasher=PasslibCredentialHasher())
    report.to_response()
"""

import logging
import re
from collections.abc import Awaitable, Callable, Mapping
from datetime import date, datetime, timezone
from typing import Any

from isp_backup.adapters.base import DatabaseClient
from isp_backup.credentials import CredentialHasher
from isp_backup.snapshot.models import RestoreOptions, RestoreReport, Row, TableOutcome
from isp_backup.snapshot.ordering import DELETION_ORDER
from isp_backup.snapshot.resolver import NaturalKeyResolver
from isp_backup.snapshot.writer import DHAKA, DHAKA_SUFFIX

logger = logging.getLogger(__name__)

_NUMBER_RE = re.compile(r"^\s*[-+]?(\d+\.?\d*|\.\d+)([eE][-+]?\d+)?")
_INT_RE = re.compile(r"^\s*[-+]?\d+")


class CredentialSeedError(RuntimeError):
    """Raised when the replacement credential cannot be produced."""


class RowSkipped(Exception):
    """A row lacks its natural key or references something unknown."""


# ----------------------------------------------------------------------
# Value helpers
# ----------------------------------------------------------------------


def _text(value: str | None) -> str | None:
    return value or None


def parse_float(value: str | None, default: float = 0.0) -> float:
    """Read the leading number of ``value``; ``default`` when there is none.

    Example:
        >>> parse_float("1,200")
        1.0
        >>> parse_float("", 10)
        10
    """
    match = _NUMBER_RE.match(value or "")
    if not match:
        return default
    return float(match.group(0))


def parse_int(value: str | None, default: int = 0) -> int:
    """Read the leading integer of ``value``; ``default`` when there is none."""
    match = _INT_RE.match(value or "")
    if not match:
        return default
    return int(match.group(0))


def parse_bool(value: str | None) -> bool:
    return value == "true"


def normalize_phone(
    value: str | None,
    country_code: str = "880",
    placeholder: str = "8801000000000",
) -> str:
    """Normalize a phone number to international digits.

    ``01712345678`` (trunk zero, 11 digits) and ``1712345678`` (10 digits)
    both become ``8801712345678``.  Anything else keeps its digits as-is.
    An empty result falls back to ``placeholder``.
    """
    digits = re.sub(r"\D", "", value or "")
    if digits.startswith("0") and len(digits) == 11:
        digits = country_code + digits[1:]
    elif digits.startswith("1") and len(digits) == 10:
        digits = country_code + digits
    return digits or placeholder


def parse_timestamp(value: str | None, now: datetime | None = None) -> datetime:
    """Convert an exported timestamp back into an aware ``datetime``.

    ``2025-01-01 06:00:00.000 (BD)`` is Dhaka wall time and gets the
    ``+06:00`` offset back, so the stored instant equals the exported one.
    Other ISO values are parsed as-is (naive means UTC).  Empty values
    become ``now``.

    Raises:
        ValueError: If the value is not a timestamp.
    """
    if not value:
        return now or datetime.now(timezone.utc)

    text = value.strip()
    if text.endswith(DHAKA_SUFFIX.strip()):
        local = datetime.fromisoformat(text[: -len(DHAKA_SUFFIX.strip())].strip())
        return local.replace(tzinfo=DHAKA)

    moment = datetime.fromisoformat(text.replace("Z", "+00:00"))
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def parse_date(value: str | None, today: date | None = None) -> date:
    """Convert an exported date (or Dhaka timestamp) into a ``date``.

    Raises:
        ValueError: If the value is neither a date nor a timestamp.
    """
    if not value:
        return today or datetime.now(timezone.utc).date()
    text = value.strip()
    if len(text) == 10:
        return date.fromisoformat(text)
    return parse_timestamp(text).date()


def _optional_date(value: str | None) -> date | None:
    return parse_date(value) if value else None


# ----------------------------------------------------------------------
# Row loop
# ----------------------------------------------------------------------


def _record_skip(name: str, outcome: TableOutcome, reason: str, options: RestoreOptions) -> None:
    outcome.skipped += 1
    if options.skips_as_errors:
        outcome.errors.append(f"skipped: {reason}")
    logger.debug("%s: skipped row (%s)", name, reason)


async def _restore_rows(
    name: str,
    rows: list[Row],
    outcome: TableOutcome,
    options: RestoreOptions,
    restore_row: Callable[[Row], Awaitable[None]],
    label: Callable[[Row], str | None] | None = None,
) -> None:
    """Run ``restore_row`` for every row, isolating failures.

    A row counts as a success when ``restore_row`` returns.  ``RowSkipped``
    goes to the skip counter; any other exception becomes an error entry,
    prefixed with the row's natural key when ``label`` gives one.
    """
    for row in rows:
        try:
            await restore_row(row)
        except RowSkipped as skip:
            _record_skip(name, outcome, str(skip), options)
            continue
        except Exception as exc:
            key = label(row) if label else None
            message = f"{key}: {exc}" if key else str(exc)
            outcome.errors.append(message)
            logger.warning("%s: row failed: %s", name, message)
            continue
        outcome.success += 1

    logger.info(
        "%s: %d restored, %d errors, %d skipped",
        name, outcome.success, len(outcome.errors), outcome.skipped,
    )


async def _refresh(name: str, resolver: NaturalKeyResolver, outcome: TableOutcome) -> None:
    """Reload ``resolver`` from the store; on failure keep the partial map."""
    try:
        await resolver.refresh()
    except Exception as exc:
        message = f"could not read {resolver.table}: {exc}"
        outcome.errors.append(message)
        logger.error("%s: %s", name, message)


def _require(row: Row, column: str, what: str) -> str:
    value = row.get(column)
    if not value:
        raise RowSkipped(f"{what} without {column}")
    return value


def _customer_id(customers: NaturalKeyResolver, row: Row) -> Any:
    user_id = row.get("Customer ID")
    customer_id = customers.get(user_id)
    if customer_id is None:
        raise RowSkipped(f"customer {user_id!r} not found")
    return customer_id


# ----------------------------------------------------------------------
# Steps
# ----------------------------------------------------------------------


def seed_credential(hasher: CredentialHasher, options: RestoreOptions) -> str:
    """Hash the default password once for every restored account.

    Raises:
        CredentialSeedError: If the hasher fails.
    """
    try:
        credential = hasher.hash(options.default_password)
    except Exception as exc:
        raise CredentialSeedError(f"Could not seed credential: {exc}") from exc

    if not credential:
        logger.warning("Hasher returned an empty credential, using placeholder")
        return options.placeholder_credential
    return credential


async def wipe_tables(adapter: DatabaseClient, tables: tuple[str, ...] = DELETION_ORDER) -> list[str]:
    """Delete all rows of ``tables`` in order, continuing past failures.

    Returns:
        Names of the tables whose wipe failed.
    """
    failed: list[str] = []
    for table in tables:
        try:
            await adapter.delete_all(table)
        except Exception as exc:
            logger.error("Delete %s failed: %s", table, exc)
            failed.append(table)
    return failed


async def restore_areas(
    adapter: DatabaseClient,
    rows: list[Row],
    outcome: TableOutcome,
    options: RestoreOptions,
) -> NaturalKeyResolver:
    areas = NaturalKeyResolver(adapter, "areas", "name")

    async def restore_row(row: Row) -> None:
        name = _require(row, "Name", "area")
        await areas.ensure(
            name, lambda: {"name": name, "description": _text(row.get("Description"))}
        )

    await _restore_rows("Areas", rows, outcome, options, restore_row, lambda r: r.get("Name"))
    await _refresh("Areas", areas, outcome)
    return areas


async def restore_packages(
    adapter: DatabaseClient,
    rows: list[Row],
    outcome: TableOutcome,
    options: RestoreOptions,
) -> NaturalKeyResolver:
    packages = NaturalKeyResolver(adapter, "packages", "name")

    def build(row: Row) -> dict[str, Any]:
        return {
            "name": row["Name"],
            "speed_mbps": parse_int(row.get("Speed (Mbps)"), 10),
            "monthly_price": parse_float(row.get("Price"), 0),
            "validity_days": parse_int(row.get("Validity Days"), 30),
            "is_active": parse_bool(row.get("Active")),
            "description": _text(row.get("Description")),
        }

    async def restore_row(row: Row) -> None:
        name = _require(row, "Name", "package")
        await packages.ensure(name, lambda: build(row))

    await _restore_rows("Packages", rows, outcome, options, restore_row, lambda r: r.get("Name"))
    await _refresh("Packages", packages, outcome)
    return packages


async def restore_customers(
    adapter: DatabaseClient,
    rows: list[Row],
    outcome: TableOutcome,
    options: RestoreOptions,
    credential: str,
    areas: NaturalKeyResolver,
    packages: NaturalKeyResolver,
) -> NaturalKeyResolver:
    """Restore customers keyed by ``User ID``.

    An existing customer is matched and left untouched.  Area and package
    names that do not resolve are stored as no reference.
    """
    customers = NaturalKeyResolver(adapter, "customers", "user_id")

    def build(row: Row) -> dict[str, Any]:
        return {
            "user_id": row["User ID"],
            "full_name": row["Name"],
            "phone": normalize_phone(
                row.get("Phone"), options.country_code, options.placeholder_phone
            ),
            "alt_phone": _text(row.get("Alt Phone")),
            "email": _text(row.get("Email")),
            "address": row.get("Address") or "N/A",
            "area_id": areas.get(row.get("Area")),
            "package_id": packages.get(row.get("Package")),
            "status": row.get("Status") or "active",
            "connection_type": row.get("Connection") or "pppoe",
            "billing_cycle": row.get("Billing Cycle") or "monthly",
            "expiry_date": parse_timestamp(row.get("Expiry")),
            "total_due": parse_float(row.get("Due"), 0),
            "auto_renew": parse_bool(row.get("Auto Renew")),
            "password_hash": credential,
        }

    async def restore_row(row: Row) -> None:
        user_id = _require(row, "User ID", "customer")
        _require(row, "Name", "customer")
        await customers.ensure(user_id, lambda: build(row))

    await _restore_rows(
        "Customers", rows, outcome, options, restore_row, lambda r: r.get("User ID")
    )
    await _refresh("Customers", customers, outcome)
    return customers


async def restore_pppoe_users(
    adapter: DatabaseClient,
    rows: list[Row],
    outcome: TableOutcome,
    options: RestoreOptions,
    customers: NaturalKeyResolver,
) -> None:
    """Restore network accounts, deduplicated by (customer, username).

    The router password is a separate credential domain and is reset to
    ``options.pppoe_password``.
    """

    async def restore_row(row: Row) -> None:
        customer_id = _customer_id(customers, row)
        username = _require(row, "Username", "PPPoE user")
        existing = await adapter.select(
            "mikrotik_users", "id",
            filters={"customer_id": customer_id, "username": username},
        )
        if existing:
            return
        await adapter.insert("mikrotik_users", {
            "customer_id": customer_id,
            "username": username,
            "password_encrypted": options.pppoe_password,
            "profile": _text(row.get("Profile")),
            "status": row.get("Status") or "enabled",
        })

    await _restore_rows(
        "PPPoE Users", rows, outcome, options, restore_row, lambda r: r.get("Username")
    )


async def restore_payments(
    adapter: DatabaseClient,
    rows: list[Row],
    outcome: TableOutcome,
    options: RestoreOptions,
    customers: NaturalKeyResolver,
) -> None:
    async def restore_row(row: Row) -> None:
        await adapter.insert("payments", {
            "customer_id": _customer_id(customers, row),
            "amount": parse_float(row.get("Amount"), 0),
            "method": row.get("Method") or "cash",
            "payment_date": parse_timestamp(row.get("Payment Date")),
            "remaining_due": parse_float(row.get("Remaining Due"), 0),
            "transaction_id": _text(row.get("Transaction ID")),
            "notes": _text(row.get("Notes")),
        })

    await _restore_rows("Payments", rows, outcome, options, restore_row)


async def restore_billing_records(
    adapter: DatabaseClient,
    rows: list[Row],
    outcome: TableOutcome,
    options: RestoreOptions,
    customers: NaturalKeyResolver,
) -> None:
    async def restore_row(row: Row) -> None:
        await adapter.insert("billing_records", {
            "customer_id": _customer_id(customers, row),
            "package_name": row.get("Package") or "Unknown",
            "amount": parse_float(row.get("Amount"), 0),
            "amount_paid": parse_float(row.get("Paid"), 0),
            "status": row.get("Status") or "unpaid",
            "billing_date": parse_date(row.get("Billing Date")),
            "due_date": parse_date(row.get("Due Date")),
            "paid_date": _optional_date(row.get("Paid Date")),
            "notes": _text(row.get("Notes")),
        })

    await _restore_rows("Billing Records", rows, outcome, options, restore_row)


async def restore_invoices(
    adapter: DatabaseClient,
    rows: list[Row],
    outcome: TableOutcome,
    options: RestoreOptions,
    customers: NaturalKeyResolver,
) -> NaturalKeyResolver:
    invoices = NaturalKeyResolver(adapter, "invoices", "invoice_number")

    def build(row: Row, customer_id: Any) -> dict[str, Any]:
        return {
            "customer_id": customer_id,
            "invoice_number": row["Invoice #"],
            "subtotal": parse_float(row.get("Subtotal"), 0),
            "discount": parse_float(row.get("Discount"), 0),
            "tax": parse_float(row.get("Tax"), 0),
            "total": parse_float(row.get("Total"), 0),
            "amount_paid": parse_float(row.get("Paid"), 0),
            "status": row.get("Status") or "draft",
            "issue_date": parse_date(row.get("Issue Date")),
            "due_date": parse_date(row.get("Due Date")),
            "notes": _text(row.get("Notes")),
        }

    async def restore_row(row: Row) -> None:
        customer_id = _customer_id(customers, row)
        number = _require(row, "Invoice #", "invoice")
        await invoices.ensure(number, lambda: build(row, customer_id))

    await _restore_rows(
        "Invoices", rows, outcome, options, restore_row, lambda r: r.get("Invoice #")
    )
    return invoices


async def restore_invoice_items(
    adapter: DatabaseClient,
    rows: list[Row],
    outcome: TableOutcome,
    options: RestoreOptions,
    invoices: NaturalKeyResolver,
) -> None:
    """Restore line items against this run's invoices plus every stored one."""
    if not rows:
        return
    await _refresh("Invoice Items", invoices, outcome)

    async def restore_row(row: Row) -> None:
        number = row.get("Invoice #")
        invoice_id = invoices.get(number)
        if invoice_id is None:
            raise RowSkipped(f"invoice {number!r} not found")
        await adapter.insert("invoice_items", {
            "invoice_id": invoice_id,
            "description": row.get("Description") or "Item",
            "quantity": parse_int(row.get("Qty"), 1),
            "unit_price": parse_float(row.get("Unit Price"), 0),
            "total": parse_float(row.get("Total"), 0),
        })

    await _restore_rows("Invoice Items", rows, outcome, options, restore_row)


async def restore_transactions(
    adapter: DatabaseClient,
    rows: list[Row],
    outcome: TableOutcome,
    options: RestoreOptions,
) -> None:
    """Restore accounting transactions.

    Categories are looked up by name in ``expense_categories``, which is
    never restored; an unknown category is stored as no reference.  If the
    category table cannot be read, every transaction is stored without one.
    """
    if not rows:
        return
    try:
        categories = {
            row["name"]: row["id"]
            for row in await adapter.select("expense_categories", "id, name")
        }
    except Exception as exc:
        message = f"could not read expense_categories: {exc}"
        outcome.errors.append(message)
        logger.error("Transactions: %s", message)
        categories = {}

    async def restore_row(row: Row) -> None:
        await adapter.insert("transactions", {
            "type": row.get("Type") or "expense",
            "amount": parse_float(row.get("Amount"), 0),
            "payment_method": row.get("Payment Method") or "cash",
            "category_id": categories.get(row.get("Category")),
            "transaction_date": parse_date(row.get("Date")),
            "description": _text(row.get("Description")),
            "reference_id": _text(row.get("Reference")),
        })

    await _restore_rows("Transactions", rows, outcome, options, restore_row)


async def restore_support_tickets(
    adapter: DatabaseClient,
    rows: list[Row],
    outcome: TableOutcome,
    options: RestoreOptions,
    customers: NaturalKeyResolver,
) -> NaturalKeyResolver:
    tickets = NaturalKeyResolver(adapter, "support_tickets", "ticket_number")

    def build(row: Row, customer_id: Any) -> dict[str, Any]:
        return {
            "customer_id": customer_id,
            "ticket_number": row["Ticket #"],
            "subject": row.get("Subject") or "Restored ticket",
            "category": row.get("Category") or "other",
            "priority": row.get("Priority") or "medium",
            "status": row.get("Status") or "open",
            "description": row.get("Subject") or "Restored from backup",
        }

    async def restore_row(row: Row) -> None:
        customer_id = _customer_id(customers, row)
        number = _require(row, "Ticket #", "ticket")
        await tickets.ensure(number, lambda: build(row, customer_id))

    await _restore_rows(
        "Support Tickets", rows, outcome, options, restore_row, lambda r: r.get("Ticket #")
    )
    return tickets


async def restore_ticket_comments(
    adapter: DatabaseClient,
    rows: list[Row],
    outcome: TableOutcome,
    options: RestoreOptions,
    tickets: NaturalKeyResolver,
) -> None:
    if not rows:
        return
    await _refresh("Ticket Comments", tickets, outcome)

    async def restore_row(row: Row) -> None:
        number = row.get("Ticket #")
        ticket_id = tickets.get(number)
        if ticket_id is None:
            raise RowSkipped(f"ticket {number!r} not found")
        await adapter.insert("ticket_comments", {
            "ticket_id": ticket_id,
            "comment": row.get("Comment") or "",
            "is_internal": parse_bool(row.get("Internal")),
        })

    await _restore_rows("Ticket Comments", rows, outcome, options, restore_row)


async def restore_call_records(
    adapter: DatabaseClient,
    rows: list[Row],
    outcome: TableOutcome,
    options: RestoreOptions,
    customers: NaturalKeyResolver,
) -> None:
    async def restore_row(row: Row) -> None:
        await adapter.insert("call_records", {
            "customer_id": _customer_id(customers, row),
            "notes": row.get("Notes") or "Restored",
            "call_date": parse_timestamp(row.get("Call Date")),
        })

    await _restore_rows("Call Records", rows, outcome, options, restore_row)


async def restore_reminders(
    adapter: DatabaseClient,
    rows: list[Row],
    outcome: TableOutcome,
    options: RestoreOptions,
    customers: NaturalKeyResolver,
) -> None:
    async def restore_row(row: Row) -> None:
        await adapter.insert("reminder_logs", {
            "customer_id": _customer_id(customers, row),
            "reminder_type": row.get("Type") or "payment_due",
            "channel": row.get("Channel") or "whatsapp",
            "message": _text(row.get("Message")),
            "sent_at": parse_timestamp(row.get("Sent At")),
        })

    await _restore_rows("Reminders", rows, outcome, options, restore_row)


async def restore_resellers(
    adapter: DatabaseClient,
    rows: list[Row],
    outcome: TableOutcome,
    options: RestoreOptions,
    credential: str,
) -> NaturalKeyResolver:
    resellers = NaturalKeyResolver(adapter, "resellers", "reseller_code")

    def build(row: Row) -> dict[str, Any]:
        return {
            "reseller_code": row["Code"],
            "name": row.get("Name") or "Unknown",
            "phone": row.get("Phone") or options.placeholder_phone,
            "email": _text(row.get("Email")),
            "address": _text(row.get("Address")),
            "commission_rate": parse_float(row.get("Commission %"), 10),
            "status": row.get("Status") or "active",
            "password_hash": credential,
        }

    async def restore_row(row: Row) -> None:
        code = _require(row, "Code", "reseller")
        await resellers.ensure(code, lambda: build(row))

    await _restore_rows(
        "Resellers", rows, outcome, options, restore_row, lambda r: r.get("Code")
    )
    return resellers


async def restore_reseller_customers(
    adapter: DatabaseClient,
    rows: list[Row],
    outcome: TableOutcome,
    options: RestoreOptions,
    resellers: NaturalKeyResolver,
    customers: NaturalKeyResolver,
) -> None:
    """Restore reseller/customer links, deduplicated by the pair."""
    if not rows:
        return
    await _refresh("Reseller Customers", resellers, outcome)

    async def restore_row(row: Row) -> None:
        code = row.get("Reseller Code")
        reseller_id = resellers.get(code)
        if reseller_id is None:
            raise RowSkipped(f"reseller {code!r} not found")
        link = {"reseller_id": reseller_id, "customer_id": _customer_id(customers, row)}
        if await adapter.select("reseller_customers", "id", filters=link):
            return
        await adapter.insert("reseller_customers", link)

    await _restore_rows("Reseller Customers", rows, outcome, options, restore_row)


# ----------------------------------------------------------------------
# Entry point
# ----------------------------------------------------------------------


async def restore_snapshot(
    adapter: DatabaseClient,
    tables: Mapping[str, list[Row]],
    clean_existing: bool,
    hasher: CredentialHasher,
    options: RestoreOptions | None = None,
) -> RestoreReport:
    """Restore parsed snapshot tables into the store.

    Once the credential is seeded nothing stops the run.  Store failures,
    whether on a row or while reading a lookup table, are recorded as
    errors on the table at hand and later tables still restore.

    Args:
        adapter: Store adapter.
        tables: ``{display name: rows}`` as returned by ``parse_snapshot``.
            Unknown display names are ignored.
        clean_existing: Wipe every business table first.
        hasher: Produces the replacement credential for restored accounts.
        options: Defaults and the skip policy.

    Returns:
        Per-table outcome.  Every restorable table appears in it, even
        when the snapshot has no section for it.

    Raises:
        CredentialSeedError: If the credential cannot be produced.  Nothing
            has been written at that point.
    """
    options = options or RestoreOptions()
    report = RestoreReport()

    def rows(name: str) -> list[Row]:
        return list(tables.get(name) or [])

    credential = seed_credential(hasher, options)

    if clean_existing:
        failed = await wipe_tables(adapter)
        logger.info("Wiped %d tables (%d failed)", len(DELETION_ORDER) - len(failed), len(failed))

    areas = await restore_areas(adapter, rows("Areas"), report.table("Areas"), options)
    packages = await restore_packages(adapter, rows("Packages"), report.table("Packages"), options)
    customers = await restore_customers(
        adapter, rows("Customers"), report.table("Customers"), options,
        credential, areas, packages,
    )

    await restore_pppoe_users(
        adapter, rows("PPPoE Users"), report.table("PPPoE Users"), options, customers
    )
    await restore_payments(
        adapter, rows("Payments"), report.table("Payments"), options, customers
    )
    await restore_billing_records(
        adapter, rows("Billing Records"), report.table("Billing Records"), options, customers
    )
    invoices = await restore_invoices(
        adapter, rows("Invoices"), report.table("Invoices"), options, customers
    )
    await restore_invoice_items(
        adapter, rows("Invoice Items"), report.table("Invoice Items"), options, invoices
    )
    await restore_transactions(
        adapter, rows("Transactions"), report.table("Transactions"), options
    )
    tickets = await restore_support_tickets(
        adapter, rows("Support Tickets"), report.table("Support Tickets"), options, customers
    )
    await restore_ticket_comments(
        adapter, rows("Ticket Comments"), report.table("Ticket Comments"), options, tickets
    )
    await restore_call_records(
        adapter, rows("Call Records"), report.table("Call Records"), options, customers
    )
    await restore_reminders(
        adapter, rows("Reminders"), report.table("Reminders"), options, customers
    )
    resellers = await restore_resellers(
        adapter, rows("Resellers"), report.table("Resellers"), options, credential
    )
    await restore_reseller_customers(
        adapter, rows("Reseller Customers"), report.table("Reseller Customers"), options,
        resellers, customers,
    )

    logger.info(
        "Restore finished: %d restored, %d errors",
        report.total_restored, report.total_errors,
    )
    return report
