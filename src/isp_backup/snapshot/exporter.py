"""Full-system snapshot export.

Reads every business table through the ``DatabaseClient`` protocol and
renders one section per table.  Foreign keys are written as natural keys
(customer user ID, invoice number, ticket number, reseller code, names)
so that the restorer can resolve them against a different store.
Credential columns are never selected.

Usage:
    from isp_backup.snapshot.exporter import export_snapshot
    from isp_backup.storage import LocalBlobStore

    result = await export_snapshot(adapter, LocalBlobStore("backups"))
    print(result.file_name, result.record_count)
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from isp_backup.adapters.base import DatabaseClient
from isp_backup.snapshot.models import ExportResult, RenderedSnapshot
from isp_backup.snapshot.parser import BOM
from isp_backup.snapshot.writer import DHAKA, build_preamble, build_section, to_dhaka
from isp_backup.storage.base import BlobStore

logger = logging.getLogger(__name__)

BACKUP_LOG_TABLE = "backup_logs"


class Lookups:
    """``id -> row`` indexes of the tables other sections point into."""

    def __init__(self, data: dict[str, list[dict]]) -> None:
        self._index = {
            table: {row["id"]: row for row in rows if "id" in row}
            for table, rows in data.items()
        }

    def row(self, table: str, row_id: Any) -> dict:
        if row_id is None:
            return {}
        return self._index.get(table, {}).get(row_id, {})

    def customer(self, record: dict) -> dict:
        return self.row("customers", record.get("customer_id"))

    def name(self, table: str, row_id: Any) -> Any:
        return self.row(table, row_id).get("name")


@dataclass(frozen=True)
class ExportSection:
    """How one table becomes one snapshot section."""

    name: str
    table: str
    headers: tuple[str, ...]
    render: Callable[[dict, Lookups], list[Any]]
    columns: str = "*"
    order_by: str | None = "created_at"


def _customer_cells(record: dict, lk: Lookups) -> list[Any]:
    customer = lk.customer(record)
    return [customer.get("user_id"), customer.get("full_name")]


def _customer_row(c: dict, lk: Lookups) -> list[Any]:
    package = lk.row("packages", c.get("package_id"))
    return [
        c.get("user_id"), c.get("full_name"), c.get("phone"), c.get("alt_phone"),
        c.get("email"), c.get("address"), lk.name("areas", c.get("area_id")),
        package.get("name"), package.get("speed_mbps"), package.get("monthly_price"),
        c.get("status"), c.get("connection_type"), c.get("billing_cycle"),
        to_dhaka(c.get("expiry_date")), c.get("total_due"), c.get("auto_renew"),
        to_dhaka(c.get("created_at")),
    ]


def _reseller_cells(record: dict, lk: Lookups) -> list[Any]:
    reseller = lk.row("resellers", record.get("reseller_id"))
    return [reseller.get("reseller_code"), reseller.get("name")]


# Section order is part of the file format.
EXPORT_SECTIONS: tuple[ExportSection, ...] = (
    ExportSection(
        "Customers", "customers",
        ("User ID", "Name", "Phone", "Alt Phone", "Email", "Address", "Area", "Package",
         "Speed", "Price", "Status", "Connection", "Billing Cycle", "Expiry", "Due",
         "Auto Renew", "Created"),
        _customer_row,
        columns=(
            "id, user_id, full_name, phone, alt_phone, address, email, status, "
            "connection_type, billing_cycle, expiry_date, total_due, auto_renew, "
            "area_id, package_id, created_at"
        ),
    ),
    ExportSection(
        "Payments", "payments",
        ("Customer ID", "Customer", "Amount", "Method", "Payment Date", "Remaining Due",
         "Transaction ID", "Notes", "Created"),
        lambda p, lk: [
            *_customer_cells(p, lk), p.get("amount"), p.get("method"),
            to_dhaka(p.get("payment_date")), p.get("remaining_due"),
            p.get("transaction_id"), p.get("notes"), to_dhaka(p.get("created_at")),
        ],
    ),
    ExportSection(
        "Invoices", "invoices",
        ("Invoice #", "Customer ID", "Customer", "Subtotal", "Discount", "Tax", "Total",
         "Paid", "Status", "Issue Date", "Due Date", "Notes", "Created"),
        lambda i, lk: [
            i.get("invoice_number"), *_customer_cells(i, lk), i.get("subtotal"),
            i.get("discount"), i.get("tax"), i.get("total"), i.get("amount_paid"),
            i.get("status"), i.get("issue_date"), i.get("due_date"), i.get("notes"),
            to_dhaka(i.get("created_at")),
        ],
    ),
    ExportSection(
        "Invoice Items", "invoice_items",
        ("Invoice #", "Description", "Qty", "Unit Price", "Total", "Created"),
        lambda ii, lk: [
            lk.row("invoices", ii.get("invoice_id")).get("invoice_number"),
            ii.get("description"), ii.get("quantity"), ii.get("unit_price"),
            ii.get("total"), to_dhaka(ii.get("created_at")),
        ],
    ),
    ExportSection(
        "Billing Records", "billing_records",
        ("Customer ID", "Customer", "Package", "Amount", "Paid", "Status", "Billing Date",
         "Due Date", "Paid Date", "Notes", "Created"),
        lambda b, lk: [
            *_customer_cells(b, lk), b.get("package_name"), b.get("amount"),
            b.get("amount_paid"), b.get("status"), b.get("billing_date"),
            b.get("due_date"), b.get("paid_date"), b.get("notes"),
            to_dhaka(b.get("created_at")),
        ],
    ),
    ExportSection(
        "Transactions", "transactions",
        ("Type", "Amount", "Payment Method", "Category", "Date", "Description",
         "Reference", "Created"),
        lambda t, lk: [
            t.get("type"), t.get("amount"), t.get("payment_method"),
            lk.name("expense_categories", t.get("category_id")),
            t.get("transaction_date"), t.get("description"), t.get("reference_id"),
            to_dhaka(t.get("created_at")),
        ],
    ),
    ExportSection(
        "Support Tickets", "support_tickets",
        ("Ticket #", "Customer ID", "Customer", "Subject", "Category", "Priority",
         "Status", "SLA Deadline", "Resolved At", "Created"),
        lambda t, lk: [
            t.get("ticket_number"), *_customer_cells(t, lk), t.get("subject"),
            t.get("category"), t.get("priority"), t.get("status"),
            to_dhaka(t.get("sla_deadline")), to_dhaka(t.get("resolved_at")),
            to_dhaka(t.get("created_at")),
        ],
    ),
    ExportSection(
        "Ticket Comments", "ticket_comments",
        ("Ticket #", "Comment", "Internal", "Created"),
        lambda c, lk: [
            lk.row("support_tickets", c.get("ticket_id")).get("ticket_number"),
            c.get("comment"), c.get("is_internal"), to_dhaka(c.get("created_at")),
        ],
    ),
    ExportSection(
        "Service Tasks", "service_tasks",
        ("Customer ID", "Customer", "Title", "Type", "Status", "Priority", "Scheduled",
         "Completed", "Notes", "Created"),
        lambda t, lk: [
            *_customer_cells(t, lk), t.get("title"), t.get("task_type"), t.get("status"),
            t.get("priority"), t.get("scheduled_date"), to_dhaka(t.get("completed_at")),
            t.get("notes"), to_dhaka(t.get("created_at")),
        ],
    ),
    ExportSection(
        "Inventory", "inventory_items",
        ("Product", "Serial", "MAC", "Status", "Purchase Price", "Purchase Date",
         "Warranty End", "Supplier", "Cable Color", "Core Count", "Cable Length",
         "Notes", "Created"),
        lambda i, lk: [
            lk.name("products", i.get("product_id")), i.get("serial_number"),
            i.get("mac_address"), i.get("status"), i.get("purchase_price"),
            i.get("purchase_date"), i.get("warranty_end_date"),
            lk.name("suppliers", i.get("supplier_id")), i.get("cable_color"),
            i.get("core_count"), i.get("cable_length_m"), i.get("notes"),
            to_dhaka(i.get("created_at")),
        ],
    ),
    ExportSection(
        "Stock Movements", "stock_movements",
        ("Item ID", "From", "To", "Type", "Qty", "Notes", "Created"),
        lambda s, lk: [
            s.get("inventory_item_id"), s.get("from_status"), s.get("to_status"),
            s.get("movement_type"), s.get("quantity"), s.get("notes"),
            to_dhaka(s.get("created_at")),
        ],
    ),
    ExportSection(
        "Cable Usage", "metered_usage_logs",
        ("Product", "Customer ID", "Customer", "Qty", "Color", "Core Count", "Type",
         "Selling Price", "Account Type", "Technician", "Date", "Notes"),
        lambda u, lk: [
            lk.name("products", u.get("product_id")), *_customer_cells(u, lk),
            u.get("quantity_used"), u.get("color"), u.get("core_count"),
            u.get("usage_type"), u.get("selling_price"), u.get("account_type"),
            u.get("technician_name"), u.get("usage_date"), u.get("notes"),
        ],
    ),
    ExportSection(
        "Employees", "employees",
        ("Code", "Name", "Department ID", "Designation ID", "Status", "Joining Date",
         "Termination Date", "Notes"),
        lambda e, lk: [
            e.get("employee_code"), e.get("full_name"), e.get("department_id"),
            e.get("designation_id"), e.get("status"), e.get("joining_date"),
            e.get("termination_date"), e.get("notes"),
        ],
        columns=(
            "id, employee_code, full_name, department_id, designation_id, status, "
            "joining_date, termination_date, notes, created_at"
        ),
    ),
    ExportSection(
        "Leave Requests", "leave_requests",
        ("Employee Code", "Employee", "Leave Type", "Start", "End", "Status", "Reason",
         "Created"),
        lambda lr, lk: [
            lk.row("employees", lr.get("employee_id")).get("employee_code"),
            lk.row("employees", lr.get("employee_id")).get("full_name"),
            lk.name("leave_types", lr.get("leave_type_id")), lr.get("start_date"),
            lr.get("end_date"), lr.get("status"), lr.get("reason"),
            to_dhaka(lr.get("created_at")),
        ],
    ),
    ExportSection(
        "Reminders", "reminder_logs",
        ("Customer ID", "Customer", "Type", "Channel", "Message", "Sent At"),
        lambda r, lk: [
            *_customer_cells(r, lk), r.get("reminder_type"), r.get("channel"),
            r.get("message"), to_dhaka(r.get("sent_at")),
        ],
        order_by="sent_at",
    ),
    ExportSection(
        "Call Records", "call_records",
        ("Customer ID", "Customer", "Notes", "Call Date", "Created"),
        lambda c, lk: [
            *_customer_cells(c, lk), c.get("notes"), to_dhaka(c.get("call_date")),
            to_dhaka(c.get("created_at")),
        ],
    ),
    ExportSection(
        "PPPoE Users", "mikrotik_users",
        ("Customer ID", "Customer", "Username", "Profile", "Status", "Router ID"),
        lambda m, lk: [
            *_customer_cells(m, lk), m.get("username"), m.get("profile"),
            m.get("status"), m.get("router_id"),
        ],
        columns="id, customer_id, username, profile, status, router_id, created_at",
    ),
    ExportSection(
        "Packages", "packages",
        ("Name", "Speed (Mbps)", "Price", "Validity Days", "Active", "Description"),
        lambda p, lk: [
            p.get("name"), p.get("speed_mbps"), p.get("monthly_price"),
            p.get("validity_days"), p.get("is_active"), p.get("description"),
        ],
    ),
    ExportSection(
        "Routers", "routers",
        ("Name", "IP Address", "Username", "Port", "Mode", "Active"),
        lambda r, lk: [
            r.get("name"), r.get("ip_address"), r.get("username"), r.get("port"),
            r.get("mode"), r.get("is_active"),
        ],
        columns="id, name, ip_address, username, port, mode, is_active, created_at",
    ),
    ExportSection(
        "Areas", "areas",
        ("Name", "Description", "Created"),
        lambda a, lk: [a.get("name"), a.get("description"), to_dhaka(a.get("created_at"))],
    ),
    ExportSection(
        "Resellers", "resellers",
        ("Code", "Name", "Phone", "Email", "Address", "Commission %", "Status", "Created"),
        lambda r, lk: [
            r.get("reseller_code"), r.get("name"), r.get("phone"), r.get("email"),
            r.get("address"), r.get("commission_rate"), r.get("status"),
            to_dhaka(r.get("created_at")),
        ],
        columns=(
            "id, reseller_code, name, phone, email, address, commission_rate, "
            "status, created_at"
        ),
    ),
    ExportSection(
        "Reseller Customers", "reseller_customers",
        ("Reseller Code", "Reseller", "Customer ID", "Customer", "Created"),
        lambda rc, lk: [
            *_reseller_cells(rc, lk), *_customer_cells(rc, lk),
            to_dhaka(rc.get("created_at")),
        ],
    ),
    ExportSection(
        "Reseller Commissions", "reseller_commissions",
        ("Reseller Code", "Reseller", "Customer ID", "Customer", "Amount", "Status",
         "Notes", "Created"),
        lambda c, lk: [
            *_reseller_cells(c, lk), *_customer_cells(c, lk), c.get("amount"),
            c.get("status"), c.get("notes"), to_dhaka(c.get("created_at")),
        ],
    ),
)

# Referenced only for display names; never exported as sections.
LOOKUP_TABLES: tuple[str, ...] = ("expense_categories", "products", "suppliers", "leave_types")


def backup_file_name(moment: datetime) -> str:
    """``full_backup_YYYY-MM-DD_HH-MM-SS.csv`` in Dhaka time."""
    local = moment.astimezone(DHAKA)
    return f"full_backup_{local.strftime('%Y-%m-%d_%H-%M-%S')}.csv"


async def render_snapshot(
    adapter: DatabaseClient,
    generated_at: datetime | None = None,
    sections: tuple[ExportSection, ...] = EXPORT_SECTIONS,
) -> RenderedSnapshot:
    """Read the store and render the snapshot text (without BOM).

    Raises:
        Exception: Any store read failure; a partial snapshot is never
            produced.
    """
    generated_at = generated_at or datetime.now(timezone.utc)

    data: dict[str, list[dict]] = {}
    for section in sections:
        data[section.table] = await adapter.select(
            section.table, section.columns, order_by=section.order_by
        )
    for table in LOOKUP_TABLES:
        data[table] = await adapter.select(table, "id, name")

    lookups = Lookups(data)

    counts: dict[str, int] = {}
    parts: list[str] = []
    for section in sections:
        records = data[section.table]
        counts[section.name] = len(records)
        parts.append(
            build_section(
                section.name,
                section.headers,
                [section.render(record, lookups) for record in records],
            )
        )
        logger.debug("Rendered %s: %d records", section.name, len(records))

    total = sum(counts.values())
    text = build_preamble(generated_at, total, counts.items()) + "".join(parts)
    return RenderedSnapshot(text=text, total_records=total, tables=counts)


async def _log_failure(adapter: DatabaseClient, exc: Exception) -> None:
    try:
        await adapter.insert(BACKUP_LOG_TABLE, {
            "file_name": "failed",
            "file_path": "failed",
            "status": "failed",
            "error_message": str(exc),
        })
    except Exception as log_exc:
        logger.error("Failed to log backup failure: %s", log_exc)


async def export_snapshot(
    adapter: DatabaseClient,
    blob_store: BlobStore,
    now: datetime | None = None,
) -> ExportResult:
    """Render a snapshot, store it and record it in ``backup_logs``.

    Args:
        adapter: Store to read from; also receives the log row.
        blob_store: Destination for the snapshot file.  Existing files
            are never overwritten.
        now: Generation time (defaults to the current UTC time).

    Returns:
        ``ExportResult`` describing the stored file.

    Raises:
        Exception: Whatever rendering or storing raised.  A ``failed`` log
            row is attempted first.
    """
    now = now or datetime.now(timezone.utc)
    file_name = backup_file_name(now)

    try:
        rendered = await render_snapshot(adapter, now)
        payload = (BOM + rendered.text).encode("utf-8")
        file_path = await blob_store.put(file_name, payload, content_type="text/csv")
    except Exception as exc:
        logger.error("Backup failed: %s", exc)
        await _log_failure(adapter, exc)
        raise

    try:
        await adapter.insert(BACKUP_LOG_TABLE, {
            "file_name": file_name,
            "file_path": file_path,
            "file_size_bytes": len(payload),
            "record_count": rendered.total_records,
            "status": "success",
        })
    except Exception as exc:
        logger.error("Failed to log backup: %s", exc)

    logger.info("Backup %s written: %d records", file_name, rendered.total_records)
    return ExportResult(
        file_name=file_name,
        file_path=file_path,
        record_count=rendered.total_records,
        file_size_bytes=len(payload),
        tables=rendered.tables,
    )
