"""Fixed table ordering for wipe and restore.

The deletion order is a hand-maintained literal, not derived from the
live schema.  ``TABLE_REFERENCES`` records the foreign keys between the
wiped tables, and ``check_deletion_order`` verifies the literal against
it once, at import time.
"""

from collections.abc import Mapping, Sequence

# Children before parents.
DELETION_ORDER: tuple[str, ...] = (
    "invoice_items",
    "invoices",
    "payments",
    "billing_records",
    "reseller_commissions",
    "reseller_customers",
    "ticket_comments",
    "support_tickets",
    "service_tasks",
    "stock_movements",
    "metered_usage_logs",
    "asset_assignments",
    "inventory_items",
    "leave_requests",
    "call_records",
    "reminder_logs",
    "mikrotik_users",
    "customers",
    "resellers",
    "packages",
    "areas",
)

# table -> tables it holds a foreign key to (only tables that are wiped)
TABLE_REFERENCES: dict[str, frozenset[str]] = {
    "invoice_items": frozenset({"invoices"}),
    "invoices": frozenset({"customers"}),
    "payments": frozenset({"customers"}),
    "billing_records": frozenset({"customers"}),
    "reseller_commissions": frozenset({"resellers", "customers"}),
    "reseller_customers": frozenset({"resellers", "customers"}),
    "ticket_comments": frozenset({"support_tickets"}),
    "support_tickets": frozenset({"customers"}),
    "service_tasks": frozenset({"customers"}),
    "stock_movements": frozenset({"inventory_items"}),
    "metered_usage_logs": frozenset({"customers"}),
    "asset_assignments": frozenset({"inventory_items", "customers"}),
    "call_records": frozenset({"customers"}),
    "reminder_logs": frozenset({"customers"}),
    "mikrotik_users": frozenset({"customers"}),
    "customers": frozenset({"areas", "packages"}),
}

# Display names in the order the restorer processes them.
RESTORE_ORDER: tuple[str, ...] = (
    "Areas",
    "Packages",
    "Customers",
    "PPPoE Users",
    "Payments",
    "Billing Records",
    "Invoices",
    "Invoice Items",
    "Transactions",
    "Support Tickets",
    "Ticket Comments",
    "Call Records",
    "Reminders",
    "Resellers",
    "Reseller Customers",
)


def check_deletion_order(
    order: Sequence[str],
    references: Mapping[str, frozenset[str]],
) -> None:
    """Verify every table is deleted strictly before the tables it references.

    Raises:
        ValueError: If a table appears twice, or a referencing table is
            deleted after (or without) a table it references.
    """
    position = {}
    for index, table in enumerate(order):
        if table in position:
            raise ValueError(f"{table} appears twice in deletion order")
        position[table] = index

    for child, parents in references.items():
        if child not in position:
            raise ValueError(f"{child} references other tables but is never deleted")
        for parent in parents:
            if parent not in position:
                raise ValueError(f"{parent} (referenced by {child}) is never deleted")
            if position[child] >= position[parent]:
                raise ValueError(f"{child} must be deleted before {parent}")


check_deletion_order(DELETION_ORDER, TABLE_REFERENCES)
