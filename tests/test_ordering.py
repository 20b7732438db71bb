"""Tests for the fixed wipe/restore ordering."""

import pytest

from isp_backup.snapshot.ordering import (
    DELETION_ORDER,
    RESTORE_ORDER,
    TABLE_REFERENCES,
    check_deletion_order,
)


class TestDeletionOrder:
    """The hand-maintained deletion list stays consistent with the FKs."""

    def test_literal_passes_check(self) -> None:
        check_deletion_order(DELETION_ORDER, TABLE_REFERENCES)

    def test_children_before_parents(self) -> None:
        position = {table: i for i, table in enumerate(DELETION_ORDER)}
        assert position["invoice_items"] < position["invoices"] < position["customers"]
        assert position["ticket_comments"] < position["support_tickets"]
        assert position["customers"] < position["areas"]
        assert position["customers"] < position["packages"]

    def test_no_duplicates(self) -> None:
        assert len(DELETION_ORDER) == len(set(DELETION_ORDER))

    def test_parent_first_rejected(self) -> None:
        with pytest.raises(ValueError, match="invoice_items must be deleted before invoices"):
            check_deletion_order(
                ("invoices", "invoice_items"),
                {"invoice_items": frozenset({"invoices"})},
            )

    def test_duplicate_rejected(self) -> None:
        with pytest.raises(ValueError, match="appears twice"):
            check_deletion_order(("areas", "areas"), {})

    def test_missing_parent_rejected(self) -> None:
        with pytest.raises(ValueError, match="never deleted"):
            check_deletion_order(("customers",), {"customers": frozenset({"areas"})})

    def test_missing_child_rejected(self) -> None:
        with pytest.raises(ValueError, match="never deleted"):
            check_deletion_order(("areas",), {"customers": frozenset({"areas"})})


class TestRestoreOrder:
    """Anchors first, dependents after the tables they reference."""

    def test_anchor_tables_lead(self) -> None:
        assert RESTORE_ORDER[:3] == ("Areas", "Packages", "Customers")

    def test_dependents_follow_parents(self) -> None:
        order = list(RESTORE_ORDER)
        assert order.index("Invoices") < order.index("Invoice Items")
        assert order.index("Support Tickets") < order.index("Ticket Comments")
        assert order.index("Resellers") < order.index("Reseller Customers")
