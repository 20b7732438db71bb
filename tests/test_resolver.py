"""Tests for NaturalKeyResolver."""

import pytest

from conftest import ConstraintViolation
from isp_backup.snapshot.resolver import NaturalKeyResolver


@pytest.mark.asyncio
class TestNaturalKeyResolver:
    """Natural key -> surrogate id mapping against the store."""

    async def test_ensure_inserts_missing(self, store) -> None:
        areas = NaturalKeyResolver(store, "areas", "name")

        area_id, created = await areas.ensure("Zone A", lambda: {"name": "Zone A"})

        assert created is True
        assert store.rows("areas")[0]["id"] == area_id
        assert areas.get("Zone A") == area_id
        assert "Zone A" in areas

    async def test_ensure_reuses_existing(self, store) -> None:
        existing = store.seed("areas", name="Zone A", description="old")
        areas = NaturalKeyResolver(store, "areas", "name")

        def build() -> dict:
            raise AssertionError("must not build a row for an existing key")

        area_id, created = await areas.ensure("Zone A", build)

        assert created is False
        assert area_id == existing["id"]
        assert store.rows("areas")[0]["description"] == "old"
        assert store.count("areas") == 1

    async def test_ensure_propagates_insert_failure(self, store) -> None:
        store.fail_insert("areas")
        areas = NaturalKeyResolver(store, "areas", "name")

        with pytest.raises(ConstraintViolation):
            await areas.ensure("Zone A", lambda: {"name": "Zone A"})
        assert "Zone A" not in areas

    async def test_find_does_not_cache(self, store) -> None:
        row = store.seed("invoices", invoice_number="INV-1")
        invoices = NaturalKeyResolver(store, "invoices", "invoice_number")

        assert await invoices.find("INV-1") == row["id"]
        assert await invoices.find("INV-2") is None
        assert len(invoices) == 0

    async def test_refresh_merges_store_rows(self, store) -> None:
        first = store.seed("areas", name="Zone A")
        store.seed("areas", name="Zone B")
        areas = NaturalKeyResolver(store, "areas", "name")

        await areas.refresh()

        assert len(areas) == 2
        assert areas.get("Zone A") == first["id"]

    async def test_refresh_keeps_run_mapping(self, store) -> None:
        areas = NaturalKeyResolver(store, "areas", "name")
        area_id, _ = await areas.ensure("Zone A", lambda: {"name": "Zone A"})
        store.seed("areas", name="Zone B")

        await areas.refresh()

        assert areas.get("Zone A") == area_id
        assert "Zone B" in areas

    async def test_get_empty_key(self, store) -> None:
        areas = NaturalKeyResolver(store, "areas", "name")
        assert areas.get("") is None
        assert areas.get(None) is None

    async def test_mapping_is_a_copy(self, store) -> None:
        areas = NaturalKeyResolver(store, "areas", "name")
        await areas.ensure("Zone A", lambda: {"name": "Zone A"})

        snapshot = areas.mapping
        snapshot.clear()

        assert "Zone A" in areas
