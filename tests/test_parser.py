"""Tests for the snapshot text parser."""

import pytest

from conftest import ZONE_A_SNAPSHOT
from isp_backup.snapshot.parser import (
    BOM,
    NO_SECTIONS_MESSAGE,
    SnapshotFormatError,
    parse_sections,
    parse_snapshot,
    parse_snapshot_strict,
    split_csv_line,
    validate_snapshot,
)


# ============================================================================
# Test: split_csv_line
# ============================================================================


class TestSplitCsvLine:
    """Quote-aware splitting of one CSV line."""

    def test_plain_fields(self) -> None:
        assert split_csv_line("a,b,c") == ["a", "b", "c"]

    def test_quoted_comma(self) -> None:
        """A comma inside quotes is part of the field."""
        assert split_csv_line('x,"Road 5, Block B",y') == ["x", "Road 5, Block B", "y"]

    def test_escaped_quote(self) -> None:
        assert split_csv_line('"say ""hi"""') == ['say "hi"']

    def test_quote_inside_unquoted_field_is_literal(self) -> None:
        assert split_csv_line('a,12" monitor,b') == ["a", '12" monitor', "b"]

    def test_empty_fields(self) -> None:
        assert split_csv_line(",,") == ["", "", ""]

    def test_unquoted_whitespace_kept(self) -> None:
        assert split_csv_line(" a , b") == [" a ", " b"]

    def test_empty_line(self) -> None:
        assert split_csv_line("") == [""]


# ============================================================================
# Test: parse_snapshot
# ============================================================================


class TestParseSnapshot:
    """Sectioned text -> {display name: rows}."""

    def test_zone_a_example(self) -> None:
        tables = parse_snapshot(ZONE_A_SNAPSHOT)

        assert list(tables) == ["Areas", "Customers"]
        assert tables["Areas"] == [{"Name": "Zone A", "Description": "North district"}]
        assert tables["Customers"][0]["User ID"] == "ISP00001"
        assert tables["Customers"][0]["Area"] == "Zone A"

    def test_bom_is_stripped(self) -> None:
        tables = parse_snapshot(BOM + ZONE_A_SNAPSHOT)
        assert "Areas" in tables

    def test_preamble_ignored(self) -> None:
        text = (
            "=== FULL SYSTEM BACKUP ===\n"
            "Generated: 2025-01-01 06:00:00.000 (Dhaka UTC+6)\n"
            "Total Records: 1\n"
            "\n"
            "Areas: 1 records\n"
            "\n"
            "=== Areas (1 records) ===\n"
            "Name,Description\n"
            "Zone A,\n"
        )
        assert parse_snapshot(text) == {"Areas": [{"Name": "Zone A", "Description": ""}]}

    def test_lines_before_first_section_ignored(self) -> None:
        text = "stray,line\n=== Areas (1 records) ===\nName\nZone A\n"
        assert parse_snapshot(text) == {"Areas": [{"Name": "Zone A"}]}

    def test_crlf_line_endings(self) -> None:
        text = ZONE_A_SNAPSHOT.replace("\n", "\r\n")
        tables = parse_snapshot(text)
        assert tables["Customers"][0]["Area"] == "Zone A"

    def test_short_row_padded(self) -> None:
        text = "=== Areas (1 records) ===\nName,Description\nZone A\n"
        assert parse_snapshot(text)["Areas"] == [{"Name": "Zone A", "Description": ""}]

    def test_declared_count_is_informational(self) -> None:
        text = "=== Areas (5 records) ===\nName\nZone A\nZone B\n"
        assert len(parse_snapshot(text)["Areas"]) == 2

    def test_repeated_section_concatenates(self) -> None:
        text = (
            "=== Areas (1 records) ===\nName\nZone A\n"
            "=== Areas (1 records) ===\nName\nZone B\n"
        )
        names = [row["Name"] for row in parse_snapshot(text)["Areas"]]
        assert names == ["Zone A", "Zone B"]

    def test_header_only_section(self) -> None:
        text = "=== Payments (0 records) ===\nCustomer ID,Amount\n"
        assert parse_snapshot(text) == {"Payments": []}

    def test_empty_section(self) -> None:
        """A marker followed by nothing still yields the table."""
        assert parse_snapshot("=== Payments (0 records) ===\n") == {"Payments": []}

    def test_no_sections(self) -> None:
        assert parse_snapshot("just,some\ncsv,text\n") == {}

    def test_quoted_fields_inside_section(self) -> None:
        text = '=== Customers (1 records) ===\nUser ID,Address\nISP1,"House 3, Road 7"\n'
        assert parse_snapshot(text)["Customers"][0]["Address"] == "House 3, Road 7"

    def test_stray_quote_keeps_following_sections(self) -> None:
        text = (
            "=== Areas (1 records) ===\nName,Description\n"
            'Zone A,12" dish site\n'
            "=== Customers (1 records) ===\nUser ID,Name\nISP00001,Jane Doe\n"
        )
        tables = parse_snapshot(text)

        assert tables["Areas"] == [{"Name": "Zone A", "Description": '12" dish site'}]
        assert tables["Customers"] == [{"User ID": "ISP00001", "Name": "Jane Doe"}]

    def test_unclosed_quote_stops_at_next_section(self) -> None:
        text = (
            "=== Areas (1 records) ===\nName,Description\n"
            'Zone A,"never closed\nmore text\n'
            "=== Customers (1 records) ===\nUser ID,Name\nISP00001,Jane Doe\n"
        )
        tables = parse_snapshot(text)

        assert tables["Areas"][0]["Description"] == "never closed\nmore text"
        assert tables["Customers"] == [{"User ID": "ISP00001", "Name": "Jane Doe"}]

    def test_quoted_newline_rejoined(self) -> None:
        text = (
            "=== Customers (2 records) ===\r\nUser ID,Address\r\n"
            'ISP1,"House 3\r\nRoad 7"\r\nISP2,Mirpur\r\n'
        )
        rows = parse_snapshot(text)["Customers"]
        assert [row["Address"] for row in rows] == ["House 3\nRoad 7", "Mirpur"]


class TestParseSections:
    """Section-level parsing keeps the marker metadata."""

    def test_declared_count_recorded(self) -> None:
        sections = parse_sections("=== Areas (3 records) ===\nName\nZone A\n")
        assert sections[0].name == "Areas"
        assert sections[0].declared_count == 3
        assert sections[0].headers == ["Name"]


class TestParseSnapshotStrict:
    """Strict parse refuses text without sections."""

    def test_raises_without_sections(self) -> None:
        with pytest.raises(SnapshotFormatError, match=NO_SECTIONS_MESSAGE):
            parse_snapshot_strict("nothing here")

    def test_error_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            parse_snapshot_strict("")

    def test_returns_tables(self) -> None:
        assert "Areas" in parse_snapshot_strict(ZONE_A_SNAPSHOT)


# ============================================================================
# Test: validate_snapshot
# ============================================================================


class TestValidateSnapshot:
    """Pre-restore inspection."""

    def test_valid(self) -> None:
        result = validate_snapshot(ZONE_A_SNAPSHOT)
        assert result["valid"] is True
        assert result["errors"] == []
        assert result["tables"] == {"Areas": 1, "Customers": 1}

    def test_invalid_without_sections(self) -> None:
        result = validate_snapshot("no sections")
        assert result["valid"] is False
        assert result["errors"] == [NO_SECTIONS_MESSAGE]

    def test_count_mismatch_warns(self) -> None:
        result = validate_snapshot("=== Areas (2 records) ===\nName\nZone A\n")
        assert result["valid"] is True
        assert any("declared 2 records, found 1" in w for w in result["warnings"])

    def test_unknown_section_warns(self) -> None:
        text = "=== Routers (0 records) ===\nName\n"
        result = validate_snapshot(text, known_tables={"Areas"})
        assert any("Routers: not restorable" in w for w in result["warnings"])

    def test_missing_header_warns(self) -> None:
        result = validate_snapshot("=== Areas (0 records) ===\n")
        assert any("no header row" in w for w in result["warnings"])
