"""Snapshot text parser.

A snapshot is a single CSV-flavoured text file holding many tables::

    === FULL SYSTEM BACKUP ===
    Generated: 2025-01-01 06:00:00.000 (Dhaka UTC+6)
    Total Records: 2

    Areas: 1 records
    Customers: 1 records

    === Areas (1 records) ===
    Name,Description
    Zone A,North district

    === Customers (1 records) ===
    User ID,Name,Phone,Area
    ISP00001,Jane Doe,01712345678,Zone A

Everything here is pure and synchronous: text in, rows out.

Usage:
    from isp_backup.snapshot.parser import parse_snapshot

    tables = parse_snapshot(text)
    tables["Areas"][0]["Name"]
    # 'Zone A'
"""

import re
from typing import Any, Iterator

from isp_backup.snapshot.models import Row, Section

BOM = "\ufeff"

SECTION_RE = re.compile(r"^=== (.+) \((\d+) records\) ===$")

PREAMBLE_RES = (
    re.compile(r"^=== FULL SYSTEM BACKUP"),
    re.compile(r"^Generated: "),
    re.compile(r"^Total Records: "),
    re.compile(r"^[^,]+: \d+ records$"),
)

NO_SECTIONS_MESSAGE = "No valid data sections found"


class SnapshotFormatError(ValueError):
    """Raised when a snapshot holds no recognizable data section."""


def _scan(line: str) -> tuple[list[str], bool]:
    """Split ``line`` into fields; also report whether a quoted field is left open."""
    fields: list[str] = []
    current: list[str] = []
    in_quotes = False
    field_start = True
    i = 0
    length = len(line)

    while i < length:
        char = line[i]
        if in_quotes:
            if char == '"':
                if i + 1 < length and line[i + 1] == '"':
                    current.append('"')
                    i += 1
                else:
                    in_quotes = False
            else:
                current.append(char)
        elif char == '"' and field_start:
            in_quotes = True
            field_start = False
        elif char == ",":
            fields.append("".join(current))
            current = []
            field_start = True
        else:
            current.append(char)
            field_start = False
        i += 1

    fields.append("".join(current))
    return fields, in_quotes


def split_csv_line(line: str) -> list[str]:
    """Split one CSV line into fields.

    A field is quoted only when it starts with ``"``; it may then contain
    commas, and ``""`` inside it is an escaped quote.  Unquoted fields are
    taken verbatim up to the next comma, stray quotes included.

    Example:
        >>> split_csv_line('a,"b, c","say ""hi"" twice",12" dish')
        ['a', 'b, c', 'say "hi" twice', '12" dish']
    """
    return _scan(line)[0]


def _records(text: str) -> Iterator[str]:
    """Yield logical CSV records.

    A line whose last field opened quoted and is still open continues on
    the next line.  A section marker always starts a new record, so a
    malformed field can at worst swallow the rest of its own section.
    """
    pending: str | None = None
    for raw_line in text.split("\n"):
        line = raw_line.rstrip("\r")
        if pending is not None:
            if SECTION_RE.match(line):
                yield pending
                pending = None
            else:
                record = f"{pending}\n{line}"
                if _scan(record)[1]:
                    pending = record
                else:
                    pending = None
                    yield record
                continue

        if _scan(line)[1]:
            pending = line
        else:
            yield line

    if pending is not None:
        yield pending


def _is_preamble(line: str) -> bool:
    return any(pattern.match(line) for pattern in PREAMBLE_RES)


def parse_sections(text: str) -> list[Section]:
    """Parse snapshot text into ordered sections.

    Lines before the first section marker and blank lines are ignored.
    A quoted field may span several lines.
    Within a section the first other line is the header row; each later
    line becomes a row zipped against the headers, padded with ``""``
    when short.
    """
    if text.startswith(BOM):
        text = text[len(BOM):]

    sections: list[Section] = []
    current: Section | None = None

    for line in _records(text):
        if not line.strip():
            continue

        marker = SECTION_RE.match(line)
        if marker:
            current = Section(name=marker.group(1), declared_count=int(marker.group(2)))
            sections.append(current)
            continue

        if _is_preamble(line) or current is None:
            continue

        fields = split_csv_line(line)
        if not current.headers:
            current.headers = fields
            continue

        headers = current.headers
        padded = fields + [""] * (len(headers) - len(fields))
        current.rows.append(dict(zip(headers, padded)))

    return sections


def parse_snapshot(text: str) -> dict[str, list[Row]]:
    """Parse snapshot text into ``{table display name: [row, ...]}``.

    An empty result means no section was recognized; callers must treat
    that as "no valid data sections found" and not restore anything.
    """
    tables: dict[str, list[Row]] = {}
    for section in parse_sections(text):
        tables.setdefault(section.name, []).extend(section.rows)
    return tables


def parse_snapshot_strict(text: str) -> dict[str, list[Row]]:
    """Like ``parse_snapshot`` but raise when nothing was recognized.

    Raises:
        SnapshotFormatError: If the text contains no section marker.
    """
    tables = parse_snapshot(text)
    if not tables:
        raise SnapshotFormatError(NO_SECTIONS_MESSAGE)
    return tables


def validate_snapshot(text: str, known_tables: set[str] | None = None) -> dict[str, Any]:
    """Check snapshot text before a restore.

    Args:
        text: Snapshot text.
        known_tables: Display names the restorer understands.  Sections
            outside this set produce a warning (they are exported for
            completeness but never restored).

    Returns:
        Dict with ``valid`` (bool), ``errors`` (list[str]),
        ``warnings`` (list[str]) and ``tables`` (name -> parsed row count).
    """
    errors: list[str] = []
    warnings: list[str] = []

    sections = parse_sections(text)
    if not sections:
        errors.append(NO_SECTIONS_MESSAGE)
        return {"valid": False, "errors": errors, "warnings": warnings, "tables": {}}

    counts: dict[str, int] = {}
    for section in sections:
        counts[section.name] = counts.get(section.name, 0) + len(section.rows)

        if not section.headers:
            warnings.append(f"{section.name}: section has no header row")
        if section.declared_count != len(section.rows):
            warnings.append(
                f"{section.name}: declared {section.declared_count} records, "
                f"found {len(section.rows)}"
            )
        if known_tables is not None and section.name not in known_tables:
            warnings.append(f"{section.name}: not restorable, will be ignored")

    return {"valid": True, "errors": errors, "warnings": warnings, "tables": counts}
