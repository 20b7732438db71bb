"""Snapshot text writer.

Formatting half of the snapshot wire format; ``parser.py`` is the other
half.  Pure functions only.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Any, Iterable, Sequence

DHAKA = timezone(timedelta(hours=6))
DHAKA_SUFFIX = " (BD)"


def format_value(value: Any) -> str:
    """Render a store value as snapshot text.

    ``None`` becomes ``""``, booleans become ``true``/``false`` and
    whole-number floats drop their ``.0``.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def escape_csv(value: Any) -> str:
    """Format a value and quote it if it contains ``,``, ``"`` or a newline.

    Example:
        >>> escape_csv('Road 5, "Blue" house')
        '"Road 5, ""Blue"" house"'
    """
    text = format_value(value)
    if "," in text or '"' in text or "\n" in text:
        return '"' + text.replace('"', '""') + '"'
    return text


def to_dhaka(value: Any) -> str:
    """Render a timestamp in Dhaka time as ``YYYY-MM-DD HH:MM:SS.mmm (BD)``.

    Naive timestamps are taken as UTC.  Values that do not parse are
    returned unchanged; empty values become ``""``.
    """
    if value is None or value == "":
        return ""
    if isinstance(value, datetime):
        moment = value
    else:
        try:
            moment = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return str(value)

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    local = moment.astimezone(DHAKA)
    millis = local.microsecond // 1000
    return f"{local.strftime('%Y-%m-%d %H:%M:%S')}.{millis:03d}{DHAKA_SUFFIX}"


def build_section(name: str, headers: Sequence[str], rows: Sequence[Sequence[Any]]) -> str:
    """Render one ``=== <name> (<n> records) ===`` section.

    The declared count is always ``len(rows)``.
    """
    header_line = ",".join(escape_csv(h) for h in headers)
    data_lines = "\n".join(",".join(escape_csv(v) for v in row) for row in rows)
    return f"\n=== {name} ({len(rows)} records) ===\n{header_line}\n{data_lines}\n"


def build_preamble(generated_at: datetime, total: int, summary: Iterable[tuple[str, int]]) -> str:
    """Render the informational header that precedes the first section."""
    local = generated_at.astimezone(DHAKA)
    millis = local.microsecond // 1000
    stamp = f"{local.strftime('%Y-%m-%d %H:%M:%S')}.{millis:03d}"
    summary_lines = "\n".join(f"{label}: {count} records" for label, count in summary)
    return (
        "=== FULL SYSTEM BACKUP ===\n"
        f"Generated: {stamp} (Dhaka UTC+6)\n"
        f"Total Records: {total}\n"
        "\n"
        f"{summary_lines}\n"
    )
