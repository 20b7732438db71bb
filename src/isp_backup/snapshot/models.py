"""Snapshot and restore result models.

Usage:
    from isp_backup.snapshot.models import RestoreReport, TableOutcome

    report = RestoreReport()
    report.table("Areas").success += 1
    report.to_response()
    # {"success": True, "total_restored": 1, "total_errors": 0, "details": {...}}
"""

from typing import Any

from pydantic import BaseModel, Field

Row = dict[str, str]


class Section(BaseModel):
    """One table's worth of rows inside a snapshot."""

    name: str
    declared_count: int            # from the marker line, informational only
    headers: list[str] = Field(default_factory=list)
    rows: list[Row] = Field(default_factory=list)


class TableOutcome(BaseModel):
    """Per-table restore statistics.

    ``success`` counts rows inserted or matched by natural key.  Rows
    skipped for a missing natural key or an unresolved reference only
    count towards ``skipped``.
    """

    success: int = 0
    errors: list[str] = Field(default_factory=list)
    skipped: int = 0


class RestoreReport(BaseModel):
    """Aggregated outcome of one restore run, keyed by table display name."""

    details: dict[str, TableOutcome] = Field(default_factory=dict)

    def table(self, name: str) -> TableOutcome:
        """Return the outcome for ``name``, creating it on first use."""
        if name not in self.details:
            self.details[name] = TableOutcome()
        return self.details[name]

    @property
    def total_restored(self) -> int:
        return sum(outcome.success for outcome in self.details.values())

    @property
    def total_errors(self) -> int:
        return sum(len(outcome.errors) for outcome in self.details.values())

    def to_response(self) -> dict[str, Any]:
        """Render the caller-visible success payload."""
        return {
            "success": True,
            "total_restored": self.total_restored,
            "total_errors": self.total_errors,
            "details": {
                name: outcome.model_dump() for name, outcome in self.details.items()
            },
        }


class RestoreOptions(BaseModel):
    """Knobs for a restore run; defaults mirror ``BackupSettings``."""

    default_password: str = "123456"
    placeholder_credential: str = "$2b$10$placeholder"
    pppoe_password: str = "12345678"
    country_code: str = "880"
    placeholder_phone: str = "8801000000000"
    skips_as_errors: bool = False


class RestoreRequest(BaseModel):
    """Body of a restore request."""

    tables: dict[str, list[Row]]
    clean_existing: bool = False


class RenderedSnapshot(BaseModel):
    """A serialized snapshot and its per-table record counts."""

    text: str
    total_records: int
    tables: dict[str, int]


class ExportResult(BaseModel):
    """Outcome of ``export_snapshot``."""

    file_name: str
    file_path: str
    record_count: int
    file_size_bytes: int
    tables: dict[str, int]


class BackupLog(BaseModel):
    """A row of the ``backup_logs`` table."""

    id: str
    file_name: str
    file_path: str
    file_size_bytes: int | None = None
    record_count: int | None = None
    status: str
    error_message: str | None = None
    created_at: str | None = None
