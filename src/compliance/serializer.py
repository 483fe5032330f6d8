"""Export serializer — renders an AggregatedDocument as JSON or CSV.

CSV holds heterogeneous records in one flat table: every leaf record becomes
a row tagged with `data_type` (its origin, e.g. `booking`, `audit_log`).
List sections give one row per item, single-record sections exactly one row,
empty (None) sections none.
"""

from __future__ import annotations

import csv
import io
import json
import logging
from dataclasses import dataclass
from typing import Any

from src.compliance.aggregator import AggregatedDocument
from src.compliance.errors import UnsupportedFormatError
from src.models.enums import ExportFormat

logger = logging.getLogger(__name__)

DATA_TYPE_COLUMN = "data_type"

_MIME_TYPES: dict[ExportFormat, str] = {
    ExportFormat.JSON: "application/json",
    ExportFormat.CSV: "text/csv",
}

_CSV_FORMULA_PREFIXES = ("=", "+", "@", "\t")


@dataclass(frozen=True)
class ExportArtifact:
    """Rendered export, ready for storage."""

    content: str
    mime_type: str
    format: ExportFormat

    @property
    def extension(self) -> str:
        return self.format.value


def parse_format(value: ExportFormat | str) -> ExportFormat:
    """Coerce a format name, raising UnsupportedFormatError for anything else."""
    if isinstance(value, ExportFormat):
        return value
    try:
        return ExportFormat(str(value).lower())
    except ValueError:
        raise UnsupportedFormatError(f"Unsupported export format: {value!r}", format=str(value)) from None


def flatten(document: AggregatedDocument) -> list[dict[str, Any]]:
    """Project every leaf record into a `{data_type, ...fields}` row."""
    rows: list[dict[str, Any]] = []
    for section, value in document.sections.items():
        data_type = document.data_types.get(section, section)
        if value is None:
            continue
        items = value if isinstance(value, list) else [value]
        for item in items:
            row: dict[str, Any] = {DATA_TYPE_COLUMN: data_type}
            if isinstance(item, dict):
                row.update((k, v) for k, v in item.items() if k != DATA_TYPE_COLUMN)
            else:
                row["value"] = item
            rows.append(row)
    return rows


def _csv_cell(value: Any) -> str:
    """Render one cell; nested values as compact JSON, formulas neutralised."""
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        text = json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    elif isinstance(value, bool):
        text = "true" if value else "false"
    else:
        text = str(value)
    if text.startswith(_CSV_FORMULA_PREFIXES):
        return "'" + text
    return text


class ExportSerializer:
    """Stateless renderer for export artifacts."""

    def serialize(self, document: AggregatedDocument, fmt: ExportFormat | str) -> ExportArtifact:
        export_format = parse_format(fmt)
        match export_format:
            case ExportFormat.JSON:
                content = self._to_json(document)
            case ExportFormat.CSV:
                content = self._to_csv(document)
        logger.debug(
            "Serialized export for user=%s as %s (%d chars)", document.subject_id, export_format.value, len(content)
        )
        return ExportArtifact(content=content, mime_type=_MIME_TYPES[export_format], format=export_format)

    def _to_json(self, document: AggregatedDocument) -> str:
        return json.dumps(document.to_dict(), indent=2, sort_keys=True, ensure_ascii=False, default=str)

    def _to_csv(self, document: AggregatedDocument) -> str:
        rows = flatten(document)
        columns = sorted({key for row in rows for key in row if key != DATA_TYPE_COLUMN})
        fieldnames = [DATA_TYPE_COLUMN, *columns]

        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=fieldnames, restval="", lineterminator="\n")
        writer.writeheader()
        for row in rows:
            writer.writerow({key: _csv_cell(value) for key, value in row.items()})
        return buffer.getvalue()


# Module-level singleton
export_serializer = ExportSerializer()
