"""Downloadable per-row error report for a finished import run."""
import csv
import io
from typing import Mapping, Optional, Sequence

from .catalog import IDENTIFIER_FIELD
from .executor import ImportResult
from .field_mapping import identifier_of
from .ingestion import RawRow

REPORT_COLUMNS = ("row", IDENTIFIER_FIELD, "message")


def error_report_file_name(session_id: str) -> str:
    return f"import-errors-{session_id}.csv"


def build_error_report(
    result: ImportResult,
    rows: Optional[Sequence[RawRow]] = None,
    mapping: Optional[Mapping[str, Optional[str]]] = None,
) -> str:
    """
    Render one CSV line per row error.

    When the parsed rows and mapping are available the identifier of each
    failed row is included so the operator can find it in the source file.
    """
    by_index = {row.index: row for row in rows or ()}

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(REPORT_COLUMNS)
    for error in result.errors:
        row = by_index.get(error.row)
        identifier = identifier_of(row, mapping) if row is not None and mapping else ""
        writer.writerow([error.row, identifier, error.message])
    return buffer.getvalue()
