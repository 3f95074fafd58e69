"""
Spreadsheet ingestion for customer imports.

Turns an uploaded CSV or Excel workbook into a header list and an ordered
sequence of ``RawRow`` objects. Both formats go through the same grid
normalisation so that equivalent content yields the same rows regardless of
where it came from.
"""
import csv
import io
import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, time
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from .errors import EmptyFileError, MalformedFileError, UnsupportedFormatError

logger = logging.getLogger(__name__)

CSV_EXTENSIONS = (".csv",)
EXCEL_EXTENSIONS = (".xlsx", ".xls")
ALLOWED_EXTENSIONS = CSV_EXTENSIONS + EXCEL_EXTENSIONS

# Tried in order; cp932 covers CSV exports from Japanese Excel.
TEXT_ENCODINGS = ("utf-8-sig", "cp932")


@dataclass(frozen=True)
class RawRow:
    """
    One retained spreadsheet row.

    ``index`` is 1-based among retained (non-empty) rows and is what every
    diagnostic and per-row result refers to. ``values`` maps source column
    name to the trimmed cell text and is read-only.
    """
    index: int
    values: Mapping[str, str]

    def __post_init__(self):
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    @property
    def position(self) -> int:
        """Zero-based position of the row in the parsed sequence."""
        return self.index - 1

    def get(self, column: str, default: str = "") -> str:
        return self.values.get(column, default)

    def to_dict(self) -> Dict[str, str]:
        return dict(self.values)


@dataclass(frozen=True)
class ParsedFile:
    headers: Tuple[str, ...]
    rows: Tuple[RawRow, ...]
    file_type: str

    @property
    def row_count(self) -> int:
        return len(self.rows)


def detect_file_type(file_name: str) -> str:
    """
    Detect file type from filename extension.

    Returns:
        'csv' or 'excel'

    Raises:
        UnsupportedFormatError: If the extension is not an accepted one
    """
    lowered = (file_name or "").strip().lower()
    if lowered.endswith(CSV_EXTENSIONS):
        return "csv"
    if lowered.endswith(EXCEL_EXTENSIONS):
        return "excel"
    raise UnsupportedFormatError(file_name)


def _cell_to_text(value: Any) -> str:
    """Render a cell as trimmed text; numbers lose a spurious trailing '.0'."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if value is pd.NaT:
        return ""
    if isinstance(value, datetime):
        if value.time() == time(0, 0):
            return value.date().isoformat()
        return value.isoformat(sep=" ")
    if isinstance(value, date):
        return value.isoformat()
    return str(value).strip()


def _build_columns(header_cells: Sequence[str]) -> List[Tuple[int, str]]:
    """Pair each named header cell with its position; blank headers are dropped."""
    columns: List[Tuple[int, str]] = []
    taken = set()
    for position, raw_name in enumerate(header_cells):
        name = raw_name.strip()
        if not name:
            continue
        candidate = name
        suffix = 1
        while candidate in taken:
            candidate = f"{name}_{suffix}"
            suffix += 1
        taken.add(candidate)
        columns.append((position, candidate))
    return columns


def rows_from_grid(grid: Iterable[Sequence[Any]], file_name: str) -> Tuple[List[str], List[RawRow]]:
    """
    Convert a grid of cells into headers and indexed rows.

    The first non-empty line is the header. Lines whose cells are all blank
    after trimming are skipped and never counted; cells under a blank header
    do not count, so a line with values only there is skipped too.
    """
    header_cells: Optional[List[str]] = None
    columns: List[Tuple[int, str]] = []
    rows: List[RawRow] = []

    for raw_line in grid:
        cells = [_cell_to_text(cell) for cell in raw_line]
        if not any(cells):
            continue

        if header_cells is None:
            header_cells = cells
            columns = _build_columns(header_cells)
            if not columns:
                raise MalformedFileError(file_name, "header row has no column names")
            continue

        values = {
            name: (cells[position] if position < len(cells) else "")
            for position, name in columns
        }
        if not any(values.values()):
            continue
        rows.append(RawRow(index=len(rows) + 1, values=values))

    if header_cells is None:
        raise EmptyFileError(file_name)
    if not rows:
        raise EmptyFileError(file_name)

    return [name for _, name in columns], rows


def _decode_text(file_content: bytes, file_name: str) -> str:
    for encoding in TEXT_ENCODINGS:
        try:
            return file_content.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise MalformedFileError(file_name, "file is not valid UTF-8 or Shift_JIS text")


def _read_csv_grid(file_content: bytes, file_name: str) -> List[List[str]]:
    text_content = _decode_text(file_content, file_name)
    try:
        return list(csv.reader(io.StringIO(text_content, newline="")))
    except csv.Error as e:
        raise MalformedFileError(file_name, f"CSV parsing error: {e}") from e


def _read_excel_grid(file_content: bytes, file_name: str) -> List[Tuple[Any, ...]]:
    engine = "xlrd" if file_name.lower().endswith(".xls") else "openpyxl"
    try:
        # Only the first sheet is imported.
        df = pd.read_excel(
            io.BytesIO(file_content),
            sheet_name=0,
            header=None,
            dtype=object,
            engine=engine,
        )
    except Exception as e:
        logger.warning("Excel parsing failed for '%s' (engine=%s): %s", file_name, engine, e)
        raise MalformedFileError(file_name, f"Error parsing Excel file: {e}") from e

    return list(df.itertuples(index=False, name=None))


class FileIngestor:
    """Parses uploaded spreadsheets into headers and ``RawRow`` sequences."""

    def parse(self, file_content: bytes, declared_name: str) -> ParsedFile:
        """
        Parse a CSV or Excel file.

        Args:
            file_content: Raw file bytes
            declared_name: The file name supplied by the uploader; its
                extension selects the parser

        Raises:
            UnsupportedFormatError: Extension is not .csv/.xlsx/.xls
            MalformedFileError: The parser could not read the file
            EmptyFileError: No data rows remain after skipping blank lines
        """
        file_type = detect_file_type(declared_name)

        if not file_content or not file_content.strip():
            raise EmptyFileError(declared_name)

        if file_type == "csv":
            grid = _read_csv_grid(file_content, declared_name)
        else:
            grid = _read_excel_grid(file_content, declared_name)

        headers, rows = rows_from_grid(grid, declared_name)
        logger.info(
            "Parsed %s file '%s': %d rows, %d columns",
            file_type, declared_name, len(rows), len(headers),
        )
        return ParsedFile(headers=tuple(headers), rows=tuple(rows), file_type=file_type)


def parse_file(file_content: bytes, declared_name: str) -> ParsedFile:
    """Module-level convenience wrapper around ``FileIngestor.parse``."""
    return FileIngestor().parse(file_content, declared_name)
