"""
Row-level validation against the canonical customer catalog.

Diagnostics are returned as data. ``error`` level blocks a row (a missing
required value cannot be repaired at commit time); ``warning`` level is
advisory because bad URLs, numbers and enum values are coerced to a default
or null when the row is committed.
"""
import logging
import math
import re
from dataclasses import asdict, dataclass, field as dataclass_field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set
from urllib.parse import urlparse

from .catalog import CUSTOMER_FIELDS, CanonicalField, FieldKind
from .field_mapping import materialize
from .ingestion import RawRow

logger = logging.getLogger(__name__)

CURRENCY_PREFIXES = ("$", "¥", "￥", "US$")
_URL_SCHEME = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*$")
_NETWORK_SCHEMES = {"http", "https", "ftp", "ws", "wss"}


class DiagnosticLevel(str, Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class ValidationError:
    """A single diagnostic for one field of one row (a record, not an exception)."""
    row: int
    field: str
    message: str
    level: DiagnosticLevel

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["level"] = self.level.value
        return payload


def parse_number(value: Optional[str]) -> Optional[float]:
    """
    Parse a spreadsheet number such as ``1,200,000`` or ``$50000``.

    Returns None when the text is blank or not a finite number.
    """
    text = (value or "").strip()
    if not text:
        return None
    for prefix in CURRENCY_PREFIXES:
        if text.startswith(prefix):
            text = text[len(prefix):].strip()
            break
    text = text.replace(",", "")
    try:
        number = float(text)
    except ValueError:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def is_absolute_url(value: Optional[str]) -> bool:
    text = (value or "").strip()
    if not text or any(ch.isspace() for ch in text):
        return False
    try:
        parsed = urlparse(text)
    except ValueError:
        return False
    if not parsed.scheme or not _URL_SCHEME.match(parsed.scheme):
        return False
    if parsed.scheme.lower() in _NETWORK_SCHEMES:
        return bool(parsed.netloc)
    return bool(parsed.netloc or parsed.path)


@dataclass
class ValidationReport:
    total_rows: int
    diagnostics: List[ValidationError] = dataclass_field(default_factory=list)

    @property
    def error_count(self) -> int:
        return sum(1 for d in self.diagnostics if d.level is DiagnosticLevel.ERROR)

    @property
    def warning_count(self) -> int:
        return sum(1 for d in self.diagnostics if d.level is DiagnosticLevel.WARNING)

    @property
    def rows_with_errors(self) -> Set[int]:
        return {d.row for d in self.diagnostics if d.level is DiagnosticLevel.ERROR}

    @property
    def blocking_rows(self) -> List[int]:
        """Sorted indices of rows that strict mode would exclude."""
        return sorted(self.rows_with_errors)

    @property
    def has_blocking_errors(self) -> bool:
        return self.error_count > 0

    def for_row(self, row_index: int) -> List[ValidationError]:
        return [d for d in self.diagnostics if d.row == row_index]


class RowValidator:
    """Checks rows, under a mapping, against per-field rules of the catalog."""

    def __init__(self, fields: Sequence[CanonicalField] = CUSTOMER_FIELDS):
        self.fields = tuple(fields)

    def _check_field(self, row_index: int, field: CanonicalField, value: str) -> Optional[ValidationError]:
        if not value:
            if field.required:
                return ValidationError(row_index, field.key, f"{field.label} is required", DiagnosticLevel.ERROR)
            return None

        if field.kind is FieldKind.URL and not is_absolute_url(value):
            return ValidationError(row_index, field.key, f"{field.label} must be a valid URL", DiagnosticLevel.WARNING)

        if field.kind is FieldKind.NUMBER and parse_number(value) is None:
            return ValidationError(row_index, field.key, f"{field.label} must be a number", DiagnosticLevel.WARNING)

        if field.kind is FieldKind.ENUM and value not in field.options:
            return ValidationError(
                row_index,
                field.key,
                f"{field.label} must be one of: {', '.join(field.options)}",
                DiagnosticLevel.WARNING,
            )

        return None

    def validate_row(self, row: RawRow, mapping: Mapping[str, Optional[str]]) -> List[ValidationError]:
        values = materialize(row, mapping)
        diagnostics = []
        for field in self.fields:
            diagnostic = self._check_field(row.index, field, values.get(field.key, "").strip())
            if diagnostic is not None:
                diagnostics.append(diagnostic)
        return diagnostics

    def validate(self, rows: Iterable[RawRow], mapping: Mapping[str, Optional[str]]) -> List[ValidationError]:
        diagnostics: List[ValidationError] = []
        for row in rows:
            diagnostics.extend(self.validate_row(row, mapping))
        return diagnostics

    def report(self, rows: Sequence[RawRow], mapping: Mapping[str, Optional[str]]) -> ValidationReport:
        report = ValidationReport(total_rows=len(rows), diagnostics=self.validate(rows, mapping))
        logger.info(
            "Validated %d rows: %d errors, %d warnings",
            report.total_rows, report.error_count, report.warning_count,
        )
        return report
