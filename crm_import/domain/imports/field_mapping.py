"""
Mapping of arbitrary spreadsheet columns onto the canonical customer schema.

Auto-detection is a convenience default that the operator always confirms;
it is not a correctness guarantee. Once confirmed, a mapping is frozen into a
``ColumnMapping`` and used to materialize canonical values from raw rows.
"""
import logging
from collections.abc import Mapping as MappingABC
from typing import Dict, Iterable, Iterator, Mapping, Optional, Set, Tuple

from .catalog import CUSTOMER_FIELDS, FIELD_ALIASES, FIELDS_BY_KEY, IDENTIFIER_FIELD
from .errors import MissingRequiredFieldError, UnknownTargetFieldError
from .ingestion import RawRow

logger = logging.getLogger(__name__)


class ColumnMapping(MappingABC):
    """
    Immutable, ordered mapping of source column -> canonical field key.

    A ``None`` target means the column is ignored. Iteration order is the
    order in which columns are applied during materialization.
    """

    __slots__ = ("_assignments",)

    def __init__(self, assignments: Iterable[Tuple[str, Optional[str]]] = ()):
        ordered: Dict[str, Optional[str]] = {}
        for column, target in assignments:
            ordered[column] = target or None
        self._assignments = tuple(ordered.items())

    @classmethod
    def from_dict(cls, mapping: Optional[Mapping[str, Optional[str]]]) -> "ColumnMapping":
        if isinstance(mapping, ColumnMapping):
            return mapping
        return cls((mapping or {}).items())

    def __getitem__(self, column: str) -> Optional[str]:
        for source, target in self._assignments:
            if source == column:
                return target
        raise KeyError(column)

    def __iter__(self) -> Iterator[str]:
        return (source for source, _ in self._assignments)

    def __len__(self) -> int:
        return len(self._assignments)

    def __repr__(self) -> str:
        return f"ColumnMapping({dict(self._assignments)!r})"

    def is_mapped(self, field_key: str) -> bool:
        return any(target == field_key for _, target in self._assignments)

    def mapped_fields(self) -> Set[str]:
        return {target for _, target in self._assignments if target}

    def as_dict(self) -> Dict[str, Optional[str]]:
        return dict(self._assignments)


def normalize_header(header: str) -> str:
    return (header or "").strip().lower()


def normalize_identifier(value: Optional[str]) -> str:
    """Natural key used for duplicate detection: trimmed and lowercased."""
    return (value or "").strip().lower()


def _match_header(header: str) -> Optional[str]:
    normalized = normalize_header(header)
    if not normalized:
        return None

    # 1. Exact key or label match
    for field in CUSTOMER_FIELDS:
        if normalized in (field.key.lower(), field.label.lower()):
            return field.key

    # 2. Substring match in either direction
    for field in CUSTOMER_FIELDS:
        for candidate in (field.key.lower(), field.label.lower()):
            if candidate in normalized or normalized in candidate:
                return field.key

    # 3. Common synonyms
    return FIELD_ALIASES.get(normalized)


def auto_detect(headers: Iterable[str]) -> Dict[str, str]:
    """
    Suggest a mapping for the given source headers.

    Headers that match no rule are left out of the result. Only the first
    header resolving to the identifier keeps that target, so the suggestion
    always passes ``validate_mapping`` when any header names the customer.
    """
    headers = list(headers)
    mapping: Dict[str, str] = {}
    identifier_column: Optional[str] = None

    for header in headers:
        target = _match_header(header)
        if target is None:
            continue
        if target == IDENTIFIER_FIELD:
            if identifier_column is not None:
                logger.debug(
                    "Header '%s' also looks like %s; keeping '%s'",
                    header, IDENTIFIER_FIELD, identifier_column,
                )
                continue
            identifier_column = header
        mapping[header] = target

    logger.info("Auto-detected %d of %d column mappings", len(mapping), len(headers))
    return mapping


def validate_mapping(mapping: Mapping[str, Optional[str]]) -> None:
    """
    Check a confirmed mapping.

    Raises:
        UnknownTargetFieldError: A column targets a key outside the catalog
        MissingRequiredFieldError: Not exactly one column maps to the identifier
    """
    for column, target in mapping.items():
        if target and target not in FIELDS_BY_KEY:
            raise UnknownTargetFieldError(column, target)

    identifier_columns = [column for column, target in mapping.items() if target == IDENTIFIER_FIELD]
    if len(identifier_columns) != 1:
        raise MissingRequiredFieldError(IDENTIFIER_FIELD, identifier_columns)


def freeze_mapping(mapping: Optional[Mapping[str, Optional[str]]]) -> ColumnMapping:
    """Freeze a client-supplied mapping and validate it."""
    frozen = ColumnMapping.from_dict(mapping)
    validate_mapping(frozen)
    return frozen


def materialize(row: RawRow, mapping: Mapping[str, Optional[str]]) -> Dict[str, str]:
    """
    Project a raw row onto canonical keys.

    When several columns map to the same key, the later column in mapping
    order wins, even if its cell is blank.
    """
    values: Dict[str, str] = {}
    for column, target in mapping.items():
        if not target:
            continue
        values[target] = (row.get(column) or "").strip()
    return values


def identifier_of(row: RawRow, mapping: Mapping[str, Optional[str]]) -> str:
    """The materialized identifier value of a row (trimmed, original case)."""
    return materialize(row, mapping).get(IDENTIFIER_FIELD, "")
