"""
Duplicate detection on the customer natural key (``name_en``).

Two rows collide when their identifiers are equal after trimming and
lowercasing. Blank identifiers never collide with anything. Row references
here are zero-based positions in the parsed row sequence.
"""
import logging
from collections import OrderedDict
from dataclasses import asdict, dataclass, field as dataclass_field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set

from .catalog import IDENTIFIER_FIELD
from .errors import FieldMappingRequiredError
from .field_mapping import identifier_of, normalize_identifier
from .ingestion import RawRow
from .store import CustomerStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DuplicateMatch:
    row_index: int
    matched_record_id: Optional[int] = None
    matched_display_name: Optional[str] = None
    matched_row_index: Optional[int] = None
    imported_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class DuplicateSummary:
    total: int
    with_names: int
    duplicates: int
    unique: int


@dataclass
class DuplicateCheckResult:
    store_matches: List[DuplicateMatch]
    intra_file_rows: Set[int]
    intra_file_matches: List[DuplicateMatch]
    summary: DuplicateSummary
    existing_customers: Dict[int, Dict[str, Any]] = dataclass_field(default_factory=dict)

    @property
    def duplicate_row_indices(self) -> List[int]:
        return sorted({match.row_index for match in self.store_matches})


def _require_identifier(mapping: Mapping[str, Optional[str]]) -> None:
    if not any(target == IDENTIFIER_FIELD for target in mapping.values()):
        raise FieldMappingRequiredError(IDENTIFIER_FIELD)


def _keyed_positions(rows: Sequence[RawRow], mapping: Mapping[str, Optional[str]]) -> "OrderedDict[str, List[int]]":
    groups: "OrderedDict[str, List[int]]" = OrderedDict()
    for row in rows:
        key = normalize_identifier(identifier_of(row, mapping))
        if key:
            groups.setdefault(key, []).append(row.position)
    return groups


class DuplicateResolver:
    """Finds rows that collide with each other or with stored customers."""

    def __init__(self, store: CustomerStore):
        self.store = store

    def resolve_intra_file(self, rows: Sequence[RawRow], mapping: Mapping[str, Optional[str]]) -> Set[int]:
        """Positions of every row whose key is shared by at least one other row."""
        _require_identifier(mapping)
        flagged: Set[int] = set()
        for positions in _keyed_positions(rows, mapping).values():
            if len(positions) > 1:
                flagged.update(positions)
        return flagged

    def intra_file_matches(self, rows: Sequence[RawRow], mapping: Mapping[str, Optional[str]]) -> List[DuplicateMatch]:
        """
        Intra-file collisions as matches.

        The first row of each group points at the second; every later row
        points back at the first.
        """
        _require_identifier(mapping)
        by_position = {row.position: row for row in rows}
        matches: List[DuplicateMatch] = []
        for positions in _keyed_positions(rows, mapping).values():
            if len(positions) < 2:
                continue
            first = positions[0]
            for position in positions:
                other = positions[1] if position == first else first
                matches.append(DuplicateMatch(
                    row_index=position,
                    matched_display_name=identifier_of(by_position[other], mapping),
                    matched_row_index=other,
                ))
        matches.sort(key=lambda match: match.row_index)
        return matches

    def resolve_against_store(self, rows: Sequence[RawRow], mapping: Mapping[str, Optional[str]]) -> List[DuplicateMatch]:
        """
        Rows whose key matches a stored customer.

        Reads the store's identifiers once and compares in memory; when
        several stored customers share a key the first one (lowest id) wins.

        Raises:
            FieldMappingRequiredError: The identifier is not mapped
            StoreUnavailableError: The store could not be read
        """
        _require_identifier(mapping)

        existing: Dict[str, tuple] = {}
        for record_id, name in self.store.list_identifiers():
            key = normalize_identifier(name)
            if key and key not in existing:
                existing[key] = (record_id, name)

        matches = []
        for row in rows:
            key = normalize_identifier(identifier_of(row, mapping))
            if key and key in existing:
                record_id, name = existing[key]
                matches.append(DuplicateMatch(
                    row_index=row.position,
                    matched_record_id=record_id,
                    matched_display_name=name,
                    imported_name=identifier_of(row, mapping),
                ))

        logger.info("Found %d of %d rows already in the customer store", len(matches), len(rows))
        return matches

    def check(self, rows: Sequence[RawRow], mapping: Mapping[str, Optional[str]]) -> DuplicateCheckResult:
        """Store matches, intra-file collisions and the summary counts in one pass."""
        _require_identifier(mapping)

        with_names = sum(1 for row in rows if normalize_identifier(identifier_of(row, mapping)))
        store_matches = self.resolve_against_store(rows, mapping) if with_names else []

        summary = DuplicateSummary(
            total=len(rows),
            with_names=with_names,
            duplicates=len(store_matches),
            unique=with_names - len(store_matches),
        )
        return DuplicateCheckResult(
            store_matches=store_matches,
            intra_file_rows=self.resolve_intra_file(rows, mapping),
            intra_file_matches=self.intra_file_matches(rows, mapping),
            summary=summary,
            existing_customers={
                match.row_index: {"id": match.matched_record_id, "name_en": match.matched_display_name}
                for match in store_matches
            },
        )
