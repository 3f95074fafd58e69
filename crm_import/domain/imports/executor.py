"""
Batched commit of mapped rows into the customer store.

Rows are processed sequentially in fixed-size batches. Each row is its own
unit of work: a failing row is recorded in the result and the run carries on.
Dry runs follow exactly the same decisions without writing anything.
"""
import logging
from dataclasses import dataclass, field as dataclass_field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Set

from sqlalchemy.exc import SQLAlchemyError

from crm_import.core.config import settings

from .catalog import FIELDS_BY_KEY, IDENTIFIER_FIELD
from .errors import ImportCancelledError
from .field_mapping import freeze_mapping, materialize, normalize_identifier
from .ingestion import RawRow
from .sessions import SessionStore
from .store import CustomerRecord, CustomerStore, coerce_values
from .validation import DiagnosticLevel, RowValidator

logger = logging.getLogger(__name__)


class ConflictPolicy(str, Enum):
    """What to do with a row whose identifier already exists in the store."""
    SKIP = "skip"
    UPDATE = "update"
    CREATE = "create"


@dataclass
class RowError:
    row: int
    message: str


@dataclass
class ImportResult:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: List[RowError] = dataclass_field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": [{"row": error.row, "message": error.message} for error in self.errors],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ImportResult":
        return cls(
            created=payload.get("created", 0),
            updated=payload.get("updated", 0),
            skipped=payload.get("skipped", 0),
            errors=[RowError(row=e["row"], message=e["message"]) for e in payload.get("errors", [])],
        )


def _batches(rows: Sequence[RawRow], size: int) -> List[Sequence[RawRow]]:
    return [rows[start:start + size] for start in range(0, len(rows), size)]


class ImportExecutor:
    def __init__(
        self,
        store: CustomerStore,
        sessions: Optional[SessionStore] = None,
        validator: Optional[RowValidator] = None,
        batch_size: Optional[int] = None,
    ):
        self.store = store
        self.sessions = sessions
        self.validator = validator or RowValidator()
        self.batch_size = batch_size or settings.import_batch_size

    def _blocking_messages(self, rows: Sequence[RawRow], mapping) -> Dict[int, List[str]]:
        blocking: Dict[int, List[str]] = {}
        for diagnostic in self.validator.validate(rows, mapping):
            if diagnostic.level is DiagnosticLevel.ERROR:
                blocking.setdefault(diagnostic.row, []).append(diagnostic.message)
        return blocking

    def _process_row(
        self,
        row: RawRow,
        mapping,
        policy: ConflictPolicy,
        dry_run: bool,
        would_create: Set[str],
        result: ImportResult,
    ) -> None:
        values = materialize(row, mapping)
        identifier = values.get(IDENTIFIER_FIELD, "")
        if not identifier:
            result.errors.append(RowError(row.index, f"{FIELDS_BY_KEY[IDENTIFIER_FIELD].label} is required"))
            return

        key = normalize_identifier(identifier)
        existing_id = self.store.find_by_identifier(identifier)
        exists = existing_id is not None or (dry_run and key in would_create)

        if exists and policy is ConflictPolicy.SKIP:
            result.skipped += 1
            return

        if exists and policy is ConflictPolicy.UPDATE:
            if not dry_run:
                self.store.update(existing_id, coerce_values(values))
            result.updated += 1
            return

        record = CustomerRecord.from_values(values)
        if dry_run:
            would_create.add(key)
        else:
            self.store.insert(record)
        result.created += 1

    def execute(
        self,
        rows: Sequence[RawRow],
        mapping: Mapping[str, Optional[str]],
        policy: ConflictPolicy = ConflictPolicy.SKIP,
        dry_run: bool = False,
        strict: bool = True,
        session_id: Optional[str] = None,
        should_cancel: Optional[Callable[[], bool]] = None,
    ) -> ImportResult:
        """
        Commit (or simulate committing) ``rows`` under ``mapping``.

        Args:
            rows: Parsed rows in file order
            mapping: Confirmed column mapping
            policy: Handling of rows whose identifier already exists
            dry_run: Compute the result without writing to the store
            strict: Exclude rows that have error-level diagnostics
            session_id: When given, the result is recorded on that session
            should_cancel: Polled before each batch

        Raises:
            MappingError: The mapping is not usable
            StoreUnavailableError: The store could not be read
            ImportCancelledError: ``should_cancel`` returned True
        """
        policy = ConflictPolicy(policy)
        mapping = freeze_mapping(mapping)
        rows = list(rows)
        blocking = self._blocking_messages(rows, mapping) if strict else {}

        result = ImportResult()
        would_create: Set[str] = set()
        batches = _batches(rows, self.batch_size)
        processed = 0

        logger.info(
            "Starting %simport of %d rows in %d batches (policy=%s, strict=%s)",
            "dry-run " if dry_run else "", len(rows), len(batches), policy.value, strict,
        )

        for batch_number, batch in enumerate(batches, start=1):
            if should_cancel is not None and should_cancel():
                logger.info("Import cancelled before batch %d after %d rows", batch_number, processed)
                raise ImportCancelledError(processed)

            logger.info("Processing batch %d/%d (%d rows)", batch_number, len(batches), len(batch))
            for row in batch:
                processed += 1
                if row.index in blocking:
                    result.errors.append(RowError(row.index, "; ".join(blocking[row.index])))
                    continue
                try:
                    self._process_row(row, mapping, policy, dry_run, would_create, result)
                except (SQLAlchemyError, LookupError, ValueError) as e:
                    logger.warning("Row %d failed: %s", row.index, e)
                    result.errors.append(RowError(row.index, str(e)))

        logger.info(
            "Import finished: %d created, %d updated, %d skipped, %d errors",
            result.created, result.updated, result.skipped, len(result.errors),
        )

        if session_id is not None and self.sessions is not None:
            summary = result.to_dict()
            summary["mapping"] = mapping.as_dict()
            self.sessions.complete(
                session_id,
                summary,
                dry_run=dry_run,
                total_rows=len(rows),
                duplicate_handling=policy.value,
            )

        return result
