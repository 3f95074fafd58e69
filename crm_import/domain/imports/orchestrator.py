"""
Session-level import runs.

Ties the stored upload, the parser and the executor together: a run reloads
the session's file from storage, re-parses it, resolves the mapping and
commits, then records the outcome on the session.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional

from crm_import.integrations.storage import FileStorage

from .catalog import IDENTIFIER_FIELD
from .duplicates import DuplicateCheckResult, DuplicateResolver
from .executor import ConflictPolicy, ImportExecutor, ImportResult
from .field_mapping import ColumnMapping, auto_detect, freeze_mapping
from .ingestion import FileIngestor, ParsedFile, RawRow
from .reports import build_error_report
from .sessions import ImportSession, SessionStore
from .store import CustomerStore
from .validation import RowValidator, ValidationReport

logger = logging.getLogger(__name__)

PREVIEW_SAMPLE_ROWS = 20


@dataclass
class SessionPreview:
    session: ImportSession
    headers: List[str]
    suggested_mapping: Dict[str, str]
    mapping: ColumnMapping
    sample_rows: List[RawRow]
    total_rows: int
    validation: ValidationReport
    duplicates: Optional[DuplicateCheckResult]


class ImportOrchestrator:
    def __init__(
        self,
        sessions: SessionStore,
        store: CustomerStore,
        storage: FileStorage,
        ingestor: Optional[FileIngestor] = None,
        validator: Optional[RowValidator] = None,
        batch_size: Optional[int] = None,
    ):
        self.sessions = sessions
        self.store = store
        self.storage = storage
        self.ingestor = ingestor or FileIngestor()
        self.validator = validator or RowValidator()
        self.executor = ImportExecutor(store, sessions=sessions, validator=self.validator, batch_size=batch_size)
        self.resolver = DuplicateResolver(store)

    def _load(self, session: ImportSession) -> ParsedFile:
        content = self.storage.download(session.source_file_ref)
        return self.ingestor.parse(content, session.file_name)

    def run_import(
        self,
        session_id: str,
        policy: ConflictPolicy = ConflictPolicy.SKIP,
        dry_run: bool = False,
        mapping: Optional[Mapping[str, Optional[str]]] = None,
        strict: bool = True,
        should_cancel: Optional[Callable[[], bool]] = None,
    ) -> ImportResult:
        """
        Execute (or dry-run) the import for an uploaded session.

        Session problems are raised before the store or storage is touched.

        Raises:
            SessionNotFoundError, SessionExpiredError, SessionAlreadyCompletedError
            StorageDownloadError: The uploaded file could not be fetched
            InputError: The file cannot be parsed or the mapping is unusable
            StoreUnavailableError: The customer store could not be read
            ImportCancelledError: ``should_cancel`` returned True
        """
        session = self.sessions.get_active(session_id)
        parsed = self._load(session)

        if mapping is None:
            mapping = auto_detect(parsed.headers)
            logger.info("No mapping supplied for session %s; using auto-detected mapping", session_id)
        frozen = freeze_mapping(mapping)

        return self.executor.execute(
            parsed.rows,
            frozen,
            policy=policy,
            dry_run=dry_run,
            strict=strict,
            session_id=session.id,
            should_cancel=should_cancel,
        )

    def preview_session(
        self,
        session_id: str,
        mapping: Optional[Mapping[str, Optional[str]]] = None,
    ) -> SessionPreview:
        """
        Parse the session's file and report what an import would see.

        The duplicate check is omitted when the mapping leaves the
        identifier unmapped.
        """
        session = self.sessions.get_active(session_id)
        parsed = self._load(session)

        suggested = auto_detect(parsed.headers)
        frozen = ColumnMapping.from_dict(mapping if mapping is not None else suggested)

        duplicates = None
        if frozen.is_mapped(IDENTIFIER_FIELD):
            duplicates = self.resolver.check(parsed.rows, frozen)

        return SessionPreview(
            session=session,
            headers=list(parsed.headers),
            suggested_mapping=suggested,
            mapping=frozen,
            sample_rows=list(parsed.rows[:PREVIEW_SAMPLE_ROWS]),
            total_rows=parsed.row_count,
            validation=self.validator.report(parsed.rows, frozen),
            duplicates=duplicates,
        )

    def error_report(self, session_id: str) -> str:
        """CSV of the row errors recorded by the session's last run."""
        session = self.sessions.get(session_id)
        summary = session.result_summary or {}
        result = ImportResult.from_dict(summary)
        if not result.errors:
            return build_error_report(result)

        parsed = self._load(session)
        return build_error_report(result, parsed.rows, summary.get("mapping"))
