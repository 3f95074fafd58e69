"""
Import session persistence.

A session ties one uploaded file to its processing runs. Status goes
``uploaded`` -> ``previewed`` (optional, repeatable) -> ``completed``.
A dry run moves a session to ``previewed`` and may be repeated; a real run
moves it to ``completed``, which is terminal.
"""
import json
import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from crm_import.core.config import settings
from crm_import.db.models import ImportSessionRecord
from crm_import.db.session import get_engine

from .errors import SessionAlreadyCompletedError, SessionExpiredError, SessionNotFoundError

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    UPLOADED = "uploaded"
    PREVIEWED = "previewed"
    COMPLETED = "completed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps (SQLite drops tzinfo) as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


@dataclass
class ImportSession:
    id: str
    file_name: str
    file_size: int
    file_type: Optional[str]
    source_file_ref: str
    total_rows: Optional[int]
    status: SessionStatus
    duplicate_handling: Optional[str]
    dry_run: bool
    result_summary: Optional[Dict[str, Any]]
    created_at: datetime
    completed_at: Optional[datetime]
    expires_at: datetime

    @classmethod
    def from_record(cls, record: ImportSessionRecord) -> "ImportSession":
        return cls(
            id=record.id,
            file_name=record.file_name,
            file_size=record.file_size or 0,
            file_type=record.file_type,
            source_file_ref=record.source_file_ref,
            total_rows=record.total_rows,
            status=SessionStatus(record.status),
            duplicate_handling=record.duplicate_handling,
            dry_run=bool(record.dry_run),
            result_summary=json.loads(record.result_summary) if record.result_summary else None,
            created_at=_as_utc(record.created_at),
            completed_at=_as_utc(record.completed_at),
            expires_at=_as_utc(record.expires_at),
        )

    @property
    def is_terminal(self) -> bool:
        return self.status is SessionStatus.COMPLETED

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or _utcnow()) >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["status"] = self.status.value
        return payload


class SessionStore:
    """CRUD for ``import_sessions`` plus the status transitions."""

    def __init__(self, engine: Optional[Engine] = None, retention_days: Optional[int] = None):
        self._engine = engine
        self.retention_days = retention_days if retention_days is not None else settings.import_session_retention_days

    @property
    def engine(self) -> Engine:
        return self._engine if self._engine is not None else get_engine()

    def create(
        self,
        file_name: str,
        source_file_ref: str,
        file_size: int = 0,
        file_type: Optional[str] = None,
        total_rows: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ImportSession:
        created_at = now or _utcnow()
        record = ImportSessionRecord(
            id=str(uuid.uuid4()),
            file_name=file_name,
            file_size=file_size,
            file_type=file_type,
            source_file_ref=source_file_ref,
            total_rows=total_rows,
            status=SessionStatus.UPLOADED.value,
            dry_run=False,
            created_at=created_at,
            expires_at=created_at + timedelta(days=self.retention_days),
        )
        with Session(self.engine) as session:
            with session.begin():
                session.add(record)
                session.flush()
                created = ImportSession.from_record(record)

        logger.info("Created import session %s for '%s'", created.id, file_name)
        return created

    def get(self, session_id: str) -> ImportSession:
        """
        Raises:
            SessionNotFoundError: No session with this id
        """
        with Session(self.engine) as session:
            record = session.get(ImportSessionRecord, session_id)
            if record is None:
                raise SessionNotFoundError(session_id)
            return ImportSession.from_record(record)

    def get_active(self, session_id: str, now: Optional[datetime] = None) -> ImportSession:
        """
        Load a session that may still be executed.

        Raises:
            SessionNotFoundError: No session with this id
            SessionExpiredError: The retention window has passed
            SessionAlreadyCompletedError: A real run already finished
        """
        current = self.get(session_id)
        if current.is_terminal:
            raise SessionAlreadyCompletedError(session_id)
        if current.is_expired(now):
            raise SessionExpiredError(session_id)
        return current

    def complete(
        self,
        session_id: str,
        result_summary: Dict[str, Any],
        dry_run: bool,
        total_rows: int,
        duplicate_handling: Optional[str] = None,
    ) -> ImportSession:
        """Record a finished run: ``previewed`` for a dry run, ``completed`` otherwise."""
        with Session(self.engine) as session:
            with session.begin():
                record = session.get(ImportSessionRecord, session_id)
                if record is None:
                    raise SessionNotFoundError(session_id)
                if record.status == SessionStatus.COMPLETED.value:
                    raise SessionAlreadyCompletedError(session_id)

                record.status = (SessionStatus.PREVIEWED if dry_run else SessionStatus.COMPLETED).value
                record.total_rows = total_rows
                record.dry_run = dry_run
                record.duplicate_handling = duplicate_handling
                record.result_summary = json.dumps(result_summary)
                record.completed_at = _utcnow()
                session.flush()
                updated = ImportSession.from_record(record)

        logger.info("Import session %s is now %s", session_id, updated.status.value)
        return updated
