"""
Bulk customer import endpoints: upload, template, duplicate check, preview and execute.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Response, UploadFile

from crm_import.api.dependencies import (
    get_customer_store,
    get_file_storage,
    get_orchestrator,
    get_session_store,
)
from crm_import.api.schemas.imports import (
    CheckDuplicatesRequest,
    CheckDuplicatesResponse,
    DuplicateSummaryResponse,
    ExecuteImportRequest,
    ExistingCustomer,
    ImportResultResponse,
    ImportSessionResponse,
    IntraFileDuplicate,
    PreviewRequest,
    SessionPreviewResponse,
    StoreDuplicate,
    UploadResponse,
    ValidationSummary,
)
from crm_import.core.config import settings
from crm_import.domain.imports.catalog import TEMPLATE_CSV, TEMPLATE_FILE_NAME
from crm_import.domain.imports.duplicates import DuplicateCheckResult, DuplicateResolver
from crm_import.domain.imports.errors import (
    FileTooLargeError,
    ImportCancelledError,
    ImportPipelineError,
    InputError,
    SessionAlreadyCompletedError,
    SessionExpiredError,
    SessionNotFoundError,
    StoreUnavailableError,
    UnsupportedFileTypeError,
)
from crm_import.domain.imports.ingestion import ALLOWED_EXTENSIONS, RawRow, detect_file_type
from crm_import.domain.imports.orchestrator import ImportOrchestrator
from crm_import.domain.imports.reports import error_report_file_name
from crm_import.domain.imports.sessions import SessionStore
from crm_import.domain.imports.store import CustomerStore
from crm_import.integrations.storage import FileStorage, StorageError, build_object_key

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/import", tags=["imports"])

MAX_UPLOAD_BYTES = settings.upload_max_file_size_mb * 1024 * 1024

_STATUS_BY_ERROR = (
    (SessionNotFoundError, 404),
    (SessionExpiredError, 410),
    (SessionAlreadyCompletedError, 409),
    (ImportCancelledError, 409),
    (FileTooLargeError, 413),
    (InputError, 400),
    (StoreUnavailableError, 503),
)


def _http_error(exc: ImportPipelineError) -> HTTPException:
    """Translate a pipeline error into the HTTP status the client expects."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def _ensure_within_size_limit(file_size: int, file_name: str) -> None:
    if file_size > MAX_UPLOAD_BYTES:
        raise _http_error(FileTooLargeError(file_name, file_size, settings.upload_max_file_size_mb))


def _duplicates_response(result: DuplicateCheckResult) -> CheckDuplicatesResponse:
    return CheckDuplicatesResponse(
        duplicates=[
            StoreDuplicate(
                row_index=match.row_index,
                imported_name=match.imported_name or "",
                existing_customer=ExistingCustomer(id=match.matched_record_id, name_en=match.matched_display_name or ""),
            )
            for match in result.store_matches
        ],
        existing_customers={
            row_index: ExistingCustomer(**customer)
            for row_index, customer in result.existing_customers.items()
        },
        duplicate_row_indices=result.duplicate_row_indices,
        intra_file_duplicates=[
            IntraFileDuplicate(
                row_index=match.row_index,
                matched_row_index=match.matched_row_index,
                name=match.matched_display_name or "",
            )
            for match in result.intra_file_matches
        ],
        intra_file_row_indices=sorted(result.intra_file_rows),
        summary=DuplicateSummaryResponse(
            total=result.summary.total,
            with_names=result.summary.with_names,
            duplicates=result.summary.duplicates,
            unique=result.summary.unique,
        ),
    )


@router.post("/upload", response_model=UploadResponse)
async def upload_import_file(
    file: UploadFile = File(...),
    sessions: SessionStore = Depends(get_session_store),
    storage: FileStorage = Depends(get_file_storage),
):
    """
    Store an import file and open an import session for it.

    The file is rejected before it is stored when its extension is not
    CSV/Excel or it exceeds the upload size limit. It is not parsed here.
    """
    file_name = file.filename or ""
    if not file_name.lower().endswith(ALLOWED_EXTENSIONS):
        raise _http_error(UnsupportedFileTypeError(file_name))

    file_content = await file.read()
    _ensure_within_size_limit(len(file_content), file_name)

    file_path = build_object_key(file_name)
    try:
        storage.upload(file_content, file_path)
    except StorageError as e:
        logger.error("Failed to store import file '%s': %s", file_name, e)
        raise HTTPException(status_code=502, detail=f"Failed to upload file: {e}")

    session = sessions.create(
        file_name=file_name,
        source_file_ref=file_path,
        file_size=len(file_content),
        file_type=detect_file_type(file_name),
    )
    return UploadResponse(
        session_id=session.id,
        file_path=file_path,
        file_name=file_name,
        file_size=session.file_size,
        expires_at=session.expires_at,
    )


@router.get("/template")
async def download_template():
    """CSV template with every canonical field as a header and one example row."""
    return Response(
        content=TEMPLATE_CSV,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{TEMPLATE_FILE_NAME}"'},
    )


@router.post("/check-duplicates", response_model=CheckDuplicatesResponse)
def check_duplicates(
    request: CheckDuplicatesRequest,
    store: CustomerStore = Depends(get_customer_store),
):
    """Which client-parsed rows match stored customers or each other."""
    rows = [RawRow(index=position + 1, values=values) for position, values in enumerate(request.rows)]
    try:
        result = DuplicateResolver(store).check(rows, request.mappings)
    except ImportPipelineError as e:
        raise _http_error(e)
    return _duplicates_response(result)


@router.post("/execute", response_model=ImportResultResponse)
def execute_import(
    request: ExecuteImportRequest,
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
):
    """Run (or dry-run) the import for an uploaded session."""
    try:
        result = orchestrator.run_import(
            request.session_id,
            policy=request.duplicate_handling,
            dry_run=request.dry_run,
            mapping=request.mappings,
            strict=request.strict,
        )
    except ImportPipelineError as e:
        raise _http_error(e)
    except StorageError as e:
        logger.error("Failed to download file for session %s: %s", request.session_id, e)
        raise HTTPException(status_code=500, detail="Failed to download file")
    return ImportResultResponse(**result.to_dict())


@router.post("/sessions/{session_id}/preview", response_model=SessionPreviewResponse)
def preview_import_session(
    session_id: str,
    request: Optional[PreviewRequest] = None,
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
):
    """Headers, suggested mapping, validation diagnostics and duplicates for a session."""
    mapping = request.mappings if request is not None else None
    try:
        preview = orchestrator.preview_session(session_id, mapping)
    except ImportPipelineError as e:
        raise _http_error(e)
    except StorageError as e:
        logger.error("Failed to download file for session %s: %s", session_id, e)
        raise HTTPException(status_code=500, detail="Failed to download file")

    return SessionPreviewResponse(
        session_id=preview.session.id,
        headers=preview.headers,
        suggested_mapping=preview.suggested_mapping,
        mapping=preview.mapping.as_dict(),
        total_rows=preview.total_rows,
        sample_rows=[row.to_dict() for row in preview.sample_rows],
        validation=ValidationSummary(
            error_count=preview.validation.error_count,
            warning_count=preview.validation.warning_count,
            blocking_rows=preview.validation.blocking_rows,
            diagnostics=[d.to_dict() for d in preview.validation.diagnostics],
        ),
        duplicates=_duplicates_response(preview.duplicates) if preview.duplicates is not None else None,
    )


@router.get("/sessions/{session_id}", response_model=ImportSessionResponse)
def get_import_session(
    session_id: str,
    sessions: SessionStore = Depends(get_session_store),
):
    try:
        session = sessions.get(session_id)
    except ImportPipelineError as e:
        raise _http_error(e)
    return ImportSessionResponse(**session.to_dict())


@router.get("/sessions/{session_id}/errors.csv")
def download_error_report(
    session_id: str,
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
):
    """Per-row errors of the session's last run as a CSV download."""
    try:
        report = orchestrator.error_report(session_id)
    except ImportPipelineError as e:
        raise _http_error(e)
    except StorageError as e:
        logger.error("Failed to download file for session %s: %s", session_id, e)
        raise HTTPException(status_code=500, detail="Failed to download file")

    return Response(
        content=report,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{error_report_file_name(session_id)}"'},
    )
