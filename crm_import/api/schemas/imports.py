from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from crm_import.domain.imports.executor import ConflictPolicy


class UploadResponse(BaseModel):
    success: bool = True
    session_id: str
    file_path: str
    file_name: str
    file_size: int
    expires_at: datetime


class CheckDuplicatesRequest(BaseModel):
    rows: List[Dict[str, Any]]
    mappings: Dict[str, Optional[str]]

    @field_validator("rows")
    @classmethod
    def stringify_cells(cls, rows: List[Dict[str, Any]]) -> List[Dict[str, str]]:
        """JSON clients may send numbers or nulls; cells are text from here on."""
        return [
            {str(column): "" if value is None else str(value).strip() for column, value in row.items()}
            for row in rows
        ]


class ExistingCustomer(BaseModel):
    id: int
    name_en: str


class StoreDuplicate(BaseModel):
    row_index: int
    imported_name: str
    existing_customer: ExistingCustomer


class IntraFileDuplicate(BaseModel):
    row_index: int
    matched_row_index: int
    name: str


class DuplicateSummaryResponse(BaseModel):
    total: int
    with_names: int
    duplicates: int
    unique: int


class CheckDuplicatesResponse(BaseModel):
    duplicates: List[StoreDuplicate] = Field(default_factory=list)
    existing_customers: Dict[int, ExistingCustomer] = Field(default_factory=dict)
    duplicate_row_indices: List[int] = Field(default_factory=list)
    intra_file_duplicates: List[IntraFileDuplicate] = Field(default_factory=list)
    intra_file_row_indices: List[int] = Field(default_factory=list)
    summary: DuplicateSummaryResponse


class ExecuteImportRequest(BaseModel):
    session_id: str
    duplicate_handling: ConflictPolicy = ConflictPolicy.SKIP
    dry_run: bool = False
    mappings: Optional[Dict[str, Optional[str]]] = None
    strict: bool = True


class RowErrorResponse(BaseModel):
    row: int
    message: str


class ImportResultResponse(BaseModel):
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: List[RowErrorResponse] = Field(default_factory=list)


class PreviewRequest(BaseModel):
    mappings: Optional[Dict[str, Optional[str]]] = None


class ValidationErrorResponse(BaseModel):
    row: int
    field: str
    message: str
    level: str


class ValidationSummary(BaseModel):
    error_count: int
    warning_count: int
    blocking_rows: List[int]
    diagnostics: List[ValidationErrorResponse]


class SessionPreviewResponse(BaseModel):
    session_id: str
    headers: List[str]
    suggested_mapping: Dict[str, str]
    mapping: Dict[str, Optional[str]]
    total_rows: int
    sample_rows: List[Dict[str, str]]
    validation: ValidationSummary
    duplicates: Optional[CheckDuplicatesResponse] = None


class ImportSessionResponse(BaseModel):
    id: str
    file_name: str
    file_size: int
    file_type: Optional[str] = None
    status: str
    total_rows: Optional[int] = None
    duplicate_handling: Optional[str] = None
    dry_run: bool = False
    result_summary: Optional[Dict[str, Any]] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    expires_at: datetime
