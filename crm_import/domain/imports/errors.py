"""
Exception taxonomy for the customer import pipeline.

Input errors abort before any store access and are shown to the operator
verbatim. Session and infrastructure errors are fatal for the whole run.
Validation diagnostics and per-row commit failures are data, not exceptions.
"""


class ImportPipelineError(Exception):
    """Base exception for the import pipeline."""
    pass


# --- Input errors -----------------------------------------------------------

class InputError(ImportPipelineError):
    """The uploaded file or the mapping cannot be processed."""
    pass


class UnsupportedFormatError(InputError):
    """Raised by the ingestor when the file extension is not CSV or Excel."""

    def __init__(self, file_name: str):
        self.file_name = file_name
        super().__init__(
            f"Unsupported file type for '{file_name}'. Please use CSV or Excel files (.csv, .xlsx, .xls)."
        )


class UnsupportedFileTypeError(InputError):
    """Raised at upload time, before the file is stored or parsed."""

    def __init__(self, file_name: str):
        self.file_name = file_name
        super().__init__(
            f"Unsupported file type for '{file_name}'. Please use CSV or Excel files (.csv, .xlsx, .xls)."
        )


class FileTooLargeError(InputError):
    def __init__(self, file_name: str, size: int, limit_mb: int):
        self.file_name = file_name
        self.size = size
        self.limit_mb = limit_mb
        super().__init__(
            f"{file_name} is too large ({size / (1024 * 1024):.2f} MB). "
            f"Maximum allowed upload size is {limit_mb}MB."
        )


class EmptyFileError(InputError):
    def __init__(self, file_name: str):
        self.file_name = file_name
        super().__init__(f"File '{file_name}' is empty or contains no valid data")


class MalformedFileError(InputError):
    def __init__(self, file_name: str, reason: str):
        self.file_name = file_name
        self.reason = reason
        super().__init__(f"Could not read '{file_name}': {reason}")


class MappingError(InputError):
    """The column mapping is not usable."""
    pass


class MissingRequiredFieldError(MappingError):
    def __init__(self, field_key: str, mapped_columns=None):
        self.field_key = field_key
        self.mapped_columns = list(mapped_columns or [])
        if self.mapped_columns:
            detail = (
                f"Exactly one column may be mapped to '{field_key}', "
                f"got {len(self.mapped_columns)}: {', '.join(self.mapped_columns)}"
            )
        else:
            detail = f"A column must be mapped to the required field '{field_key}'"
        super().__init__(detail)


class FieldMappingRequiredError(MappingError):
    def __init__(self, field_key: str):
        self.field_key = field_key
        super().__init__(f"{field_key} field must be mapped to check duplicates.")


class UnknownTargetFieldError(MappingError):
    def __init__(self, source_column: str, target: str):
        self.source_column = source_column
        self.target = target
        super().__init__(f"Column '{source_column}' is mapped to unknown field '{target}'")


# --- Session errors ---------------------------------------------------------

class SessionError(ImportPipelineError):
    pass


class SessionNotFoundError(SessionError):
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Import session not found: {session_id}")


class SessionExpiredError(SessionError):
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Import session {session_id} has expired; please upload the file again")


class SessionAlreadyCompletedError(SessionError):
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Import session {session_id} has already been completed")


# --- Infrastructure / control flow ------------------------------------------

class StoreUnavailableError(ImportPipelineError):
    """The customer store could not be read; no partial result is produced."""
    pass


class ImportCancelledError(ImportPipelineError):
    def __init__(self, processed_rows: int):
        self.processed_rows = processed_rows
        super().__init__(f"Import cancelled after {processed_rows} rows")
