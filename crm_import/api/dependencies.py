"""
Shared dependencies for the API.

Handles to the customer store, the session repository and object storage are
provided here so routers receive them through ``Depends`` and tests can swap
them with ``app.dependency_overrides``.
"""
from fastapi import Depends

from crm_import.db.session import get_engine
from crm_import.domain.imports.orchestrator import ImportOrchestrator
from crm_import.domain.imports.sessions import SessionStore
from crm_import.domain.imports.store import CustomerStore
from crm_import.integrations.storage import FileStorage, S3FileStorage


def get_customer_store() -> CustomerStore:
    return CustomerStore(get_engine())


def get_session_store() -> SessionStore:
    return SessionStore(get_engine())


def get_file_storage() -> FileStorage:
    return S3FileStorage()


def get_orchestrator(
    sessions: SessionStore = Depends(get_session_store),
    store: CustomerStore = Depends(get_customer_store),
    storage: FileStorage = Depends(get_file_storage),
) -> ImportOrchestrator:
    return ImportOrchestrator(sessions=sessions, store=store, storage=storage)
