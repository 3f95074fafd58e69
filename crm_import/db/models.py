"""
ORM tables owned or written by the import pipeline.

``customers`` is the destination store; only the import executor writes to it
from this service. ``import_sessions`` ties an uploaded file to a processing run.
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String, Text
from sqlalchemy.engine import Engine

from crm_import.db.session import Base, get_engine


def _utcnow() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


class Customer(Base):
    """A customer in the sales pipeline."""
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name_en = Column(String(255), nullable=False, index=True)
    name_jp = Column(String(255), nullable=True)
    company_site = Column(String(500), nullable=True)
    tier = Column(String(50), nullable=True)
    cloud_usage = Column(String(255), nullable=True)
    priority = Column(String(20), nullable=True)
    ripple_customer = Column(String(10), nullable=True)
    archera_customer = Column(String(10), nullable=True)
    pic = Column(String(255), nullable=True)
    exec = Column(String(255), nullable=True)
    alphaus_rep = Column(String(255), nullable=True)
    alphaus_exec = Column(String(255), nullable=True)
    deal_stage = Column(String(50), nullable=False, default="Lead")
    deal_value_usd = Column(Float, nullable=False, default=0)
    deal_value_jpy = Column(Float, nullable=False, default=0)
    deal_probability = Column(Integer, nullable=False, default=10)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    stage_updated_at = Column(DateTime(timezone=True), default=_utcnow)


class ImportSessionRecord(Base):
    """Persisted import session row."""
    __tablename__ = "import_sessions"

    id = Column(String(64), primary_key=True)
    file_name = Column(String(500), nullable=False)
    file_size = Column(Integer, nullable=False, default=0)
    file_type = Column(String(100), nullable=True)
    source_file_ref = Column(String(1000), nullable=False)
    total_rows = Column(Integer, nullable=True)
    status = Column(String(20), nullable=False, default="uploaded", index=True)
    duplicate_handling = Column(String(20), nullable=True)
    dry_run = Column(Boolean, nullable=False, default=False)
    result_summary = Column(Text, nullable=True)  # JSON-encoded ImportResult
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)


def create_tables(engine: Optional[Engine] = None) -> None:
    """Create the customers and import_sessions tables if they don't exist."""
    Base.metadata.create_all(engine or get_engine())
