"""
Read and write path into the ``customers`` table.

The import executor is the only writer. Every write is its own transaction so
one failing row never rolls back its neighbours.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from crm_import.db.models import Customer
from crm_import.db.session import get_engine

from .catalog import FIELDS_BY_KEY, IDENTIFIER_FIELD, FieldKind, probability_for_stage
from .errors import StoreUnavailableError
from .field_mapping import normalize_identifier
from .validation import parse_number

logger = logging.getLogger(__name__)


class CustomerRecord(BaseModel):
    """A fully coerced customer row, ready to insert."""
    name_en: str
    name_jp: Optional[str] = None
    company_site: Optional[str] = None
    tier: Optional[str] = None
    cloud_usage: Optional[str] = None
    priority: Optional[str] = None
    ripple_customer: Optional[str] = None
    archera_customer: Optional[str] = None
    pic: Optional[str] = None
    exec: Optional[str] = None
    alphaus_rep: Optional[str] = None
    alphaus_exec: Optional[str] = None
    deal_stage: str = "Lead"
    deal_value_usd: float = 0.0
    deal_value_jpy: float = 0.0
    deal_probability: int = 10

    @classmethod
    def from_values(cls, values: Mapping[str, str]) -> "CustomerRecord":
        changes = coerce_values(values)
        changes.setdefault("deal_probability", probability_for_stage(changes.get("deal_stage")))
        return cls(**changes)


def coerce_value(key: str, raw: Optional[str]) -> Any:
    """
    Convert one materialized cell into the stored type for ``key``.

    Unparseable numbers and unknown enum values fall back to the field
    default (which may be None); blank text becomes None.
    """
    field = FIELDS_BY_KEY[key]
    text = (raw or "").strip()

    if field.kind is FieldKind.NUMBER:
        number = parse_number(text)
        return field.default if number is None else number

    if field.kind is FieldKind.ENUM:
        return text if text in field.options else field.default

    if key == IDENTIFIER_FIELD:
        return text
    return text or field.default


def coerce_values(values: Mapping[str, str]) -> Dict[str, Any]:
    """
    Coerce the mapped subset of canonical values.

    Only keys present in ``values`` are returned, plus ``deal_probability``
    whenever ``deal_stage`` is present.
    """
    coerced = {key: coerce_value(key, raw) for key, raw in values.items() if key in FIELDS_BY_KEY}
    if "deal_stage" in coerced:
        coerced["deal_probability"] = probability_for_stage(coerced["deal_stage"])
    return coerced


class CustomerStore:
    """Customer lookups and per-row writes against a SQLAlchemy engine."""

    def __init__(self, engine: Optional[Engine] = None):
        self._engine = engine

    @property
    def engine(self) -> Engine:
        return self._engine if self._engine is not None else get_engine()

    def list_identifiers(self) -> List[Tuple[int, str]]:
        """
        Bulk projection of ``(id, name_en)`` for every customer with a name.

        Raises:
            StoreUnavailableError: The store could not be read
        """
        stmt = (
            select(Customer.id, Customer.name_en)
            .where(Customer.name_en.isnot(None))
            .order_by(Customer.id)
        )
        try:
            with self.engine.connect() as conn:
                return [(row.id, row.name_en) for row in conn.execute(stmt)]
        except OperationalError as e:
            logger.error("Customer store unavailable during identifier scan: %s", e)
            raise StoreUnavailableError(f"Customer store is unavailable: {e.orig or e}") from e

    def find_by_identifier(self, identifier: str) -> Optional[int]:
        """
        Id of the first customer whose name has the same natural key, if any.

        Stored names go through ``normalize_identifier``, the same key
        ``DuplicateResolver.resolve_against_store`` compares.
        """
        key = normalize_identifier(identifier)
        if not key:
            return None
        stmt = (
            select(Customer.id, Customer.name_en)
            .where(Customer.name_en.isnot(None))
            .order_by(Customer.id)
        )
        try:
            with self.engine.connect() as conn:
                for row in conn.execute(stmt):
                    if normalize_identifier(row.name_en) == key:
                        return row.id
        except OperationalError as e:
            logger.error("Customer store unavailable during lookup: %s", e)
            raise StoreUnavailableError(f"Customer store is unavailable: {e.orig or e}") from e
        return None

    def insert(self, record: CustomerRecord) -> int:
        with Session(self.engine) as session:
            with session.begin():
                customer = Customer(**record.model_dump())
                session.add(customer)
                session.flush()
                customer_id = customer.id
        return customer_id

    def update(self, customer_id: int, changes: Mapping[str, Any]) -> None:
        """Overwrite the given columns of one customer."""
        with Session(self.engine) as session:
            with session.begin():
                customer = session.get(Customer, customer_id)
                if customer is None:
                    raise LookupError(f"Customer {customer_id} no longer exists")
                if "deal_stage" in changes and changes["deal_stage"] != customer.deal_stage:
                    customer.stage_updated_at = datetime.now(timezone.utc)
                for key, value in changes.items():
                    setattr(customer, key, value)

    def get(self, customer_id: int) -> Optional[Dict[str, Any]]:
        with Session(self.engine) as session:
            customer = session.get(Customer, customer_id)
            if customer is None:
                return None
            return {column.name: getattr(customer, column.name) for column in Customer.__table__.columns}

    def count(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(Customer)).scalar() or 0
