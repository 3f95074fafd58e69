"""
Canonical customer schema that spreadsheet columns are mapped onto.

The catalog is static configuration: every pipeline stage reads it, nothing
mutates it at runtime.
"""
import csv
import io
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class FieldKind(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    URL = "url"
    ENUM = "enum"


@dataclass(frozen=True)
class CanonicalField:
    key: str
    label: str
    required: bool = False
    kind: FieldKind = FieldKind.TEXT
    options: Tuple[str, ...] = ()
    default: Any = None


DEAL_STAGES: Tuple[str, ...] = (
    "Lead",
    "Qualified",
    "Meeting Scheduled",
    "Demo Completed",
    "Proposal Sent",
    "Negotiation",
    "Closed Won",
    "Closed Lost",
)

STAGE_PROBABILITIES: Dict[str, int] = {
    "Lead": 10,
    "Qualified": 25,
    "Meeting Scheduled": 40,
    "Demo Completed": 50,
    "Proposal Sent": 60,
    "Negotiation": 75,
    "Closed Won": 100,
    "Closed Lost": 0,
}
DEFAULT_DEAL_PROBABILITY = 10

IDENTIFIER_FIELD = "name_en"

CUSTOMER_FIELDS: Tuple[CanonicalField, ...] = (
    CanonicalField("name_en", "English Name", required=True),
    CanonicalField("name_jp", "Japanese Name"),
    CanonicalField("company_site", "Company Site", kind=FieldKind.URL),
    CanonicalField("tier", "AWS Tier", kind=FieldKind.ENUM, options=("Premier", "Advanced", "Selected", "-")),
    CanonicalField("cloud_usage", "Cloud Usage"),
    CanonicalField("priority", "Priority", kind=FieldKind.ENUM, options=("High", "Mid", "Low")),
    CanonicalField("ripple_customer", "Ripple Customer", kind=FieldKind.ENUM, options=("✓", "-")),
    CanonicalField("archera_customer", "Archera Customer", kind=FieldKind.ENUM, options=("✓", "-")),
    CanonicalField("pic", "PIC"),
    CanonicalField("exec", "Exec"),
    CanonicalField("alphaus_rep", "Alphaus Rep"),
    CanonicalField("alphaus_exec", "Alphaus Exec"),
    CanonicalField("deal_stage", "Deal Stage", kind=FieldKind.ENUM, options=DEAL_STAGES, default="Lead"),
    CanonicalField("deal_value_usd", "Deal Value USD", kind=FieldKind.NUMBER, default=0.0),
    CanonicalField("deal_value_jpy", "Deal Value JPY", kind=FieldKind.NUMBER, default=0.0),
)

FIELDS_BY_KEY: Dict[str, CanonicalField] = {field.key: field for field in CUSTOMER_FIELDS}

# Common header synonyms, consulted after exact and substring matching.
FIELD_ALIASES: Dict[str, str] = {
    "name": "name_en",
    "company name": "name_en",
    "english name": "name_en",
    "japanese name": "name_jp",
    "website": "company_site",
    "url": "company_site",
    "aws tier": "tier",
    "stage": "deal_stage",
    "value": "deal_value_usd",
    "deal value": "deal_value_usd",
}


def probability_for_stage(stage: Optional[str]) -> int:
    """Win probability (percent) associated with a deal stage."""
    if not stage:
        return DEFAULT_DEAL_PROBABILITY
    return STAGE_PROBABILITIES.get(stage, DEFAULT_DEAL_PROBABILITY)


# --- Import template ------------------------------------------------------

TEMPLATE_FILE_NAME = "customer-import-template.csv"

TEMPLATE_EXAMPLE_ROW: Dict[str, str] = {
    "name_en": "Acme Corporation",
    "name_jp": "アクメ株式会社",
    "company_site": "https://www.acme.example.com",
    "tier": "Advanced",
    "cloud_usage": "AWS, GCP",
    "priority": "High",
    "ripple_customer": "✓",
    "archera_customer": "-",
    "pic": "Taro Yamada",
    "exec": "Hanako Suzuki",
    "alphaus_rep": "Jane Doe",
    "alphaus_exec": "John Smith",
    "deal_stage": "Qualified",
    "deal_value_usd": "50000",
    "deal_value_jpy": "7500000",
}


def _render_template() -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow([field.key for field in CUSTOMER_FIELDS])
    writer.writerow([TEMPLATE_EXAMPLE_ROW[field.key] for field in CUSTOMER_FIELDS])
    return buffer.getvalue()


TEMPLATE_CSV: str = _render_template()
