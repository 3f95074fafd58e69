import pytest

from crm_import.domain.imports.errors import MissingRequiredFieldError, UnknownTargetFieldError
from crm_import.domain.imports.field_mapping import (
    ColumnMapping,
    auto_detect,
    freeze_mapping,
    identifier_of,
    materialize,
    validate_mapping,
)
from crm_import.domain.imports.ingestion import RawRow


def test_auto_detect_matches_keys_labels_substrings_and_aliases():
    headers = ["Company Name", "Japanese Name", "Website", "Stage", "Notes", "deal_value_jpy"]

    mapping = auto_detect(headers)

    assert mapping == {
        "Company Name": "name_en",
        "Japanese Name": "name_jp",
        "Website": "company_site",
        "Stage": "deal_stage",
        "deal_value_jpy": "deal_value_jpy",
    }


def test_auto_detect_is_case_and_whitespace_insensitive():
    assert auto_detect(["  ENGLISH NAME  ", "aws tier"]) == {
        "  ENGLISH NAME  ": "name_en",
        "aws tier": "tier",
    }


def test_auto_detect_is_deterministic():
    headers = ["name", "Priority", "Deal Value", "PIC", "Something Else"]

    assert auto_detect(headers) == auto_detect(list(headers))


def test_auto_detect_keeps_only_first_identifier_column():
    mapping = auto_detect(["name_en", "English Name"])

    assert mapping == {"name_en": "name_en"}
    validate_mapping(mapping)


def test_empty_headers_never_match():
    assert auto_detect(["", "   "]) == {}


def test_validate_mapping_requires_identifier():
    with pytest.raises(MissingRequiredFieldError) as exc_info:
        validate_mapping({"Japanese": "name_jp", "Other": None})

    assert exc_info.value.field_key == "name_en"


def test_validate_mapping_rejects_two_identifier_columns():
    with pytest.raises(MissingRequiredFieldError) as exc_info:
        validate_mapping({"Name A": "name_en", "Name B": "name_en"})

    assert exc_info.value.mapped_columns == ["Name A", "Name B"]


def test_validate_mapping_rejects_unknown_target():
    with pytest.raises(UnknownTargetFieldError) as exc_info:
        validate_mapping({"Name": "name_en", "Fax": "fax_number"})

    assert exc_info.value.source_column == "Fax"


def test_frozen_mapping_is_immutable_and_ordered():
    frozen = freeze_mapping({"Name": "name_en", "Ignored": "", "Site": "company_site"})

    assert isinstance(frozen, ColumnMapping)
    assert list(frozen) == ["Name", "Ignored", "Site"]
    assert frozen["Ignored"] is None
    assert frozen.mapped_fields() == {"name_en", "company_site"}
    with pytest.raises(TypeError):
        frozen["Other"] = "pic"


def test_materialize_last_write_wins():
    row = RawRow(index=1, values={"Name": "Acme", "JP 1": "アクメ", "JP 2": ""})
    mapping = ColumnMapping([("Name", "name_en"), ("JP 1", "name_jp"), ("JP 2", "name_jp")])

    values = materialize(row, mapping)

    assert values == {"name_en": "Acme", "name_jp": ""}


def test_materialize_skips_ignored_columns_and_trims():
    row = RawRow(index=1, values={"Name": "  Acme  ", "Notes": "call back"})

    values = materialize(row, {"Name": "name_en", "Notes": None})

    assert values == {"name_en": "Acme"}
    assert identifier_of(row, {"Name": "name_en"}) == "Acme"
