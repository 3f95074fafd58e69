import io

import pytest
from openpyxl import Workbook

from crm_import.domain.imports.errors import EmptyFileError, MalformedFileError, UnsupportedFormatError
from crm_import.domain.imports.ingestion import FileIngestor, detect_file_type, parse_file


def _workbook_bytes(*rows, extra_sheet_rows=None) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Customers"
    for row in rows:
        sheet.append(list(row))
    if extra_sheet_rows:
        other = workbook.create_sheet("Archive")
        for row in extra_sheet_rows:
            other.append(list(row))
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def test_csv_rows_are_indexed_from_one_and_trimmed():
    parsed = parse_file(b"name_en, tier \n  Acme  ,Premier\nBeta,-\n", "customers.csv")

    assert parsed.headers == ("name_en", "tier")
    assert [row.index for row in parsed.rows] == [1, 2]
    assert parsed.rows[0].to_dict() == {"name_en": "Acme", "tier": "Premier"}
    assert parsed.file_type == "csv"


def test_csv_blank_lines_are_skipped_and_not_counted():
    content = b"name_en,tier\n\nAcme,Premier\n , \nBeta,-\n\n"

    parsed = parse_file(content, "customers.csv")

    assert parsed.row_count == 2
    assert [row.get("name_en") for row in parsed.rows] == ["Acme", "Beta"]
    assert [row.index for row in parsed.rows] == [1, 2]


def test_missing_trailing_cells_read_as_empty():
    parsed = parse_file(b"name_en,tier,priority\nAcme\n", "customers.csv")

    assert parsed.rows[0].to_dict() == {"name_en": "Acme", "tier": "", "priority": ""}


def test_duplicate_headers_are_suffixed_and_blank_headers_dropped():
    parsed = parse_file(b"Name,,Name,Name\nA,ignored,B,C\n", "customers.csv")

    assert parsed.headers == ("Name", "Name_1", "Name_2")
    assert parsed.rows[0].to_dict() == {"Name": "A", "Name_1": "B", "Name_2": "C"}


def test_values_under_blank_headers_do_not_keep_a_row():
    csv_content = b"name_en,\nAcme,\n,stray\nBeta,\n"
    workbook_content = _workbook_bytes(("name_en", None), ("Acme", None), (None, "stray"), ("Beta", None))

    for content, name in ((csv_content, "customers.csv"), (workbook_content, "customers.xlsx")):
        parsed = parse_file(content, name)

        assert parsed.headers == ("name_en",)
        assert [row.to_dict() for row in parsed.rows] == [{"name_en": "Acme"}, {"name_en": "Beta"}]
        assert [row.index for row in parsed.rows] == [1, 2]


def test_quoted_csv_cells_keep_embedded_commas():
    parsed = parse_file(b'name_en,cloud_usage\n"Acme, Inc.","AWS, GCP"\n', "customers.csv")

    assert parsed.rows[0].get("name_en") == "Acme, Inc."
    assert parsed.rows[0].get("cloud_usage") == "AWS, GCP"


def test_utf8_bom_is_stripped_from_first_header():
    parsed = parse_file("\ufeffname_en\nAcme\n".encode("utf-8"), "customers.csv")

    assert parsed.headers == ("name_en",)


def test_shift_jis_csv_export_is_decoded():
    parsed = parse_file("name_jp\nアクメ株式会社\n".encode("cp932"), "customers.csv")

    assert parsed.rows[0].get("name_jp") == "アクメ株式会社"


def test_raw_rows_are_read_only():
    parsed = parse_file(b"name_en\nAcme\n", "customers.csv")

    with pytest.raises(TypeError):
        parsed.rows[0].values["name_en"] = "Changed"


@pytest.mark.parametrize("name", ["customers.txt", "customers.json", "customers"])
def test_unsupported_extension_is_rejected(name):
    with pytest.raises(UnsupportedFormatError):
        parse_file(b"name_en\nAcme\n", name)


def test_extension_check_is_case_insensitive():
    assert detect_file_type("CUSTOMERS.CSV") == "csv"
    assert detect_file_type("Customers.XLSX") == "excel"
    assert detect_file_type("legacy.xls") == "excel"


def test_empty_file_is_rejected():
    with pytest.raises(EmptyFileError):
        parse_file(b"", "customers.csv")

    with pytest.raises(EmptyFileError):
        parse_file(b"\n\n  \n", "customers.csv")


def test_header_without_data_rows_is_rejected():
    with pytest.raises(EmptyFileError):
        parse_file(b"name_en,tier\n\n", "customers.csv")


def test_workbook_reads_first_sheet_and_skips_empty_rows():
    content = _workbook_bytes(
        ("name_en", "deal_value_usd", "tier"),
        ("Acme", 50000, "Premier"),
        (None, None, None),
        ("  Beta  ", 1.5, None),
        extra_sheet_rows=[("name_en",), ("Archived Co",)],
    )

    parsed = FileIngestor().parse(content, "customers.xlsx")

    assert parsed.file_type == "excel"
    assert parsed.headers == ("name_en", "deal_value_usd", "tier")
    assert [row.index for row in parsed.rows] == [1, 2]
    assert parsed.rows[0].to_dict() == {"name_en": "Acme", "deal_value_usd": "50000", "tier": "Premier"}
    assert parsed.rows[1].to_dict() == {"name_en": "Beta", "deal_value_usd": "1.5", "tier": ""}


def test_csv_and_workbook_with_same_content_yield_same_rows():
    csv_content = b"name_en,priority\nAcme,High\n\nBeta,Low\n"
    workbook_content = _workbook_bytes(
        ("name_en", "priority"),
        ("Acme", "High"),
        (None, None),
        ("Beta", "Low"),
    )

    from_csv = parse_file(csv_content, "customers.csv")
    from_workbook = parse_file(workbook_content, "customers.xlsx")

    assert from_csv.headers == from_workbook.headers
    assert [row.to_dict() for row in from_csv.rows] == [row.to_dict() for row in from_workbook.rows]


def test_corrupt_workbook_is_malformed():
    with pytest.raises(MalformedFileError):
        parse_file(b"this is not a zip archive", "customers.xlsx")
