import io
from datetime import date, datetime

import pandas as pd
import pytest

from knitboard.data.excel_io import (
    ImportParseError,
    coerce_float,
    normalize_label,
    parse_import_bytes,
    parse_iso_date,
)


def make_excel_bytes(data: dict) -> bytes:
    """Create a minimal Excel file from a column->values dict."""
    bio = io.BytesIO()
    pd.DataFrame(data).to_excel(bio, index=False)
    bio.seek(0)
    return bio.read()


def test_parse_positional_columns_and_skip_header():
    content = make_excel_bytes(
        {
            "Product": ["[F1] Jersey", "[F2] Rib"],
            "Qty": [200, 35.5],
            "Partner": ["ACME - Cairo", "Beta"],
            "Scrap": [10, 0],
            "Work Center": ["M1", "WC-9"],
        }
    )

    rows = parse_import_bytes(content)

    assert len(rows) == 2
    first = rows[0]
    assert first.fabric == "[F1] Jersey"
    assert first.production == 200
    assert first.customer == "ACME - Cairo"
    assert first.client == "ACME"
    assert first.scrap == 10
    assert first.work_center == "M1"
    assert first.row_number == 2
    assert rows[1].production == 35.5


def test_header_names_do_not_matter():
    content = make_excel_bytes(
        {
            "a": ["Jersey"],
            "b": [5],
            "c": ["X"],
            "d": [1],
            "e": ["M1"],
            "extra": ["ignored"],
        }
    )
    [row] = parse_import_bytes(content)
    assert row.fabric == "Jersey"
    assert row.work_center == "M1"


def test_rows_without_work_center_are_skipped():
    content = make_excel_bytes(
        {
            "Product": ["Jersey", "Rib", "Pique"],
            "Qty": [1, 2, 3],
            "Partner": ["A", "B", "C"],
            "Scrap": [0, 0, 0],
            "Work Center": ["M1", None, "  "],
        }
    )
    rows = parse_import_bytes(content)
    assert [r.work_center for r in rows] == ["M1"]


def test_numeric_work_center_labels_are_normalized():
    content = make_excel_bytes(
        {
            "Product": ["Jersey", "Rib"],
            "Qty": [1, 2],
            "Partner": ["A", "B"],
            "Scrap": [0, 0],
            "Work Center": [101, 102],
        }
    )
    rows = parse_import_bytes(content)
    assert [r.work_center for r in rows] == ["101", "102"]


def test_missing_numbers_default_to_zero():
    content = make_excel_bytes(
        {
            "Product": ["Jersey"],
            "Qty": [None],
            "Partner": ["A"],
            "Scrap": ["n/a"],
            "Work Center": ["M1"],
        }
    )
    [row] = parse_import_bytes(content)
    assert row.production == 0.0
    assert row.scrap == 0.0


def test_too_few_columns_is_rejected():
    content = make_excel_bytes({"Product": ["Jersey"], "Qty": [1], "Partner": ["A"]})
    with pytest.raises(ImportParseError):
        parse_import_bytes(content)


def test_empty_or_invalid_workbook_is_rejected():
    with pytest.raises(ImportParseError):
        parse_import_bytes(b"")
    with pytest.raises(ImportParseError):
        parse_import_bytes(b"not an excel file")


def test_parse_error_is_a_value_error():
    assert issubclass(ImportParseError, ValueError)


@pytest.mark.parametrize(
    "value,expected",
    [
        (101.0, "101"),
        (" M1 ", "M1"),
        ("M\u00a01\u00a0", "M 1"),
        (None, None),
        (float("nan"), None),
        ("", None),
    ],
)
def test_normalize_label(value, expected):
    assert normalize_label(value) == expected


@pytest.mark.parametrize(
    "value,expected",
    [
        ("1,5", 1.5),
        ("1.234,56", 1234.56),
        (7, 7.0),
        ("", None),
        ("abc", None),
    ],
)
def test_coerce_float(value, expected):
    assert coerce_float(value) == expected


def test_parse_iso_date():
    assert parse_iso_date("2024-01-02") == date(2024, 1, 2)
    assert parse_iso_date(date(2024, 1, 2)) == date(2024, 1, 2)
    assert parse_iso_date(datetime(2024, 1, 2, 7, 30)) == date(2024, 1, 2)
    with pytest.raises(ValueError):
        parse_iso_date("02/01/2024")
    with pytest.raises(ValueError):
        parse_iso_date("")
