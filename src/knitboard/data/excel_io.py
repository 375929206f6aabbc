from __future__ import annotations

import io
from datetime import date, datetime

import pandas as pd

from knitboard.core.models import ImportRow


# Positional columns of the daily production export.
COL_FABRIC = 0
COL_PRODUCTION = 1
COL_CUSTOMER = 2
COL_SCRAP = 3
COL_WORK_CENTER = 4
MIN_COLUMNS = 5


class ImportParseError(ValueError):
    """The uploaded workbook cannot be turned into import rows."""


def read_excel_bytes(content: bytes) -> pd.DataFrame:
    """Read the first sheet of an .xlsx as raw positional cells (no header)."""
    if not content:
        raise ImportParseError("empty file")
    try:
        return pd.read_excel(io.BytesIO(content), sheet_name=0, header=None, dtype=object)
    except Exception as exc:
        raise ImportParseError(f"could not read workbook: {exc}") from exc


def _is_blank(value) -> bool:
    if value is None:
        return True
    try:
        if pd.isna(value):
            return True
    except (TypeError, ValueError):
        pass
    s = str(value).strip()
    return not s or s.lower() == "nan"


def normalize_label(value) -> str | None:
    """Normalize a work-center label loaded through Excel.

    Excel turns labels like 101 into 101.0; integral floats become plain
    digits. Whitespace (including non-breaking spaces) is trimmed.
    """
    if _is_blank(value):
        return None
    if isinstance(value, float) and float(value).is_integer():
        return str(int(value))
    s = str(value).replace("\u00a0", " ").strip()
    return s or None


def coerce_text(value) -> str:
    if _is_blank(value):
        return ""
    if isinstance(value, float) and float(value).is_integer():
        return str(int(value))
    return str(value).replace("\u00a0", " ").strip()


def coerce_float(value) -> float | None:
    """Coerce common Excel/Pandas numeric representations to float.

    Returns None when value is empty/NaN.
    Accepts numbers and strings (handles ',' as decimal separator).
    """
    if value is None:
        return None
    try:
        if isinstance(value, float) and pd.isna(value):
            return None
    except Exception:
        pass

    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)

    s = str(value).strip()
    if not s or s.lower() == "nan":
        return None

    # 1.234,56 -> 1234.56
    if "," in s and "." in s:
        s = s.replace(".", "").replace(",", ".")
    elif "," in s:
        s = s.replace(",", ".")

    try:
        return float(s)
    except ValueError:
        return None


def parse_iso_date(value) -> date:
    """Parse a caller-supplied calendar date (YYYY-MM-DD)."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = str(value or "").strip()
    if not s:
        raise ValueError("empty date")
    try:
        return date.fromisoformat(s[:10])
    except ValueError as exc:
        raise ValueError(f"invalid date (expected YYYY-MM-DD): {value!r}") from exc


def rows_from_frame(df: pd.DataFrame) -> list[ImportRow]:
    """Convert raw positional cells into import rows.

    Row 0 is the header and is dropped. Rows without a work-center label are
    skipped; they cannot be reconciled.
    """
    if df.shape[1] < MIN_COLUMNS:
        raise ImportParseError(
            f"expected at least {MIN_COLUMNS} columns (fabric, production, customer, scrap, work center), "
            f"got {df.shape[1]}"
        )

    rows: list[ImportRow] = []
    for idx in range(1, len(df)):
        r = df.iloc[idx]
        work_center = normalize_label(r.iloc[COL_WORK_CENTER])
        if not work_center:
            continue
        rows.append(
            ImportRow(
                fabric=coerce_text(r.iloc[COL_FABRIC]),
                production=coerce_float(r.iloc[COL_PRODUCTION]) or 0.0,
                customer=coerce_text(r.iloc[COL_CUSTOMER]),
                scrap=coerce_float(r.iloc[COL_SCRAP]) or 0.0,
                work_center=work_center,
                row_number=idx + 1,
            )
        )
    return rows


def parse_import_bytes(content: bytes) -> list[ImportRow]:
    return rows_from_frame(read_excel_bytes(content))
