import re
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import pandas as pd
from dateutil import parser as dateparser

from models import ColumnTypeInfo, ParsedTable
from parsing import rows_to_frame
from settings import PHONE_MIN_DIGITS


# -----------------------------
# Per-value predicates
# -----------------------------
RE_NUMBER = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$")
RE_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
RE_PHONE = re.compile(r"^\+?[\d\s\-()]+$")

RE_ISO_DATE = re.compile(r"^\d{4}[-/.]\d{1,2}[-/.]\d{1,2}(?:[ T]\d{1,2}:\d{2}(?::\d{2})?)?$")
RE_DMY_MDY = re.compile(r"^\d{1,2}[-/.]\d{1,2}[-/.]\d{2,4}$")
_MONTHS = [
    ("jan", "january", "janv", "janvier"),
    ("feb", "february", "fev", "févr", "février"),
    ("mar", "march", "mars"),
    ("apr", "april", "avr", "avril"),
    ("may", "mai"),
    ("jun", "june", "juin"),
    ("jul", "july", "juil", "juillet"),
    ("aug", "august", "aout", "août"),
    ("sep", "sept", "september", "septembre"),
    ("oct", "october", "octobre"),
    ("nov", "november", "novembre"),
    ("dec", "december", "déc", "decembre", "décembre"),
]

RE_MONTH_NAME = re.compile(
    r"\b(?:" + "|".join(sorted({m for names in _MONTHS for m in names}, key=len, reverse=True)) + r")\b",
    re.IGNORECASE,
)


class _BilingualParserInfo(dateparser.parserinfo):
    MONTHS = _MONTHS


_PARSER_INFO = _BilingualParserInfo()


def is_number(value: str) -> bool:
    return bool(RE_NUMBER.match(value.strip()))


def is_email(value: str) -> bool:
    return bool(RE_EMAIL.match(value.strip()))


def is_phone(value: str) -> bool:
    v = value.strip()
    if not RE_PHONE.match(v):
        return False
    return sum(ch.isdigit() for ch in v) >= PHONE_MIN_DIGITS


def is_date(value: str) -> bool:
    v = value.strip()
    if not any(ch.isdigit() for ch in v):
        return False
    if not (RE_ISO_DATE.match(v) or RE_DMY_MDY.match(v) or RE_MONTH_NAME.search(v)):
        return False
    try:
        dateparser.parse(v, parserinfo=_PARSER_INFO, dayfirst=not RE_ISO_DATE.match(v))
    except (ValueError, OverflowError):
        return False
    return True


# Declaration order is the tie-break order.
TYPE_PREDICATES: List[Tuple[str, Callable[[str], bool]]] = [
    ("number", is_number),
    ("email", is_email),
    ("phone", is_phone),
    ("date", is_date),
]


def is_missing(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def type_masks(values: pd.Series) -> Dict[str, pd.Series]:
    """Boolean mask per specific type over already-trimmed string values."""
    return {
        "number": values.str.match(RE_NUMBER.pattern, na=False),
        "email": values.str.match(RE_EMAIL.pattern, na=False),
        "phone": values.str.match(RE_PHONE.pattern, na=False) & (values.str.count(r"\d") >= PHONE_MIN_DIGITS),
        "date": values.map(is_date).astype(bool),
    }


def infer_series_type(s: pd.Series) -> ColumnTypeInfo:
    """
    Classify a column from all of its values.

    Each specific type scores (matching values) / (non-empty values); text scores
    the share of values that no specific type claims. The highest score wins and
    exact ties go to the earlier type in TYPE_PREDICATES, then text.
    """
    stripped = s.fillna("").astype(str).str.strip()
    non_empty = stripped[stripped != ""]
    n = len(non_empty)
    if n == 0:
        return ColumnTypeInfo(type="empty", confidence=0.0)

    masks = type_masks(non_empty)
    claimed = pd.Series(False, index=non_empty.index)
    for mask in masks.values():
        claimed = claimed | mask

    scores: List[Tuple[str, float]] = [(name, int(masks[name].sum()) / n) for name, _ in TYPE_PREDICATES]
    scores.append(("text", int((~claimed).sum()) / n))

    best_name, best_score = scores[0]
    for name, score in scores[1:]:
        if score > best_score:
            best_name, best_score = name, score
    return ColumnTypeInfo(type=best_name, confidence=round(best_score, 6))


def infer_column_type(values: Iterable[Optional[str]]) -> ColumnTypeInfo:
    return infer_series_type(pd.Series(list(values), dtype=object))


def infer_types(table: ParsedTable, frame: Optional[pd.DataFrame] = None) -> Dict[str, ColumnTypeInfo]:
    df = rows_to_frame(table.columns, table.rows) if frame is None else frame
    return {col: infer_series_type(df[col]) for col in table.columns}
