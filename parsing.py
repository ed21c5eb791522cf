import io
import json
from pathlib import PurePath
from typing import Any, Dict, List, Sequence, Tuple, Union

import pandas as pd

from errors import ParseError, UnsupportedFormatError
from models import ParsedTable, Row


SUPPORTED_EXTENSIONS = (".csv", ".json", ".xlsx", ".xls")

Content = Union[bytes, bytearray, str]


def file_extension(file_name: str) -> str:
    return PurePath(file_name or "").suffix.lower()


def _decode(content: Content) -> str:
    if isinstance(content, str):
        return content
    raw = bytes(content)
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        # legacy exports from French Excel installs
        return raw.decode("latin-1")


def _stringify_cell(v: Any) -> str:
    if v is None:
        return ""
    if isinstance(v, float) and pd.isna(v):
        return ""
    if isinstance(v, (dict, list)):
        return json.dumps(v, ensure_ascii=False)
    return str(v).strip()


def _frame_to_table(df: pd.DataFrame) -> Tuple[List[str], List[Dict[str, str]]]:
    columns = [str(c).strip() for c in df.columns]
    if len(set(columns)) != len(columns):
        raise ParseError(f"Duplicate column names after trimming: {columns}")
    rows: List[Dict[str, str]] = []
    for values in df.itertuples(index=False, name=None):
        rows.append({col: _stringify_cell(v) for col, v in zip(columns, values)})
    return columns, rows


def rows_to_frame(columns: Sequence[str], rows: Sequence[Row]) -> pd.DataFrame:
    """String frame over table rows; column order follows ``columns``."""
    return pd.DataFrame(list(rows), columns=list(columns), dtype=object).fillna("")


def _parse_csv(content: Content) -> Tuple[List[str], List[Dict[str, str]]]:
    text = _decode(content)
    lines = [ln for ln in text.splitlines() if ln.strip()]
    if len(lines) < 2:
        raise ParseError("Fichier CSV vide ou invalide: au moins un en-tête et une ligne sont requis")

    width = len(lines[0].split(","))
    try:
        df = pd.read_csv(
            io.StringIO(text),
            sep=",",
            index_col=False,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            skipinitialspace=True,
            engine="python",
            # rows wider than the header are truncated to the header width
            on_bad_lines=lambda bad: bad[:width],
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError, ValueError) as e:
        raise ParseError(f"Failed to parse CSV: {e}") from e

    df = df.fillna("")
    return _frame_to_table(df)


def _parse_json(content: Content) -> Tuple[List[str], List[Dict[str, str]]]:
    try:
        payload = json.loads(_decode(content))
    except json.JSONDecodeError as e:
        raise ParseError(f"Format JSON invalide: {e}") from e

    if not isinstance(payload, list) or not payload:
        raise ParseError("Format JSON invalide: la racine doit être un tableau non vide")
    if not all(isinstance(item, dict) for item in payload):
        raise ParseError("Format JSON invalide: chaque élément doit être un objet")

    columns = [str(k).strip() for k in payload[0].keys()]
    rows = [{col: _stringify_cell(item.get(col)) for col in columns} for item in payload]
    return columns, rows


def _parse_excel(content: Content) -> Tuple[List[str], List[Dict[str, str]]]:
    raw = content.encode("utf-8") if isinstance(content, str) else bytes(content)
    try:
        df = pd.read_excel(io.BytesIO(raw), sheet_name=0, header=0, dtype=str)
    except Exception as e:
        raise ParseError(f"Failed to read Excel workbook: {e}") from e

    df = df.dropna(how="all")
    if df.empty:
        raise ParseError("Classeur Excel vide: au moins un en-tête et une ligne sont requis")
    return _frame_to_table(df)


_PARSERS = {
    ".csv": _parse_csv,
    ".json": _parse_json,
    ".xlsx": _parse_excel,
    ".xls": _parse_excel,
}


def parse_file(file_name: str, content: Content) -> ParsedTable:
    """
    Parse an uploaded file into a ParsedTable.

    Every row carries exactly the header's columns, in header order; short CSV
    rows are padded with "" and every cell is a trimmed string.
    """
    ext = file_extension(file_name)
    parser = _PARSERS.get(ext)
    if parser is None:
        raise UnsupportedFormatError(
            f"Unsupported file extension {ext or '(none)'!r}; expected one of {', '.join(SUPPORTED_EXTENSIONS)}"
        )

    columns, rows = parser(content)
    if not columns:
        raise ParseError("No columns found in header")
    return ParsedTable(file_name=file_name, columns=columns, rows=rows)
