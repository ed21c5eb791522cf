import json
import logging
import math
import re
from datetime import date
from typing import Callable, Dict, List, Optional, Tuple

from detection import RE_CONTROL_CHARS, is_valid_row
from errors import CleaningPreconditionError
from inference import is_missing
from models import CleaningFix, ColumnTypeInfo, DataCleaningReport, FileAnalysisResult, Row, evolve
from parsing import rows_to_frame
from settings import NOT_PROVIDED, SENTINEL_EMAIL

logger = logging.getLogger("medecin")


# -----------------------------
# Lookup tables
# -----------------------------

# lower-cased source header -> canonical column name
COLUMN_SYNONYMS: Dict[str, str] = {
    "nom": "Nom",
    "prenom": "Prénom",
    "prénom": "Prénom",
    "telephone": "phone",
    "téléphone": "phone",
    "tel": "phone",
    "tél": "phone",
    "phone": "phone",
    "mail": "email",
    "e-mail": "email",
    "email": "email",
    "adresse": "ADRESSE",
    "ville": "VILLE",
    "specialite": "SPECIALITE",
    "spécialité": "SPECIALITE",
    "sect act": "SECT ACT",
    "semaine": "Semaine",
    "structure": "STRUCTURE",
    "nom du compte": "Nom du compte",
    "potentiel": "POTENTIEL",
}

SENTINEL_VALUES = frozenset({NOT_PROVIDED, SENTINEL_EMAIL})

# column type -> filler for missing cells
DEFAULT_BY_TYPE: Dict[str, Callable[[date], str]] = {
    "number": lambda today: "0",
    "email": lambda today: SENTINEL_EMAIL,
    "phone": lambda today: NOT_PROVIDED,
    "date": lambda today: today.isoformat(),
    "text": lambda today: NOT_PROVIDED,
    "empty": lambda today: NOT_PROVIDED,
}

# same literal forms as inference.RE_NUMBER, plus comma decimals
RE_FIRST_NUMBER = re.compile(r"[-+]?(?:\d+(?:[.,]\d*)?|[.,]\d+)(?:[eE][-+]?\d+)?")
RE_PHONE_JUNK = re.compile(r"[^\d+\-() ]")


def normalize_number(value: str) -> str:
    m = RE_FIRST_NUMBER.search(value)
    if not m:
        return value
    token = m.group(0)
    try:
        number = float(token)
    except ValueError:
        number = float(token.replace(",", "."))
    if not math.isfinite(number):
        return value
    return str(int(number)) if number.is_integer() else str(number)


def normalize_email(value: str) -> str:
    return value.lower()


def normalize_phone(value: str) -> str:
    return RE_PHONE_JUNK.sub("", value).strip()


def normalize_text(value: str) -> str:
    return value[:1].upper() + value[1:].lower()


NORMALIZER_BY_TYPE: Dict[str, Callable[[str], str]] = {
    "number": normalize_number,
    "email": normalize_email,
    "phone": normalize_phone,
    "text": normalize_text,
}


def default_for(type_name: str, today: date) -> str:
    return DEFAULT_BY_TYPE.get(type_name, DEFAULT_BY_TYPE["text"])(today)


def normalize_value(value: str, type_name: str) -> str:
    v = RE_CONTROL_CHARS.sub("", value).strip()
    if v in SENTINEL_VALUES:
        return v
    normalizer = NORMALIZER_BY_TYPE.get(type_name)
    return normalizer(v) if normalizer else v


def canonical_column_names(columns: List[str]) -> Dict[str, str]:
    """
    Map each column to its final name through COLUMN_SYNONYMS.

    A column whose canonical name is already held (by an identity-mapped column or
    an earlier rename) keeps its own name, so the result stays unique.
    """
    targets = {col: COLUMN_SYNONYMS.get(col.strip().lower(), col) for col in columns}
    held = {col for col in columns if targets[col] == col}
    out: Dict[str, str] = {}
    for col in columns:
        target = targets[col]
        if target != col and target in held:
            target = col
        held.add(target)
        out[col] = target
    return out


# -----------------------------
# Steps
# -----------------------------

def remove_duplicate_rows(rows: List[Row], columns: List[str]) -> Tuple[List[Row], int]:
    if not rows:
        return [], 0
    repeated = rows_to_frame(columns, rows).duplicated(keep="first")
    kept = [row for row, dup in zip(rows, repeated) if not dup]
    return kept, len(rows) - len(kept)


def remove_empty_rows(rows: List[Row]) -> Tuple[List[Row], int]:
    kept = [row for row in rows if is_valid_row(row)]
    return kept, len(rows) - len(kept)


def fill_and_normalize(
    rows: List[Row],
    columns: List[str],
    column_types: Dict[str, ColumnTypeInfo],
    today: date,
) -> Tuple[List[Row], int, int]:
    filled = 0
    converted = 0
    out: List[Row] = []
    for row in rows:
        new_row: Row = {}
        for col in columns:
            value = row[col]
            type_name = column_types[col].type
            if is_missing(value):
                new_row[col] = default_for(type_name, today)
                filled += 1
                continue
            normalized = normalize_value(value, type_name)
            if is_missing(normalized):
                # nothing left after stripping junk or control characters
                new_row[col] = default_for(type_name, today)
                filled += 1
                continue
            if normalized != value:
                converted += 1
            new_row[col] = normalized
        out.append(new_row)
    return out, filled, converted


def rename_columns(
    columns: List[str],
    rows: List[Row],
    column_types: Dict[str, ColumnTypeInfo],
) -> Tuple[List[str], List[Row], Dict[str, ColumnTypeInfo], Dict[str, str]]:
    mapping = canonical_column_names(columns)
    new_columns = [mapping[c] for c in columns]
    new_rows = [{mapping[c]: row[c] for c in columns} for row in rows]
    new_types = {mapping[c]: column_types[c] for c in columns}
    renamed = {old: new for old, new in mapping.items() if old != new}
    return new_columns, new_rows, new_types, renamed


def clean(result: FileAnalysisResult, *, today: Optional[date] = None) -> FileAnalysisResult:
    """
    Dedupe, fill, normalize and rename an analysed file.

    Steps run in a fixed order: duplicate and empty rows go first, then missing
    cells are filled and values normalized by column type, and only then are the
    columns renamed so earlier steps still see the source column names.
    """
    if not result.is_analyzed:
        raise CleaningPreconditionError(
            f"Le fichier {result.file_name!r} doit être analysé avant le nettoyage"
        )
    today = today or date.today()

    rows, duplicates_removed = remove_duplicate_rows(result.data, result.columns)
    rows, empty_rows_removed = remove_empty_rows(rows)
    rows, filled, converted = fill_and_normalize(rows, result.columns, result.column_types, today)
    columns, rows, column_types, renamed = rename_columns(result.columns, rows, result.column_types)

    fixes: List[CleaningFix] = []
    if duplicates_removed:
        fixes.append(CleaningFix(
            type="remove_duplicates",
            count=duplicates_removed,
            description=f"{duplicates_removed} ligne(s) en double supprimée(s)",
        ))
    if empty_rows_removed:
        fixes.append(CleaningFix(
            type="remove_empty_rows",
            count=empty_rows_removed,
            description=f"{empty_rows_removed} ligne(s) vide(s) supprimée(s)",
        ))
    if filled:
        fixes.append(CleaningFix(
            type="fill_missing_values",
            count=filled,
            description=f"{filled} valeur(s) manquante(s) remplacée(s) par une valeur par défaut",
        ))
    if converted:
        fixes.append(CleaningFix(
            type="normalize_formats",
            count=converted,
            description=f"{converted} valeur(s) normalisée(s)",
        ))
    if renamed:
        fixes.append(CleaningFix(
            type="rename_columns",
            count=len(renamed),
            description="Colonnes renommées: " + ", ".join(f"{a} → {b}" for a, b in renamed.items()),
        ))

    report = DataCleaningReport(
        fixes_applied=fixes,
        duplicates_removed=duplicates_removed,
        empty_rows_removed=empty_rows_removed,
        missing_values_filled=filled,
        format_conversions=converted,
        cleaned_rows=len(rows),
        original_rows=(
            result.cleaning_report.original_rows if result.cleaning_report else result.total_rows
        ),
        renamed_columns=renamed,
    )

    logger.info(json.dumps({
        "event": "cleaning_done",
        "file_name": result.file_name,
        "duplicates_removed": duplicates_removed,
        "empty_rows_removed": empty_rows_removed,
        "missing_values_filled": filled,
        "format_conversions": converted,
        "cleaned_rows": len(rows),
    }, ensure_ascii=False))

    return evolve(
        result,
        columns=columns,
        column_types=column_types,
        data=rows,
        total_rows=len(rows),
        valid_rows=sum(1 for row in rows if is_valid_row(row)),
        is_well_structured=True,
        is_cleaned=True,
        cleaning_report=report,
    )
