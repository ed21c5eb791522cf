import json
import logging
import re
from typing import Dict, List, Optional, Sequence

import pandas as pd

from inference import TYPE_PREDICATES, infer_types, is_missing, type_masks
from models import ColumnTypeInfo, DataIssue, FileAnalysisResult, ParsedTable, Row
from parsing import Content, parse_file, rows_to_frame
from settings import ISSUE_RATIO_MAX, MIN_COLUMNS, VALID_ROW_RATIO_MIN

logger = logging.getLogger("medecin")

RE_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def is_valid_row(row: Row) -> bool:
    return any(not is_missing(v) for v in row.values())


def column_checks(s: pd.Series, type_name: str) -> pd.DataFrame:
    """
    Per-cell flags for one column against its inferred type.

    ``stripped`` is the cell with control characters removed and trimmed; format
    checks run on it. ``other_type`` names the first specific type (in
    TYPE_PREDICATES order) other than the column's own that the stripped cell matches.
    """
    stripped = s.str.replace(RE_CONTROL_CHARS.pattern, "", regex=True).str.strip()
    masks = type_masks(stripped)
    fits = masks[type_name] if type_name in masks else pd.Series(True, index=s.index)

    other_type = pd.Series("", index=s.index, dtype=object)
    for name, _ in reversed(TYPE_PREDICATES):
        if name != type_name:
            other_type = other_type.mask(masks[name], name)

    missing = s.str.strip() == ""
    return pd.DataFrame({
        "value": s,
        "stripped": stripped,
        "missing": missing,
        "wrong_format": ~missing & ~fits,
        "other_type": other_type,
        "invalid_character": ~missing & s.str.contains(RE_CONTROL_CHARS.pattern, regex=True),
    })


def _cell_issues(column: str, row_index: int, cell: Dict[str, object], type_name: str) -> List[DataIssue]:
    value = str(cell["value"])
    if cell["missing"]:
        return [DataIssue(
            type="missing_value",
            column=column,
            row=row_index,
            value=value,
            description=f'Valeur manquante dans la colonne "{column}"',
        )]

    out: List[DataIssue] = []
    if cell["wrong_format"]:
        out.append(DataIssue(
            type="wrong_format",
            column=column,
            row=row_index,
            value=value,
            description=f'Format incorrect: "{cell["stripped"]}" n\'est pas un {type_name} valide',
        ))
        if cell["other_type"]:
            out.append(DataIssue(
                type="inconsistent_type",
                column=column,
                row=row_index,
                value=value,
                description=f'Type incohérent: valeur de type {cell["other_type"]} dans une colonne {type_name}',
            ))

    if cell["invalid_character"]:
        out.append(DataIssue(
            type="invalid_character",
            column=column,
            row=row_index,
            value=value,
            description=f'Caractères de contrôle invalides dans la colonne "{column}"',
        ))
    return out


def first_occurrence(df: pd.DataFrame) -> pd.Series:
    """0-based position of the first identical row, for every duplicated row."""
    if df.empty:
        return pd.Series(dtype="int64")
    df = df.reset_index(drop=True)
    dup = df.duplicated(keep="first")
    groups = df.groupby(list(df.columns), sort=False, dropna=False).ngroup()
    first = pd.Series(range(len(df)), index=df.index).groupby(groups).transform("min")
    return first[dup]


def find_duplicate_rows(df: pd.DataFrame) -> List[DataIssue]:
    """Flag second and later occurrences of identical rows (1-based indexes)."""
    out: List[DataIssue] = []
    for pos, first_pos in first_occurrence(df).items():
        i, first = int(pos) + 1, int(first_pos) + 1
        out.append(DataIssue(
            type="duplicate",
            column=None,
            row=i,
            value=str(first),
            description=f"Ligne {i} en double de la ligne {first}",
        ))
    return out


def detect_issues(
    table: ParsedTable,
    column_types: Dict[str, ColumnTypeInfo],
    frame: Optional[pd.DataFrame] = None,
) -> List[DataIssue]:
    df = rows_to_frame(table.columns, table.rows) if frame is None else frame
    checks = {
        col: column_checks(df[col], column_types[col].type).to_dict("records")
        for col in table.columns
    }
    issues: List[DataIssue] = []
    for i in range(len(df)):
        for col in table.columns:
            issues.extend(_cell_issues(col, i + 1, checks[col][i], column_types[col].type))
    issues.extend(find_duplicate_rows(df))
    return issues


def is_well_structured(column_count: int, total_rows: int, valid_rows: int, issues: Sequence[DataIssue]) -> bool:
    if column_count < MIN_COLUMNS or valid_rows <= 0 or total_rows <= 0:
        return False
    if valid_rows / total_rows <= VALID_ROW_RATIO_MIN:
        return False
    blocking = sum(1 for issue in issues if issue.type != "missing_value")
    return blocking < total_rows * ISSUE_RATIO_MAX


def analyze_table(table: ParsedTable) -> FileAnalysisResult:
    df = rows_to_frame(table.columns, table.rows)
    column_types = infer_types(table, df)
    issues = detect_issues(table, column_types, df)

    warnings: List[str] = []
    for col, info in column_types.items():
        if info.type == "empty":
            warnings.append(f'Colonne "{col}" principalement vide')

    valid_rows = 0
    for i, row in enumerate(table.rows, start=1):
        if is_valid_row(row):
            valid_rows += 1
        else:
            warnings.append(f"Ligne {i} vide ou invalide")

    total_rows = len(table.rows)
    result = FileAnalysisResult(
        file_name=table.file_name,
        total_rows=total_rows,
        valid_rows=valid_rows,
        columns=list(table.columns),
        column_types=column_types,
        issues=issues,
        warnings=warnings,
        is_well_structured=is_well_structured(len(table.columns), total_rows, valid_rows, issues),
        data=[dict(row) for row in table.rows],
        is_analyzed=True,
    )

    logger.info(json.dumps({
        "event": "analysis_done",
        "file_name": table.file_name,
        "total_rows": total_rows,
        "valid_rows": valid_rows,
        "n_columns": len(table.columns),
        "n_issues": len(issues),
        "is_well_structured": result.is_well_structured,
    }, ensure_ascii=False))
    return result


def analyze_file(file_name: str, content: Content) -> FileAnalysisResult:
    return analyze_table(parse_file(file_name, content))
