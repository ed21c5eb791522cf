import io
from typing import List

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from models import FileAnalysisResult


def _style_header(ws: Worksheet) -> None:
    for cell in ws[1]:
        cell.font = Font(bold=True)
        cell.alignment = Alignment(wrap_text=True, vertical="top")
    ws.freeze_panes = "A2"


def _autosize(ws: Worksheet) -> None:
    # light autosize, capped
    for col_idx in range(1, ws.max_column + 1):
        letter = get_column_letter(col_idx)
        max_len = 0
        for cell in ws[letter]:
            v = "" if cell.value is None else str(cell.value)
            if len(v) > max_len:
                max_len = len(v)
        ws.column_dimensions[letter].width = min(max(10, max_len + 2), 60)


def build_cleaned_xlsx_bytes(result: FileAnalysisResult, sheet_name: str = "Données") -> bytes:
    """
    Workbook with the cleaned rows on the first sheet and the cleaning counters on "Rapport".
    """
    wb = Workbook()

    ws = wb.active
    ws.title = (sheet_name[:31] if sheet_name else "Données")
    if result.columns:
        ws.append(list(result.columns))
        for row in result.data:
            ws.append([row[c] for c in result.columns])
        _style_header(ws)
        ws.auto_filter.ref = f"A1:{get_column_letter(len(result.columns))}{max(ws.max_row, 1)}"
    _autosize(ws)

    ws_rep = wb.create_sheet(title="Rapport")
    ws_rep.append(["indicateur", "valeur"])
    lines: List[List[object]] = [
        ["fichier", result.file_name],
        ["lignes", result.total_rows],
        ["lignes_valides", result.valid_rows],
        ["colonnes", len(result.columns)],
    ]
    report = result.cleaning_report
    if report is not None:
        lines += [
            ["lignes_origine", report.original_rows],
            ["doublons_supprimes", report.duplicates_removed],
            ["lignes_vides_supprimees", report.empty_rows_removed],
            ["valeurs_completees", report.missing_values_filled],
            ["conversions_format", report.format_conversions],
        ]
        lines += [[f"renommage:{old}", new] for old, new in report.renamed_columns.items()]
    for line in lines:
        ws_rep.append(line)
    _style_header(ws_rep)
    _autosize(ws_rep)

    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()
