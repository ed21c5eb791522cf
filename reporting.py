import json
from collections import Counter
from datetime import date, datetime, timezone
from html import escape
from pathlib import PurePath
from typing import Dict, List, Optional

from errors import ReportPreconditionError
from models import DetailedReport, FileAnalysisResult, QualityMetrics, ReportSummary
from settings import ACCURACY_MIN, COMPLETENESS_MIN, MAX_COLUMNS_RECOMMENDED


RECOMMENDATION_COMPLETENESS = (
    "Complétez les valeurs manquantes: moins de {threshold:g}% des cellules sont renseignées."
)
RECOMMENDATION_ACCURACY = (
    "Corrigez les valeurs mal formatées: moins de {threshold:g}% des cellules respectent le format attendu."
)
RECOMMENDATION_DUPLICATES = (
    "Supprimez les doublons à la source: {count} ligne(s) en double détectée(s)."
)
RECOMMENDATION_COLUMNS = (
    "Simplifiez la structure du fichier: plus de {threshold} colonnes rendent l'import difficile."
)
RECOMMENDATION_GOOD = "Les données sont de bonne qualité: aucune action corrective n'est nécessaire."


def _pct(n: int, d: int) -> float:
    return round((n / d * 100.0) if d else 0.0, 2)


def quality_metrics(result: FileAnalysisResult, counts: Dict[str, int]) -> QualityMetrics:
    # issues were detected before cleaning, so the pre-cleaning row count is the basis
    rows = result.cleaning_report.original_rows if result.cleaning_report else result.total_rows
    cells = rows * len(result.columns)
    return QualityMetrics(
        completeness=_pct(cells - counts.get("missing_value", 0), cells),
        accuracy=_pct(cells - counts.get("wrong_format", 0), cells),
        consistency=_pct(cells - counts.get("inconsistent_type", 0), cells),
        uniqueness=_pct(rows - counts.get("duplicate", 0), rows),
    )


def recommendations_for(quality: QualityMetrics, duplicate_count: int, column_count: int) -> List[str]:
    out: List[str] = []
    if quality.completeness < COMPLETENESS_MIN:
        out.append(RECOMMENDATION_COMPLETENESS.format(threshold=COMPLETENESS_MIN))
    if quality.accuracy < ACCURACY_MIN:
        out.append(RECOMMENDATION_ACCURACY.format(threshold=ACCURACY_MIN))
    if duplicate_count > 0:
        out.append(RECOMMENDATION_DUPLICATES.format(count=duplicate_count))
    if column_count > MAX_COLUMNS_RECOMMENDED:
        out.append(RECOMMENDATION_COLUMNS.format(threshold=MAX_COLUMNS_RECOMMENDED))
    return out or [RECOMMENDATION_GOOD]


def build_report(result: FileAnalysisResult, *, now: Optional[datetime] = None) -> DetailedReport:
    if not result.is_cleaned:
        raise ReportPreconditionError(
            f"Le fichier {result.file_name!r} doit être nettoyé avant la génération du rapport"
        )
    counts = Counter(issue.type for issue in result.issues)
    quality = quality_metrics(result, counts)
    fixes = list(result.cleaning_report.fixes_applied) if result.cleaning_report else []

    summary = ReportSummary(
        total_rows=result.total_rows,
        valid_rows=result.valid_rows,
        original_rows=result.cleaning_report.original_rows if result.cleaning_report else result.total_rows,
        column_count=len(result.columns),
        issue_count=len(result.issues),
        fix_count=len(fixes),
        issues_by_type=dict(sorted(counts.items())),
    )
    return DetailedReport(
        file_name=result.file_name,
        generated_at=now or datetime.now(timezone.utc),
        summary=summary,
        quality=quality,
        column_types=dict(result.column_types),
        issues=list(result.issues),
        fixes=fixes,
        recommendations=recommendations_for(quality, counts.get("duplicate", 0), len(result.columns)),
    )


# -----------------------------
# Rendering
# -----------------------------

def report_filename(file_name: str, ext: str, on: Optional[date] = None) -> str:
    stem = PurePath(file_name).stem or "fichier"
    day = (on or date.today()).isoformat()
    return f"rapport-analyse-{stem}-{day}.{ext.lstrip('.')}"


def render_json(report: DetailedReport) -> str:
    return json.dumps(
        report.model_dump(mode="json"),
        ensure_ascii=False,
        indent=2,
        allow_nan=False,
    )


_CARD = "display:inline-block;min-width:140px;margin:6px;padding:12px 16px;border-radius:8px;background:#f3f4f6;text-align:center"
_TABLE = "border-collapse:collapse;width:100%;margin:8px 0 24px 0;font-size:14px"
_CELL = "border:1px solid #e5e7eb;padding:6px 8px;text-align:left"


def _card(label: str, value: str) -> str:
    return (
        f'<div style="{_CARD}">'
        f'<div style="font-size:22px;font-weight:bold;color:#1d4ed8">{escape(value)}</div>'
        f'<div style="font-size:12px;color:#6b7280">{escape(label)}</div></div>'
    )


def _table(headers: List[str], rows: List[List[str]]) -> str:
    head = "".join(f'<th style="{_CELL};background:#f9fafb">{escape(h)}</th>' for h in headers)
    body = "".join(
        "<tr>" + "".join(f'<td style="{_CELL}">{escape(c)}</td>' for c in row) + "</tr>"
        for row in rows
    )
    return f'<table style="{_TABLE}"><thead><tr>{head}</tr></thead><tbody>{body}</tbody></table>'


def render_html(report: DetailedReport) -> str:
    s = report.summary
    q = report.quality

    parts: List[str] = [
        "<!DOCTYPE html>",
        '<html lang="fr"><head><meta charset="utf-8">',
        f"<title>Rapport d'analyse - {escape(report.file_name)}</title></head>",
        '<body style="font-family:Arial,Helvetica,sans-serif;color:#111827;max-width:1100px;margin:24px auto;padding:0 16px">',
        f'<h1 style="font-size:24px">Rapport d\'analyse: {escape(report.file_name)}</h1>',
        f'<p style="color:#6b7280">Généré le {escape(report.generated_at.isoformat())}</p>',
        '<h2 style="font-size:18px">Résumé</h2><div>',
        _card("Lignes d'origine", str(s.original_rows)),
        _card("Lignes nettoyées", str(s.total_rows)),
        _card("Lignes valides", str(s.valid_rows)),
        _card("Colonnes", str(s.column_count)),
        _card("Problèmes détectés", str(s.issue_count)),
        _card("Corrections", str(s.fix_count)),
        "</div>",
        '<h2 style="font-size:18px">Qualité des données</h2><div>',
        _card("Complétude", f"{q.completeness:.1f}%"),
        _card("Exactitude", f"{q.accuracy:.1f}%"),
        _card("Cohérence", f"{q.consistency:.1f}%"),
        _card("Unicité", f"{q.uniqueness:.1f}%"),
        "</div>",
        '<h2 style="font-size:18px">Recommandations</h2><ul>',
        *(f"<li>{escape(r)}</li>" for r in report.recommendations),
        "</ul>",
        '<h2 style="font-size:18px">Structure</h2>',
        _table(
            ["Colonne", "Type", "Confiance"],
            [[col, info.type, f"{info.confidence * 100:.0f}%"] for col, info in report.column_types.items()],
        ),
    ]

    if report.fixes:
        parts.append('<h2 style="font-size:18px">Corrections appliquées</h2>')
        parts.append(_table(
            ["Type", "Nombre", "Description"],
            [[f.type, str(f.count), f.description] for f in report.fixes],
        ))

    if report.issues:
        parts.append('<h2 style="font-size:18px">Problèmes détectés</h2>')
        parts.append(_table(
            ["Ligne", "Colonne", "Type", "Valeur", "Description"],
            [[str(i.row), i.column or "-", i.type, i.value, i.description] for i in report.issues],
        ))

    parts.append("</body></html>")
    return "\n".join(parts)
