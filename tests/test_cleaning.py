from datetime import date

import pytest

from cleaning import (
    COLUMN_SYNONYMS,
    DEFAULT_BY_TYPE,
    canonical_column_names,
    clean,
    default_for,
    normalize_number,
    normalize_value,
    remove_duplicate_rows,
)
from detection import analyze_file, analyze_table
from errors import CleaningPreconditionError
from models import ColumnTypeInfo, FileAnalysisResult, ParsedTable
from settings import NOT_PROVIDED, SENTINEL_EMAIL

TODAY = date(2024, 5, 1)


def _analyzed(columns, rows, types) -> FileAnalysisResult:
    return FileAnalysisResult(
        file_name="medecins.csv",
        total_rows=len(rows),
        valid_rows=len(rows),
        columns=columns,
        column_types={c: ColumnTypeInfo(type=t, confidence=1.0) for c, t in zip(columns, types)},
        is_well_structured=True,
        data=rows,
        is_analyzed=True,
    )


@pytest.fixture
def mixed() -> FileAnalysisResult:
    return _analyzed(
        ["nom", "mail", "tel", "visites", "rdv"],
        [
            {"nom": "DUPONT", "mail": "Jean@Exemple.FR", "tel": "06.12.34.56.78", "visites": "3 visites", "rdv": ""},
            {"nom": "", "mail": "", "tel": "", "visites": "", "rdv": "2024-01-02"},
        ],
        ["text", "email", "phone", "number", "date"],
    )


def test_fill_normalize_and_rename(mixed: FileAnalysisResult) -> None:
    cleaned = clean(mixed, today=TODAY)

    assert cleaned.columns == ["Nom", "email", "phone", "visites", "rdv"]
    assert cleaned.data == [
        {"Nom": "Dupont", "email": "jean@exemple.fr", "phone": "0612345678", "visites": "3", "rdv": "2024-05-01"},
        {"Nom": NOT_PROVIDED, "email": SENTINEL_EMAIL, "phone": NOT_PROVIDED, "visites": "0", "rdv": "2024-01-02"},
    ]
    assert set(cleaned.column_types) == set(cleaned.columns)
    assert cleaned.is_cleaned is True
    assert cleaned.is_well_structured is True

    report = cleaned.cleaning_report
    assert report.missing_values_filled == 5
    assert report.format_conversions == 4
    assert report.duplicates_removed == 0
    assert report.original_rows == 2
    assert report.cleaned_rows == 2
    assert report.renamed_columns == {"nom": "Nom", "mail": "email", "tel": "phone"}
    assert [f.type for f in report.fixes_applied] == ["fill_missing_values", "normalize_formats", "rename_columns"]


def test_input_snapshot_is_untouched(mixed: FileAnalysisResult) -> None:
    before = [dict(r) for r in mixed.data]
    clean(mixed, today=TODAY)
    assert mixed.data == before
    assert mixed.columns == ["nom", "mail", "tel", "visites", "rdv"]
    assert mixed.is_cleaned is False


def test_cleaning_twice_changes_nothing(mixed: FileAnalysisResult) -> None:
    once = clean(mixed, today=TODAY)
    twice = clean(once, today=date(2030, 1, 1))

    assert twice.data == once.data
    assert twice.columns == once.columns
    assert twice.cleaning_report.duplicates_removed == 0
    assert twice.cleaning_report.missing_values_filled == 0
    assert twice.cleaning_report.format_conversions == 0
    assert twice.cleaning_report.renamed_columns == {}
    assert twice.cleaning_report.original_rows == once.cleaning_report.original_rows


def test_duplicate_rows_removed_once() -> None:
    analysis = analyze_file("m.csv", "Nom,VILLE\nJean,Paris\nJean,Paris\n")
    cleaned = clean(analysis, today=TODAY)
    assert cleaned.total_rows == 1
    assert cleaned.cleaning_report.duplicates_removed == 1
    assert cleaned.cleaning_report.fixes_applied[0].type == "remove_duplicates"
    assert cleaned.cleaning_report.fixes_applied[0].count == 1


def test_blank_rows_are_dropped() -> None:
    analysis = analyze_table(ParsedTable(
        file_name="m.csv",
        columns=["Nom", "VILLE"],
        rows=[{"Nom": "Jean", "VILLE": "Paris"}, {"Nom": "", "VILLE": ""}, {"Nom": "Ana", "VILLE": ""}],
    ))
    cleaned = clean(analysis, today=TODAY)
    assert cleaned.total_rows == 2
    assert cleaned.valid_rows == 2
    assert cleaned.cleaning_report.empty_rows_removed == 1
    assert cleaned.data[1] == {"Nom": "Ana", "VILLE": NOT_PROVIDED}


def test_requires_analysis(mixed: FileAnalysisResult) -> None:
    raw = mixed.model_copy(update={"is_analyzed": False})
    with pytest.raises(CleaningPreconditionError) as exc:
        clean(raw)
    assert exc.value.stage == "clean"


def test_synonyms_are_case_insensitive() -> None:
    mapping = canonical_column_names(["NOM", "Téléphone", "E-mail", "Ville", "autre"])
    assert mapping == {
        "NOM": "Nom",
        "Téléphone": "phone",
        "E-mail": "email",
        "Ville": "VILLE",
        "autre": "autre",
    }


def test_rename_collisions_keep_source_names() -> None:
    assert canonical_column_names(["Nom", "nom"]) == {"Nom": "Nom", "nom": "nom"}
    assert canonical_column_names(["tel", "telephone"]) == {"tel": "phone", "telephone": "telephone"}


def test_canonical_names_are_fixed_points() -> None:
    for target in set(COLUMN_SYNONYMS.values()):
        assert canonical_column_names([target]) == {target: target}


def test_default_table() -> None:
    assert set(DEFAULT_BY_TYPE) == {"number", "email", "phone", "date", "text", "empty"}
    assert default_for("number", TODAY) == "0"
    assert default_for("date", TODAY) == "2024-05-01"
    assert default_for("email", TODAY) == SENTINEL_EMAIL
    assert default_for("empty", TODAY) == NOT_PROVIDED


@pytest.mark.parametrize("value, expected", [
    ("3 visites", "3"),
    ("1,5 kg", "1.5"),
    ("12.0", "12"),
    ("-4.25", "-4.25"),
    ("aucun", "aucun"),
    (".5", "0.5"),
    ("1.5e3", "1500"),
    ("-2E-1 mg", "-0.2"),
])
def test_normalize_number(value: str, expected: str) -> None:
    assert normalize_number(value) == expected


def test_normalize_value_strips_control_characters_and_keeps_sentinels() -> None:
    assert normalize_value("  jean\x01 ", "text") == "Jean"
    assert normalize_value(NOT_PROVIDED, "text") == NOT_PROVIDED
    assert normalize_value(SENTINEL_EMAIL, "email") == SENTINEL_EMAIL


def test_phone_with_no_digits_is_filled_and_stays_stable() -> None:
    analysis = analyze_file("m.csv", "Nom,tel\nJean,0612345678 \nAna,01 23 45 67 89\nLuc,inconnu\n")
    assert analysis.column_types["tel"].type == "phone"

    once = clean(analysis, today=TODAY)
    assert [row["phone"] for row in once.data] == ["0612345678", "01 23 45 67 89", NOT_PROVIDED]
    assert once.cleaning_report.missing_values_filled == 1

    twice = clean(once, today=TODAY)
    assert twice.data == once.data
    assert twice.cleaning_report.missing_values_filled == 0
    assert twice.cleaning_report.format_conversions == 0


def test_cell_of_control_characters_only_is_filled() -> None:
    analysis = _analyzed(["Nom", "VILLE"], [{"Nom": "Jean", "VILLE": "\x01\x02"}], ["text", "text"])
    cleaned = clean(analysis, today=TODAY)
    assert cleaned.data == [{"Nom": "Jean", "VILLE": NOT_PROVIDED}]
    assert cleaned.cleaning_report.missing_values_filled == 1


def test_remove_duplicate_rows_keeps_first_occurrence_order() -> None:
    a = {"Nom": "Jean", "VILLE": "Paris"}
    b = {"Nom": "Ana", "VILLE": "Lyon"}
    kept, removed = remove_duplicate_rows([a, b, dict(a), dict(b)], ["Nom", "VILLE"])
    assert kept == [a, b]
    assert removed == 2
    assert remove_duplicate_rows([], ["Nom"]) == ([], 0)
