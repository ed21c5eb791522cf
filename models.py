from datetime import datetime
from typing import Any, Callable, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


ColumnType = Literal["number", "email", "phone", "date", "text", "empty"]
IssueType = Literal["missing_value", "wrong_format", "duplicate", "invalid_character", "inconsistent_type"]
ConflictStrategy = Literal["update", "skip", "error"]
ConflictAction = Literal["updated", "skipped"]

Row = Dict[str, str]


class FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True)


def _check_row_keys(columns: List[str], rows: List[Row]) -> None:
    expected = list(columns)
    for i, row in enumerate(rows, start=1):
        if list(row.keys()) != expected:
            raise ValueError(f"row {i} keys {list(row.keys())} do not match columns {expected}")


class ParsedTable(FrozenModel):
    file_name: str
    columns: List[str]
    rows: List[Row]

    @model_validator(mode="after")
    def _validate_shape(self) -> "ParsedTable":
        if len(set(self.columns)) != len(self.columns):
            raise ValueError("column names must be unique")
        _check_row_keys(self.columns, self.rows)
        return self


class ColumnTypeInfo(FrozenModel):
    type: ColumnType
    confidence: float = Field(ge=0.0, le=1.0)


class DataIssue(FrozenModel):
    type: IssueType
    column: Optional[str] = None      # None for row-level issues
    row: int = Field(ge=1)
    value: str = ""
    description: str


class CleaningFix(FrozenModel):
    type: str
    count: int
    description: str


class DataCleaningReport(FrozenModel):
    fixes_applied: List[CleaningFix] = Field(default_factory=list)
    duplicates_removed: int = 0
    empty_rows_removed: int = 0
    missing_values_filled: int = 0
    format_conversions: int = 0
    cleaned_rows: int = 0
    original_rows: int = 0
    renamed_columns: Dict[str, str] = Field(default_factory=dict)


class FileAnalysisResult(FrozenModel):
    file_name: str
    total_rows: int
    valid_rows: int
    columns: List[str]
    column_types: Dict[str, ColumnTypeInfo]
    issues: List[DataIssue] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    is_well_structured: bool
    data: List[Row]
    is_analyzed: bool = False
    is_cleaned: bool = False
    cleaning_report: Optional[DataCleaningReport] = None

    @model_validator(mode="after")
    def _validate_invariants(self) -> "FileAnalysisResult":
        if self.total_rows != len(self.data):
            raise ValueError(f"total_rows={self.total_rows} but data has {len(self.data)} rows")
        if not 0 <= self.valid_rows <= self.total_rows:
            raise ValueError(f"valid_rows={self.valid_rows} outside [0, {self.total_rows}]")
        _check_row_keys(self.columns, self.data)
        return self


class QualityMetrics(FrozenModel):
    completeness: float
    accuracy: float
    consistency: float
    uniqueness: float


class ReportSummary(FrozenModel):
    total_rows: int
    valid_rows: int
    original_rows: int
    column_count: int
    issue_count: int
    fix_count: int
    issues_by_type: Dict[str, int]


class DetailedReport(FrozenModel):
    file_name: str
    generated_at: datetime
    summary: ReportSummary
    quality: QualityMetrics
    column_types: Dict[str, ColumnTypeInfo]
    issues: List[DataIssue]
    fixes: List[CleaningFix]
    recommendations: List[str]


class Coordinates(FrozenModel):
    lat: float
    lng: float


class ClientRecord(FrozenModel):
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    specialty: Optional[str] = None
    coordinates: Optional[Coordinates] = None


class MedecinData(FrozenModel):
    """A physician row keyed by the canonical column labels of the uploaded files."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    nom: str = Field(alias="Nom")
    prenom: str = Field(default="", alias="Prénom")
    sect_act: Optional[str] = Field(default=None, alias="SECT ACT")
    semaine: Optional[str] = Field(default=None, alias="Semaine")
    structure: Optional[str] = Field(default=None, alias="STRUCTURE")
    nom_compte: Optional[str] = Field(default=None, alias="Nom du compte")
    specialite: Optional[str] = Field(default=None, alias="SPECIALITE")
    potentiel: Optional[str] = Field(default=None, alias="POTENTIEL")
    ville: Optional[str] = Field(default=None, alias="VILLE")
    adresse: Optional[str] = Field(default=None, alias="ADRESSE")


# existing store row, incoming record -> should the stored row be overwritten?
UpdatePredicate = Callable[[Dict[str, Any], MedecinData], bool]


class UpsertConfig(FrozenModel):
    unique_keys: List[str] = Field(default_factory=lambda: ["Nom", "Prénom", "VILLE"], min_length=1)
    conflict_strategy: ConflictStrategy = "update"
    update_columns: Optional[List[str]] = None
    should_update: Optional[UpdatePredicate] = None


class ConflictEntry(FrozenModel):
    index: int                      # 1-based position in the incoming batch
    row: MedecinData
    reason: str
    action: ConflictAction


class UpsertResult(FrozenModel):
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    total: int = 0
    conflicts: List[ConflictEntry] = Field(default_factory=list)

    @model_validator(mode="after")
    def _validate_counters(self) -> "UpsertResult":
        if self.inserted + self.updated + self.skipped != self.total:
            raise ValueError("inserted + updated + skipped must equal total")
        return self


def evolve(model: BaseModel, **changes: Any) -> Any:
    """Return a new, re-validated copy of a frozen model with some fields replaced."""
    data = {name: getattr(model, name) for name in type(model).model_fields}
    data.update(changes)
    return type(model).model_validate(data)


class MedecinStats(FrozenModel):
    total_records: int
    unique_names: int
    cities_count: int
    specialties_count: int


class DuplicateGroup(FrozenModel):
    group: str
    count: int
    records: List[Dict[str, Any]]
