import json
import logging
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from cleaning import SENTINEL_VALUES
from errors import DuplicateConflictError, ExtractionPreconditionError
from models import (
    ConflictEntry,
    DuplicateGroup,
    FileAnalysisResult,
    MedecinData,
    MedecinStats,
    UpsertConfig,
    UpsertResult,
)
from settings import MEDECIN_TABLE
from stores import RowStore

logger = logging.getLogger("medecin")

# canonical label -> store column (also the MedecinData attribute name)
MEDECIN_FIELDS: "OrderedDict[str, str]" = OrderedDict([
    ("Nom", "nom"),
    ("Prénom", "prenom"),
    ("SECT ACT", "sect_act"),
    ("Semaine", "semaine"),
    ("STRUCTURE", "structure"),
    ("Nom du compte", "nom_compte"),
    ("SPECIALITE", "specialite"),
    ("POTENTIEL", "potentiel"),
    ("VILLE", "ville"),
    ("ADRESSE", "adresse"),
])

_STORE_COLUMNS = frozenset(MEDECIN_FIELDS.values())

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db_column(field_name: str) -> str:
    """Accept a canonical label ("SECT ACT") or a store column ("sect_act")."""
    if field_name in MEDECIN_FIELDS:
        return MEDECIN_FIELDS[field_name]
    if field_name in _STORE_COLUMNS:
        return field_name
    raise ValueError(f"Unknown medecin field {field_name!r}")


def medecin_value(record: MedecinData, field_name: str) -> Optional[str]:
    return getattr(record, to_db_column(field_name))


def default_update_columns(unique_keys: Sequence[str]) -> List[str]:
    keys = {to_db_column(k) for k in unique_keys}
    return [label for label, col in MEDECIN_FIELDS.items() if col not in keys]


def insert_values(file_id: str, record: MedecinData, now: datetime) -> Dict[str, Any]:
    stamp = now.isoformat()
    return {
        "file_id": file_id,
        **record.model_dump(by_alias=False),
        "created_at": stamp,
        "updated_at": stamp,
    }


def update_values(record: MedecinData, columns: Sequence[str], now: datetime) -> Dict[str, Any]:
    values: Dict[str, Any] = {"updated_at": now.isoformat()}
    for col in columns:
        values[to_db_column(col)] = medecin_value(record, col)
    return values


def _filled(values: Iterable[Any]) -> int:
    return sum(1 for v in values if v is not None and str(v).strip() and str(v).strip() not in SENTINEL_VALUES)


def prefer_more_complete(existing: Dict[str, Any], incoming: MedecinData) -> bool:
    """should_update predicate: overwrite unless the stored row carries more filled fields."""
    stored = _filled(existing.get(col) for col in MEDECIN_FIELDS.values())
    new = _filled(getattr(incoming, col) for col in MEDECIN_FIELDS.values())
    return new >= stored


def _describe(record: MedecinData, keys: Sequence[str]) -> str:
    return ", ".join(f"{k}={medecin_value(record, k) or ''}" for k in keys)


def upsert_medecins(
    store: RowStore,
    file_id: str,
    records: Sequence[MedecinData],
    config: Optional[UpsertConfig] = None,
    *,
    table: str = MEDECIN_TABLE,
    clock: Clock = _utcnow,
) -> UpsertResult:
    """
    Insert or reconcile physician rows one at a time, in input order.

    A record matches a stored row when every unique key is equal ignoring case.
    Per-record failures are logged and counted as skipped; only the ``error``
    strategy aborts the batch, before any later record touches the store.
    """
    config = config or UpsertConfig()
    key_columns = [to_db_column(k) for k in config.unique_keys]
    update_columns = config.update_columns or default_update_columns(config.unique_keys)
    for col in update_columns:
        to_db_column(col)

    inserted = updated = skipped = 0
    conflicts: List[ConflictEntry] = []

    logger.info(json.dumps({
        "event": "upsert_start",
        "file_id": file_id,
        "table": table,
        "records": len(records),
        "unique_keys": list(config.unique_keys),
        "conflict_strategy": config.conflict_strategy,
    }, ensure_ascii=False))

    for index, record in enumerate(records, start=1):
        try:
            existing = store.select(table, {col: getattr(record, col) for col in key_columns})
            if not existing:
                store.insert(table, insert_values(file_id, record, clock()))
                inserted += 1
                continue

            match = existing[0]
            if config.conflict_strategy == "error":
                raise DuplicateConflictError(
                    f"Doublon détecté (ligne {index}): {record.nom} {record.prenom} à {record.ville or ''}".rstrip(),
                    index=index,
                    key=_describe(record, config.unique_keys),
                )

            if config.conflict_strategy == "skip":
                logger.info(json.dumps({
                    "event": "upsert_conflict_skipped",
                    "file_id": file_id,
                    "index": index,
                    "existing_id": match.get("id"),
                }, ensure_ascii=False))
                skipped += 1
                conflicts.append(ConflictEntry(
                    index=index,
                    row=record,
                    reason="Enregistrement similaire existe déjà, insertion ignorée",
                    action="skipped",
                ))
                continue

            if config.should_update is None or config.should_update(match, record):
                store.update(table, match["id"], update_values(record, update_columns, clock()))
                updated += 1
                conflicts.append(ConflictEntry(
                    index=index,
                    row=record,
                    reason=f"Mise à jour de l'enregistrement existant (ID: {match['id']})",
                    action="updated",
                ))
            else:
                skipped += 1
                conflicts.append(ConflictEntry(
                    index=index,
                    row=record,
                    reason="Enregistrement existant plus récent, mise à jour ignorée",
                    action="skipped",
                ))

        except DuplicateConflictError as e:
            logger.error(json.dumps({
                "event": "upsert_aborted",
                "file_id": file_id,
                "index": index,
                "key": e.key,
                "inserted": inserted,
                "updated": updated,
                "skipped": skipped,
            }, ensure_ascii=False))
            raise

        except Exception as e:
            logger.exception(json.dumps({
                "event": "upsert_record_failed",
                "file_id": file_id,
                "index": index,
                "error_type": type(e).__name__,
                "error": str(e),
            }, ensure_ascii=False))
            skipped += 1
            conflicts.append(ConflictEntry(
                index=index,
                row=record,
                reason=f"Erreur lors du traitement: {e}",
                action="skipped",
            ))

    result = UpsertResult(
        inserted=inserted,
        updated=updated,
        skipped=skipped,
        total=len(records),
        conflicts=conflicts,
    )
    logger.info(json.dumps({
        "event": "upsert_done",
        "file_id": file_id,
        "inserted": inserted,
        "updated": updated,
        "skipped": skipped,
        "total": result.total,
    }, ensure_ascii=False))
    return result


# -----------------------------
# Cleaned rows -> medecin records
# -----------------------------

def _store_value(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    v = value.strip()
    return None if not v or v in SENTINEL_VALUES else v


def records_from_result(result: FileAnalysisResult) -> List[MedecinData]:
    """Map cleaned rows carrying canonical labels to MedecinData; rows without a name are dropped."""
    if not result.is_cleaned:
        raise ExtractionPreconditionError(
            f"Le fichier {result.file_name!r} doit être nettoyé avant l'enregistrement des médecins"
        )

    records: List[MedecinData] = []
    for row in result.data:
        values = {label: _store_value(row.get(label)) for label in MEDECIN_FIELDS}
        if not values["Nom"]:
            continue
        values["Prénom"] = values["Prénom"] or ""
        records.append(MedecinData.model_validate(values))
    return records


# -----------------------------
# Store-wide views
# -----------------------------

def _fold(value: Any) -> str:
    return "" if value is None else str(value).strip().casefold()


def medecin_stats(store: RowStore, *, table: str = MEDECIN_TABLE) -> MedecinStats:
    rows = store.select(table, columns="nom,prenom,ville,specialite")
    return MedecinStats(
        total_records=len(rows),
        unique_names=len({(_fold(r.get("nom")), _fold(r.get("prenom"))) for r in rows}),
        cities_count=len({_fold(r.get("ville")) for r in rows if _fold(r.get("ville"))}),
        specialties_count=len({_fold(r.get("specialite")) for r in rows if _fold(r.get("specialite"))}),
    )


def find_potential_duplicates(store: RowStore, *, table: str = MEDECIN_TABLE) -> List[DuplicateGroup]:
    groups: "OrderedDict[str, List[Dict[str, Any]]]" = OrderedDict()
    for row in store.select(table):
        key = "|".join(_fold(row.get(col)) for col in ("nom", "prenom", "ville"))
        groups.setdefault(key, []).append(row)

    out = [DuplicateGroup(group=k, count=len(rs), records=rs) for k, rs in groups.items() if len(rs) > 1]
    out.sort(key=lambda g: -g.count)
    return out
