import json
import logging
import time
from datetime import date, datetime
from typing import List, Optional, Protocol, Union

from cleaning import clean
from detection import analyze_file
from extraction import Geocoder, extract_clients
from models import (
    ClientRecord,
    DetailedReport,
    FileAnalysisResult,
    FrozenModel,
    UpsertConfig,
    UpsertResult,
)
from parsing import Content
from reporting import build_report
from stores import RowStore
from upsert import records_from_result, upsert_medecins

logger = logging.getLogger("medecin")

# stage boundaries with timings
stage_logger = logging.getLogger("medecin.stage")


class BlobStore(Protocol):
    def save(
        self,
        owner_id: str,
        file_name: str,
        content: Union[bytes, str],
        content_type: Optional[str] = None,
    ) -> str:
        ...


class PipelineOutcome(FrozenModel):
    file_name: str
    stored_path: Optional[str] = None
    analysis: FileAnalysisResult
    cleaned: FileAnalysisResult
    clients: List[ClientRecord]
    report: DetailedReport
    upsert: UpsertResult


# -----------------------------
# Stages
# -----------------------------

def save_stage(blob_store: BlobStore, owner_id: str, file_name: str, content: Content) -> str:
    data = content.encode("utf-8") if isinstance(content, str) else bytes(content)
    return blob_store.save(owner_id, file_name, data)


def analyze_stage(file_name: str, content: Content) -> FileAnalysisResult:
    return analyze_file(file_name, content)


def clean_stage(analysis: FileAnalysisResult, *, today: Optional[date] = None) -> FileAnalysisResult:
    return clean(analysis, today=today)


def extract_stage(cleaned: FileAnalysisResult, geocoder: Optional[Geocoder] = None) -> List[ClientRecord]:
    return extract_clients(cleaned, geocoder)


def report_stage(cleaned: FileAnalysisResult, *, now: Optional[datetime] = None) -> DetailedReport:
    return build_report(cleaned, now=now)


def upsert_stage(
    row_store: RowStore,
    file_id: str,
    cleaned: FileAnalysisResult,
    config: Optional[UpsertConfig] = None,
) -> UpsertResult:
    return upsert_medecins(row_store, file_id, records_from_result(cleaned), config)


def run_pipeline(
    file_name: str,
    content: Content,
    *,
    owner_id: str,
    row_store: RowStore,
    blob_store: Optional[BlobStore] = None,
    geocoder: Optional[Geocoder] = None,
    upsert_config: Optional[UpsertConfig] = None,
) -> PipelineOutcome:
    """
    Store, analyse, clean, extract, report and upsert one uploaded file.

    Stages run strictly one after the other. A stage failure propagates as a
    PipelineError subclass naming the stage; per-record failures during the
    upsert only show up in its counters and conflict log.

    Without a blob store the file is not persisted and the upsert rows are
    attributed to the file name instead of a stored path.
    """
    def _timed(stage: str, fn, *args, **kwargs):
        t = time.time()
        stage_logger.info("stage=%s_start file=%s", stage, file_name)
        try:
            out = fn(*args, **kwargs)
        except Exception:
            stage_logger.exception("stage=%s_error file=%s", stage, file_name)
            raise
        stage_logger.info("stage=%s_end file=%s secs=%.2f", stage, file_name, time.time() - t)
        return out

    stored_path = None
    if blob_store is not None:
        stored_path = _timed("save", save_stage, blob_store, owner_id, file_name, content)

    analysis = _timed("analyze", analyze_stage, file_name, content)
    cleaned = _timed("clean", clean_stage, analysis)
    clients = _timed("extract", extract_stage, cleaned, geocoder)
    report = _timed("report", report_stage, cleaned)
    upsert = _timed("upsert", upsert_stage, row_store, stored_path or file_name, cleaned, upsert_config)

    logger.info(json.dumps({
        "event": "pipeline_done",
        "file_name": file_name,
        "owner_id": owner_id,
        "stored_path": stored_path,
        "rows": cleaned.total_rows,
        "clients": len(clients),
        "inserted": upsert.inserted,
        "updated": upsert.updated,
        "skipped": upsert.skipped,
    }, ensure_ascii=False))

    return PipelineOutcome(
        file_name=file_name,
        stored_path=stored_path,
        analysis=analysis,
        cleaned=cleaned,
        clients=clients,
        report=report,
        upsert=upsert,
    )
