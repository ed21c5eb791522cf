from typing import Optional


class PipelineError(Exception):
    """Base class for every failure the pipeline surfaces to its caller."""

    stage: str = "pipeline"

    def __init__(self, message: str, *, stage: Optional[str] = None) -> None:
        super().__init__(message)
        if stage is not None:
            self.stage = stage


class ParseError(PipelineError):
    stage = "parse"


class UnsupportedFormatError(ParseError):
    pass


class CleaningPreconditionError(PipelineError):
    stage = "clean"


class ExtractionPreconditionError(PipelineError):
    stage = "extract"


class ReportPreconditionError(PipelineError):
    stage = "report"


class DuplicateConflictError(PipelineError):
    """Raised under the ``error`` conflict strategy; aborts the whole batch."""

    stage = "upsert"

    def __init__(self, message: str, *, index: int, key: str) -> None:
        super().__init__(message)
        self.index = index
        self.key = key


class StoreIOError(PipelineError):
    stage = "store"


class GeocodeError(PipelineError):
    # never leaves the extractor
    stage = "geocode"
