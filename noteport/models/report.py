"""
Import report, per-run ledger and progress models.

The ledger is the mutable accumulator owned by one run; the report is the
frozen snapshot built from it once the run ends.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

from .canonical import AttachmentRecord, NormalizedNote, SkippedAttachment
from .summary import SourceSummary


class MissingDocument(BaseModel):
    """A note whose document file does not exist."""

    id: str
    path: str


class DecodeErrorEntry(BaseModel):
    """A note whose document could not be decoded or transcoded."""

    id: str
    path: str
    error: str


class MissingResource(BaseModel):
    """An attachment whose bytes were not found in any resource root."""

    note_id: str
    hash: str
    source_path: str = ""


class AssetCopyErrorEntry(BaseModel):
    source_path: str
    dest_path: str
    error: str


class ImportStats(BaseModel):
    """Counts of rows written by the destination store."""

    notes: int = 0
    notebooks: int = 0
    tags: int = 0
    attachments: int = 0


class ImportLedger:
    """
    Mutable per-run accumulator of item-level outcomes.

    Importers and the orchestrator append to the ledger while a run is in
    progress; ImportLedger.to_report() freezes it into an ImportReport.
    """

    def __init__(self):
        self.missing_documents: List[MissingDocument] = []
        self.decode_errors: List[DecodeErrorEntry] = []
        self.missing_resources: List[MissingResource] = []
        self.asset_copy_errors: List[AssetCopyErrorEntry] = []
        self.skipped_attachments: List[SkippedAttachment] = []
        self.errors: List[str] = []

    def add_missing_document(self, note_id: str, path: str) -> None:
        self.missing_documents.append(MissingDocument(id=note_id, path=path))

    def add_decode_error(self, note_id: str, path: str, error: Any) -> None:
        self.decode_errors.append(DecodeErrorEntry(id=note_id, path=path, error=str(error)))

    def add_missing_resource(self, note_id: str, hash: str, source_path: Optional[str]) -> None:
        self.missing_resources.append(
            MissingResource(note_id=note_id, hash=hash, source_path=source_path or "")
        )

    def add_copy_error(self, source_path: str, dest_path: str, error: Any) -> None:
        self.asset_copy_errors.append(
            AssetCopyErrorEntry(source_path=source_path, dest_path=dest_path, error=str(error))
        )

    def add_skipped(self, skipped: SkippedAttachment) -> None:
        self.skipped_attachments.append(skipped)

    def add_error(self, message: str) -> None:
        self.errors.append(message)

    def to_report(
        self,
        *,
        started_at: datetime,
        finished_at: datetime,
        summary: SourceSummary,
        target_data_dir: str,
        backup_dir: str,
        failed: bool,
        stats: Optional[ImportStats] = None,
    ) -> "ImportReport":
        return ImportReport(
            started_at=started_at,
            finished_at=finished_at,
            source_root=summary.source_root,
            target_data_dir=target_data_dir,
            backup_dir=backup_dir,
            failed=failed,
            summary=summary,
            stats=ImportStats() if failed or stats is None else stats,
            missing_documents=list(self.missing_documents),
            decode_errors=list(self.decode_errors),
            missing_resources=list(self.missing_resources),
            asset_copy_errors=list(self.asset_copy_errors),
            skipped_attachments=list(self.skipped_attachments),
            errors=list(self.errors),
        )


class ImportReport(BaseModel):
    """
    The outcome of one import run.

    Written to <backup_dir>/import_report.json on every path, including a
    total failure. Stats are zeroed when the run failed.
    """

    model_config = ConfigDict(frozen=True)

    started_at: datetime
    finished_at: datetime
    source_root: str
    target_data_dir: str
    backup_dir: str
    failed: bool
    summary: SourceSummary
    stats: ImportStats = Field(default_factory=ImportStats)
    missing_documents: List[MissingDocument] = Field(default_factory=list)
    decode_errors: List[DecodeErrorEntry] = Field(default_factory=list)
    missing_resources: List[MissingResource] = Field(default_factory=list)
    asset_copy_errors: List[AssetCopyErrorEntry] = Field(default_factory=list)
    skipped_attachments: List[SkippedAttachment] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)

    @property
    def has_problems(self) -> bool:
        return self.failed or bool(
            self.errors or self.decode_errors or self.asset_copy_errors
        )


class PackageStack(BaseModel):
    id: str
    name: str


class PackageNotebook(BaseModel):
    id: str
    name: str
    stack_id: Optional[str] = None


class PackageTag(BaseModel):
    id: str
    name: str
    parent_id: Optional[str] = None


class PackageNoteTag(BaseModel):
    note_id: str
    tag_id: str


class ImportPackage(BaseModel):
    """
    The JSON document handed to the destination store.

    Notes are already normalized; attachments carry their placed asset when
    one exists.
    """

    meta: Dict[str, Any] = Field(default_factory=dict)
    stacks: List[PackageStack] = Field(default_factory=list)
    notebooks: List[PackageNotebook] = Field(default_factory=list)
    tags: List[PackageTag] = Field(default_factory=list)
    notes: List[NormalizedNote] = Field(default_factory=list)
    note_tags: List[PackageNoteTag] = Field(default_factory=list)
    attachments: List[AttachmentRecord] = Field(default_factory=list)
    missing_documents: List[MissingDocument] = Field(default_factory=list)
    decode_errors: List[DecodeErrorEntry] = Field(default_factory=list)


class ProgressState(str, Enum):
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"


class ProgressEvent(BaseModel):
    """A single progress notification for one stage."""

    model_config = ConfigDict(frozen=True)

    stage: str
    current: int = 0
    total: int = 0
    state: ProgressState = ProgressState.RUNNING
    message: str = ""

