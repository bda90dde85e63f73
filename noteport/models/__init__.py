"""Data models for noteport."""

from .canonical import (
    DecodedNote,
    NormalizedNote,
    AssetRecord,
    AttachmentOutcome,
    AttachmentRecord,
    SkippedAttachment,
)
from .rows import NotebookRow, NoteRow, TagRow, NoteTagRow, AttachmentRow
from .summary import SourceCounts, ByteSizes, SourceSummary
from .report import (
    MissingDocument,
    DecodeErrorEntry,
    MissingResource,
    AssetCopyErrorEntry,
    ImportStats,
    ImportLedger,
    ImportReport,
    PackageStack,
    PackageNotebook,
    PackageTag,
    PackageNoteTag,
    ImportPackage,
    ProgressState,
    ProgressEvent,
)

__all__ = [
    "DecodedNote",
    "NormalizedNote",
    "AssetRecord",
    "AttachmentOutcome",
    "AttachmentRecord",
    "SkippedAttachment",
    "NotebookRow",
    "NoteRow",
    "TagRow",
    "NoteTagRow",
    "AttachmentRow",
    "SourceCounts",
    "ByteSizes",
    "SourceSummary",
    "MissingDocument",
    "DecodeErrorEntry",
    "MissingResource",
    "AssetCopyErrorEntry",
    "ImportStats",
    "ImportLedger",
    "ImportReport",
    "PackageStack",
    "PackageNotebook",
    "PackageTag",
    "PackageNoteTag",
    "ImportPackage",
    "ProgressState",
    "ProgressEvent",
]
