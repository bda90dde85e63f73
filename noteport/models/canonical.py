"""
Canonical data models for noteport.

This module defines the standardized internal data structures that every
source importer converts its notes and resources into before they are handed
to the destination store.
"""

from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class DecodedNote(BaseModel):
    """
    A note document after the source-specific decode step, before normalization.
    """

    source_id: str = Field(
        ...,
        description="The identifier of the note in the source"
    )

    title: str = Field(
        default="",
        description="The plain title read from the document"
    )

    raw_markup: str = Field(
        default="",
        description="The rich-text fragment exactly as decoded (ENML, HTML or Markdown)"
    )

    style: Dict[str, Any] = Field(
        default_factory=dict,
        description="Per-note style key/value map"
    )

    meta: Dict[str, Any] = Field(
        default_factory=dict,
        description="Per-note meta key/value map"
    )

    created_at: Optional[int] = Field(
        default=None,
        description="Creation time in seconds since epoch"
    )

    updated_at: Optional[int] = Field(
        default=None,
        description="Last update time in seconds since epoch"
    )


class NormalizedNote(BaseModel):
    """
    A note in the canonical HTML dialect, ready to be persisted.

    The content hash is computed over canonical_html exactly as it will be
    stored, so re-importing unchanged source data yields the same hash.
    """

    source_id: str = Field(
        ...,
        description="The identifier of the note in the source"
    )

    title: str = Field(
        ...,
        description="The note title"
    )

    canonical_html: str = Field(
        default="",
        description="The normalized note body"
    )

    content_hash: str = Field(
        ...,
        description="SHA-256 hex digest of canonical_html encoded as UTF-8"
    )

    content_byte_size: int = Field(
        ...,
        description="Length in bytes of canonical_html encoded as UTF-8"
    )

    notebook_ref: Optional[str] = Field(
        default=None,
        description="Source identifier of the notebook holding the note"
    )

    created_at: Optional[int] = Field(default=None)

    updated_at: Optional[int] = Field(default=None)

    meta: Dict[str, Any] = Field(default_factory=dict)


class AssetRecord(BaseModel):
    """
    A resource placed in the sharded asset namespace.
    """

    hash: str = Field(
        ...,
        description="Content hash identifying the resource"
    )

    extension: Optional[str] = Field(
        default=None,
        description="Lower-case file extension without the leading dot"
    )

    relative_path: str = Field(
        ...,
        description="Path inside the assets root, derived from hash and extension only"
    )

    absolute_path: str = Field(
        ...,
        description="Absolute destination path of the copy"
    )


class AttachmentOutcome(str, Enum):
    """What happened to an attachment during the resources stage."""

    COPIED = "copied"
    MISSING = "missing"
    INACTIVE = "inactive"
    INCOMPLETE = "incomplete"
    COPY_FAILED = "copy_failed"
    LINKED = "linked"


class AttachmentRecord(BaseModel):
    """
    An attachment of an imported note.

    local_file stays None when the bytes could not be placed; the record is
    still kept so the reference is not silently dropped.
    """

    source_id: Optional[str] = Field(default=None)

    note_source_id: Optional[str] = Field(
        default=None,
        description="Source identifier of the owning note"
    )

    data_hash: Optional[str] = Field(default=None)

    filename: Optional[str] = Field(default=None)

    mime: Optional[str] = Field(default=None)

    size: Optional[int] = Field(default=None)

    width: Optional[int] = Field(default=None)

    height: Optional[int] = Field(default=None)

    source_url: Optional[str] = Field(default=None)

    outcome: AttachmentOutcome = Field(
        ...,
        description="Classification made while copying resources"
    )

    local_file: Optional[AssetRecord] = Field(default=None)


class SkippedAttachment(BaseModel):
    """
    An attachment that was not imported because its parent note was excluded.
    """

    source_id: Optional[str] = Field(default=None)

    note_source_id: str = Field(...)

    data_hash: Optional[str] = Field(default=None)

    reason: str = Field(default="parent note deleted")
