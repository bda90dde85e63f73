"""
Source summary produced by the scanners.
"""

from typing import Dict, List
from pydantic import BaseModel, ConfigDict, Field


class SourceCounts(BaseModel):
    """Entity counts found in a source."""

    model_config = ConfigDict(frozen=True)

    notes: int = 0
    notebooks: int = 0
    stacks: int = 0
    tags: int = 0
    note_tags: int = 0
    attachments: int = 0
    images: int = 0


class ByteSizes(BaseModel):
    """Byte totals found in a source."""

    model_config = ConfigDict(frozen=True)

    attachments: int = 0
    resources: int = 0


class SourceSummary(BaseModel):
    """
    Result of scanning a candidate source root.

    Scanning never raises for a bad root; it returns a summary with
    valid=False and human-readable errors instead. The summary is immutable
    once built and is re-created on every scan.
    """

    model_config = ConfigDict(frozen=True)

    source_kind: str = Field(
        ...,
        description="One of 'evernote', 'html', 'markdown', 'text'"
    )

    source_root: str = Field(
        ...,
        description="The cleaned root path that was scanned"
    )

    required_paths: Dict[str, object] = Field(
        default_factory=dict,
        description="Resolved sub-paths (db_path, document_root, resources_root, resource_roots)"
    )

    counts: SourceCounts = Field(default_factory=SourceCounts)

    byte_sizes: ByteSizes = Field(default_factory=ByteSizes)

    missing_count: int = Field(
        default=0,
        description="Active notes whose document file is absent"
    )

    valid: bool = Field(default=False)

    errors: List[str] = Field(default_factory=list)
