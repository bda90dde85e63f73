"""
Row schemas for the relational note source.

Rows come out of the source database as plain dicts whose column names vary
between application versions. Each schema maps one table's row into typed
fields at the extraction boundary, so the rest of the pipeline never handles
untyped rows.
"""

import math
from typing import Any, Mapping, Optional
from pydantic import BaseModel, Field

from ..errors import RowSchemaError


def _pick(row: Mapping[str, Any], *keys: str) -> Any:
    """Return the first non-null value among the candidate column names."""
    for key in keys:
        value = row.get(key)
        if value is not None:
            return value
    return None


def _as_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text if text else None


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return int(number)


def _require(table: str, field: str, value: Optional[str]) -> str:
    if value is None:
        raise RowSchemaError(f"{table} row without {field}")
    return value


class NotebookRow(BaseModel):
    """A row of Nodes_Notebook."""

    id: str = Field(...)
    name: str = Field(...)
    stack_id: Optional[str] = Field(
        default=None,
        description="Raw stack identifier, still carrying the 'Stack:' prefix"
    )

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "NotebookRow":
        notebook_id = _require("Nodes_Notebook", "id", _as_str(row.get("id")))
        name = _as_str(_pick(row, "label", "name", "title")) or notebook_id
        stack_id = _as_str(_pick(row, "personal_Stack_id", "stack_Stack_id"))
        return cls(id=notebook_id, name=name, stack_id=stack_id)


class NoteRow(BaseModel):
    """A row of Nodes_Note."""

    id: str = Field(...)
    title: Optional[str] = Field(default=None)
    notebook_id: Optional[str] = Field(default=None)
    deleted: Optional[float] = Field(default=None)
    created: Any = Field(default=None)
    updated: Any = Field(default=None)

    @property
    def is_deleted(self) -> bool:
        return self.deleted is not None and math.isfinite(self.deleted) and self.deleted > 0

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "NoteRow":
        note_id = _require("Nodes_Note", "id", _as_str(row.get("id")))
        deleted = row.get("deleted")
        try:
            deleted_value = float(deleted) if deleted is not None else None
        except (TypeError, ValueError):
            deleted_value = None
        return cls(
            id=note_id,
            title=_as_str(_pick(row, "title", "label")),
            notebook_id=_as_str(row.get("parent_Notebook_id")),
            deleted=deleted_value,
            created=_pick(row, "created", "createdAt", "creationDate"),
            updated=_pick(row, "updated", "updatedAt", "updateDate"),
        )


class TagRow(BaseModel):
    """A row of Nodes_Tag."""

    id: str = Field(...)
    name: str = Field(...)
    parent_id: Optional[str] = Field(default=None)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "TagRow":
        tag_id = _require("Nodes_Tag", "id", _as_str(row.get("id")))
        name = _as_str(_pick(row, "name", "label")) or tag_id
        return cls(
            id=tag_id,
            name=name,
            parent_id=_as_str(_pick(row, "parent_Tag_id", "parentId")),
        )


class NoteTagRow(BaseModel):
    """A row of NoteTag."""

    note_id: str = Field(...)
    tag_id: str = Field(...)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "NoteTagRow":
        return cls(
            note_id=_require("NoteTag", "note id", _as_str(_pick(row, "note_id", "noteId", "Note_id"))),
            tag_id=_require("NoteTag", "tag id", _as_str(_pick(row, "tag_id", "tagId", "Tag_id"))),
        )


class AttachmentRow(BaseModel):
    """
    A row of Attachment.

    Hash and parent note may legitimately be missing; such rows become
    'incomplete' attachment records rather than rejected rows.
    """

    id: Optional[str] = Field(default=None)
    filename: Optional[str] = Field(default=None)
    mime: Optional[str] = Field(default=None)
    width: Optional[int] = Field(default=None)
    height: Optional[int] = Field(default=None)
    is_active: Optional[int] = Field(default=None)
    data_hash: Optional[str] = Field(default=None)
    data_size: Optional[int] = Field(default=None)
    note_id: Optional[str] = Field(default=None)
    source_url: Optional[str] = Field(default=None)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "AttachmentRow":
        return cls(
            id=_as_str(row.get("id")),
            filename=_as_str(row.get("filename")),
            mime=_as_str(row.get("mime")),
            width=_as_int(_pick(row, "width", "imageWidth")),
            height=_as_int(_pick(row, "height", "imageHeight")),
            is_active=_as_int(row.get("isActive")),
            data_hash=_as_str(row.get("dataHash")),
            data_size=_as_int(row.get("dataSize")),
            note_id=_as_str(row.get("parent_Note_id")),
            source_url=_as_str(_pick(row, "sourceUrl", "sourceURL", "source_url")),
        )
