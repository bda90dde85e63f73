"""
Decoder for per-note CRDT update logs.

Each note document is a Yjs update log. Replaying it into an empty document
yields the note body (an XML fragment named 'content'), the title text and
two key/value maps.
"""

from typing import Any, Dict
from pydantic import BaseModel, Field
from pycrdt import Doc, Map, Text, XmlFragment

from ..errors import DocumentDecodeError


class CrdtRegions(BaseModel):
    """The named regions read from a replayed document."""

    content: str = Field(
        default="",
        description="Serialized XML of the 'content' fragment (ENML)"
    )

    title: str = Field(default="")

    styles: Dict[str, Any] = Field(
        default_factory=dict,
        description="The 'customNoteStyles' map"
    )

    meta: Dict[str, Any] = Field(default_factory=dict)


class CrdtDocumentDecoder:
    """
    Replays a Yjs update log with pycrdt.

    Instances are stateless; decode() may be called from a worker thread.
    """

    content_key = "content"
    title_key = "title"
    styles_key = "customNoteStyles"
    meta_key = "meta"

    def decode(self, data: bytes) -> CrdtRegions:
        """
        Replay an update log and read its regions.

        Args:
            data: The raw bytes of the update log

        Returns:
            CrdtRegions with the serialized content, title and maps

        Raises:
            DocumentDecodeError: If the bytes are not a valid update
        """
        if not data:
            raise DocumentDecodeError("Empty document")

        doc = Doc()
        try:
            doc.apply_update(bytes(data))
            content = doc.get(self.content_key, type=XmlFragment)
            title = doc.get(self.title_key, type=Text)
            styles = doc.get(self.styles_key, type=Map)
            meta = doc.get(self.meta_key, type=Map)
            return CrdtRegions(
                content=str(content),
                title=str(title),
                styles=styles.to_py() or {},
                meta=meta.to_py() or {},
            )
        except DocumentDecodeError:
            raise
        except Exception as e:
            raise DocumentDecodeError(f"Cannot decode document: {e}") from e
