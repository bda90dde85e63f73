"""
Per-note content transformation.

ContentTranscoder turns a decoded note into a NormalizedNote, whichever
source it came from, and computes the content hash over the exact HTML that
will be stored.
"""

import logging
from typing import Any, Dict, Mapping, Optional

from ..models import DecodedNote, NormalizedNote
from .common import TranscodeResult, content_digest, escape_html, fallback_html_from_text, is_likely_encoded
from .enml import normalize_enml, rewrite_media
from .html import HtmlTranscoder
from .linking import TreeContext
from .markdown import MarkdownTranscoder


class ContentTranscoder:
    """
    Facade over the ENML, HTML and Markdown transcoders.

    A context is only needed for tree sources.
    """

    def __init__(self, context: Optional[TreeContext] = None):
        self.context = context

    @staticmethod
    def finalize(source_id: str, title: str, canonical_html: str,
                 notebook_ref: Optional[str] = None,
                 created_at: Optional[int] = None,
                 updated_at: Optional[int] = None,
                 meta: Optional[Dict[str, Any]] = None) -> NormalizedNote:
        """Build the normalized note, hashing canonical_html as stored."""
        content_hash, byte_size = content_digest(canonical_html)
        return NormalizedNote(
            source_id=source_id,
            title=title,
            canonical_html=canonical_html,
            content_hash=content_hash,
            content_byte_size=byte_size,
            notebook_ref=notebook_ref,
            created_at=created_at,
            updated_at=updated_at,
            meta=meta or {},
        )

    def transcode_enml(self, decoded: DecodedNote, asset_map: Mapping[str, str],
                       notebook_ref: Optional[str] = None) -> NormalizedNote:
        """
        Rewrite media references, then normalize ENML to canonical HTML.

        Args:
            decoded: The decoded note document
            asset_map: hash -> relative path of every resource placed so far
            notebook_ref: Source id of the note's notebook
        """
        markup = rewrite_media(decoded.raw_markup, asset_map)
        canonical_html = normalize_enml(markup)
        meta = dict(decoded.meta)
        if decoded.style:
            meta["custom_note_styles"] = dict(decoded.style)
        return self.finalize(
            source_id=decoded.source_id,
            title=decoded.title,
            canonical_html=canonical_html,
            notebook_ref=notebook_ref,
            created_at=decoded.created_at,
            updated_at=decoded.updated_at,
            meta=meta,
        )

    def transcode_tree(self, kind: str, raw: str, note_dir: str, note_id: str) -> TranscodeResult:
        """
        Render a tree note file.

        Content that looks like a base64 payload is not parsed; it is kept as
        escaped text and reported.
        """
        if self.context is None:
            raise RuntimeError("Tree transcoding needs a TreeContext")

        if is_likely_encoded(raw):
            logging.warning(f"Note {note_id} looks like encoded data; importing it as plain text")
            return TranscodeResult(
                html=fallback_html_from_text(raw),
                errors=[f"Encoded content imported as text: {escape_html(note_id)}"],
            )

        if kind == "html":
            return HtmlTranscoder(self.context).render(raw, note_dir, note_id)
        return MarkdownTranscoder(self.context).render(raw, note_dir, note_id)
