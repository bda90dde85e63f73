"""
Reference resolution shared by the tree transcoders.

A TreeContext carries the per-run file index, note link map and asset
resolver. Transcoders ask it to turn references found in a note into image
tags, attachment blocks or note links.
"""

import logging
import re
from pathlib import Path
from typing import Dict, List, Optional

from ..assets.resolver import AssetResolver, ResolvedTarget
from ..errors import AssetCopyError, AssetDownloadError
from ..models import AssetRecord, AttachmentOutcome, AttachmentRecord
from .common import (
    attachment_block_html,
    escape_attr,
    escape_html,
    guess_mime,
    normalize_key,
    normalize_rel_path,
)

_NOTE_EXT = re.compile(r"\.(md|markdown|txt|html?)$", re.IGNORECASE)


class TreeContext:
    """
    Per-run lookup state for a filesystem tree source.

    Attributes:
        file_index: normalize_key(rel_path) -> absolute path, for every file
        link_map: normalize_key(rel_path without extension) -> external id,
            plus unambiguous base names
        resolver: The run's asset resolver
    """

    def __init__(self, file_index: Dict[str, Path], link_map: Dict[str, str], resolver: AssetResolver):
        self.file_index = file_index
        self.link_map = link_map
        self.resolver = resolver

    def resolve(self, note_dir: str, target: str) -> ResolvedTarget:
        return self.resolver.resolve_target(note_dir, target, self.file_index)

    def image_tag(self, record: AssetRecord) -> str:
        return f'<img data-en-hash="{record.hash}" src="files/{escape_attr(record.relative_path)}">'

    def store_local(self, path: Path) -> Optional[AssetRecord]:
        """Copy a local file into the assets; None (and a recorded error) on failure."""
        try:
            return self.resolver.store_file(path)
        except AssetCopyError as e:
            self.resolver.record_copy_error(e)
            return None

    def download(self, url: str) -> Optional[AssetRecord]:
        """Download a remote file into the assets; None (and a recorded error) on failure."""
        try:
            return self.resolver.download(url)
        except AssetDownloadError as e:
            logging.warning(str(e))
            self.resolver.errors.append(str(e))
            return None

    def attach(self, path: Path, name: str, note_id: str, attachments: List[AttachmentRecord]) -> Optional[str]:
        """
        Store a non-image file and return its attachment block.

        The placed file is appended to attachments with outcome 'linked'.
        """
        record = self.store_local(path)
        if record is None:
            return None
        try:
            size = path.stat().st_size
        except OSError:
            size = 0
        mime = guess_mime(name or path.name)
        attachments.append(AttachmentRecord(
            source_id=record.hash,
            note_source_id=note_id,
            data_hash=record.hash,
            filename=name,
            mime=mime or None,
            size=size,
            outcome=AttachmentOutcome.LINKED,
            local_file=record,
        ))
        return attachment_block_html(name, record.relative_path, size, mime)

    def lookup_note(self, note_dir: str, target: str) -> Optional[str]:
        """
        Find the external id of the note a link points to.

        Tries the path relative to the tree root, then relative to the linking
        note, then the bare base name. Ambiguous base names are absent from
        the link map, so they never resolve.
        """
        cleaned = _NOTE_EXT.sub("", target.strip().split("#", 1)[0])
        if not cleaned:
            return None
        candidates = [normalize_key(normalize_rel_path(cleaned))]
        if note_dir:
            candidates.append(normalize_key(normalize_rel_path(f"{note_dir}/{cleaned}")))
        candidates.append(normalize_key(cleaned.replace("\\", "/").split("/")[-1]))
        for key in candidates:
            external_id = self.link_map.get(key)
            if external_id:
                return external_id
        return None

    @staticmethod
    def note_link(external_id: str, label: str) -> str:
        return f'<a href="note://{escape_attr(external_id)}" data-note-link="1">{escape_html(label)}</a>'
