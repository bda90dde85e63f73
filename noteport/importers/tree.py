"""
Folder tree importer for noteport.

Imports a folder of HTML, Markdown or plain-text note files. Folders become
stacks and notebooks, every other file is an asset that notes may embed or
link to.
"""

import logging
import time
from collections import Counter
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional

from ..assets import AssetResolver
from ..config import config
from ..errors import AssetCopyError, SourceInvalidError
from ..fileops import FileEntry, get_dir_size, list_files_recursive, path_is_dir, read_file_bytes
from ..models import (
    AttachmentRecord,
    ByteSizes,
    ImportLedger,
    ImportPackage,
    NormalizedNote,
    PackageNotebook,
    PackageStack,
    SourceCounts,
    SourceSummary,
)
from ..transcode import normalize_key, normalize_timestamp
from ..transcode.common import build_external_id, is_image_path, resolve_stack_notebook
from ..transcode.linking import TreeContext
from ..transcode.transcoder import ContentTranscoder
from .base import BaseImporter

NOTE_EXTENSIONS = {
    "html": (".html", ".htm"),
    "markdown": (".md", ".markdown"),
    "text": (".txt",),
}


class TreeNote(NamedTuple):
    """A note file of the tree with its derived placement."""

    path: Path
    rel_path: str
    external_id: str
    title: str
    stack: str
    notebook: str

    @property
    def note_dir(self) -> str:
        return self.rel_path.rsplit("/", 1)[0] if "/" in self.rel_path else ""

    @property
    def notebook_id(self) -> str:
        return notebook_external_id(self.stack, self.notebook)


def notebook_external_id(stack: str, notebook: str) -> str:
    return f"notebook:{normalize_key(stack)}/{normalize_key(notebook)}"


def strip_note_ext(rel_path: str, extensions) -> str:
    lower = rel_path.lower()
    for ext in extensions:
        if lower.endswith(ext):
            return rel_path[:-len(ext)]
    return rel_path


class TreeImporter(BaseImporter):
    """
    Importer for a folder tree of note files of one kind.
    """

    def __init__(self, source_root: str, kind: str = "markdown", default_stack: Optional[str] = None,
                 default_notebook: Optional[str] = None):
        """
        Initialize the tree importer.

        Args:
            source_root: The folder holding the note files
            kind: One of 'html', 'markdown', 'text'
            default_stack: Stack for notes at the top of the tree
            default_notebook: Notebook for notes less than two folders deep
        """
        if kind not in NOTE_EXTENSIONS:
            raise ValueError(f"Unsupported tree kind: {kind}")
        super().__init__(source_root)
        self.kind = kind
        self.extensions = NOTE_EXTENSIONS[kind]
        self.default_stack = default_stack or config.default_stacks.get(kind, kind.title())
        self.default_notebook = default_notebook or config.default_notebook
        self._reset()

        logging.info(f"Initialized {kind} tree importer for: {self.source_root}")

    def _reset(self):
        self.note_entries: List[TreeNote] = []
        self.asset_entries: List[FileEntry] = []
        self.file_index: Dict[str, Path] = {}
        self.link_map: Dict[str, str] = {}
        self.ambiguous_aliases: List[str] = []
        self.attachments: List[AttachmentRecord] = []
        self._context: Optional[TreeContext] = None

    def _is_note(self, rel_path: str) -> bool:
        return rel_path.lower().endswith(self.extensions)

    def _tree_note(self, entry: FileEntry) -> TreeNote:
        placement = resolve_stack_notebook(entry.rel_path, self.default_stack, self.default_notebook)
        rel_no_ext = strip_note_ext(entry.rel_path, self.extensions)
        return TreeNote(
            path=entry.path,
            rel_path=entry.rel_path,
            external_id=build_external_id(self.kind, rel_no_ext),
            title=strip_note_ext(entry.path.name, self.extensions),
            stack=placement["stack"],
            notebook=placement["notebook"],
        )

    def scan(self) -> SourceSummary:
        root = self.source_root
        if not path_is_dir(root):
            return SourceSummary(
                source_kind=self.kind,
                source_root=root,
                valid=False,
                errors=["Source folder not found or not a directory."],
            )

        entries = list_files_recursive(root)
        notes = [self._tree_note(entry) for entry in entries if self._is_note(entry.rel_path)]
        assets = [entry for entry in entries if not self._is_note(entry.rel_path)]

        notebooks = {(note.stack, note.notebook) for note in notes}
        asset_bytes = 0
        for entry in assets:
            try:
                asset_bytes += entry.path.stat().st_size
            except OSError:
                continue

        errors = [] if notes else [f"No {self.kind} note files found."]
        summary = SourceSummary(
            source_kind=self.kind,
            source_root=root,
            required_paths={"root": root},
            counts=SourceCounts(
                notes=len(notes),
                notebooks=len(notebooks),
                stacks=len({stack for stack, _ in notebooks}),
                attachments=len(assets),
                images=sum(1 for entry in assets if is_image_path(entry.rel_path)),
            ),
            byte_sizes=ByteSizes(attachments=asset_bytes, resources=get_dir_size(root)),
            valid=not errors,
            errors=errors,
        )
        logging.info(f"Scanned {root}: {len(notes)} {self.kind} notes, {len(assets)} other files")
        return summary

    def extract(self, summary: SourceSummary, ledger: ImportLedger) -> None:
        """
        Enumerate note files and build the file index and link map.

        A base name shared by several notes is ambiguous: it is reported once
        and never used to resolve links.
        """
        if not summary.valid:
            raise SourceInvalidError(f"Cannot extract from an invalid source: {summary.source_root}")
        self.summary = summary
        self._reset()

        for entry in list_files_recursive(self.source_root):
            self.file_index[normalize_key(entry.rel_path)] = entry.path
            if self._is_note(entry.rel_path):
                self.note_entries.append(self._tree_note(entry))
            else:
                self.asset_entries.append(entry)

        base_names = Counter(normalize_key(note.title) for note in self.note_entries)
        for note in self.note_entries:
            self.link_map[normalize_key(strip_note_ext(note.rel_path, self.extensions))] = note.external_id
        for note in self.note_entries:
            base = normalize_key(note.title)
            if base_names[base] == 1:
                self.link_map.setdefault(base, note.external_id)

        self.ambiguous_aliases = sorted(name for name, count in base_names.items() if count > 1)
        if self.ambiguous_aliases:
            message = f"Ambiguous note aliases: {', '.join(self.ambiguous_aliases)}"
            logging.warning(message)
            ledger.add_error(message)

        logging.info(f"Extracted {len(self.note_entries)} notes and {len(self.asset_entries)} files")

    def context(self, resolver: AssetResolver) -> TreeContext:
        if self._context is None or self._context.resolver is not resolver:
            self._context = TreeContext(self.file_index, self.link_map, resolver)
        return self._context

    def resource_items(self) -> List[FileEntry]:
        return list(self.asset_entries)

    def process_resource(self, item: FileEntry, resolver: AssetResolver, ledger: ImportLedger) -> None:
        """Copy one non-note file into the assets."""
        try:
            resolver.store_file(item.path)
        except AssetCopyError as e:
            resolver.record_copy_error(e)

    def note_items(self) -> List[TreeNote]:
        return list(self.note_entries)

    async def transcode_note(self, item: TreeNote, resolver: AssetResolver,
                             ledger: ImportLedger) -> Optional[NormalizedNote]:
        try:
            raw = read_file_bytes(item.path).decode("utf-8", errors="replace")
        except OSError as e:
            logging.warning(f"Cannot read note file {item.path}: {e}")
            ledger.add_decode_error(item.external_id, str(item.path), e)
            raw = ""

        transcoder = ContentTranscoder(self.context(resolver))
        parser = "html" if self.kind == "html" else "markdown"
        result = transcoder.transcode_tree(parser, raw, item.note_dir, item.external_id)
        for error in result.errors:
            ledger.add_error(error)
        self.attachments.extend(result.attachments)

        now = int(time.time())
        try:
            modified = normalize_timestamp(item.path.stat().st_mtime, now)
        except OSError:
            modified = now
        return transcoder.finalize(
            source_id=item.external_id,
            title=item.title or "Untitled",
            canonical_html=result.html,
            notebook_ref=item.notebook_id,
            created_at=modified,
            updated_at=modified,
            meta={"source_path": item.rel_path, "image_count": result.image_count},
        )

    def build_package(self, notes: List[NormalizedNote], ledger: ImportLedger) -> ImportPackage:
        stacks: List[str] = []
        notebooks: Dict[str, PackageNotebook] = {}
        for note in self.note_entries:
            if note.stack not in stacks:
                stacks.append(note.stack)
            if note.notebook_id not in notebooks:
                notebooks[note.notebook_id] = PackageNotebook(
                    id=note.notebook_id,
                    name=note.notebook,
                    stack_id=note.stack,
                )

        return ImportPackage(
            meta={
                "source_kind": self.kind,
                "source_root": self.source_root,
                "note_count": len(notes),
                "notebook_count": len(notebooks),
                "stack_count": len(stacks),
                "attachment_count": len(self.attachments),
                "ambiguous_aliases": list(self.ambiguous_aliases),
            },
            stacks=[PackageStack(id=stack, name=stack) for stack in stacks],
            notebooks=list(notebooks.values()),
            notes=notes,
            attachments=list(self.attachments),
            missing_documents=list(ledger.missing_documents),
            decode_errors=list(ledger.decode_errors),
        )
