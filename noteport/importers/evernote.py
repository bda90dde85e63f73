"""
Evernote importer for noteport.

Reads an Evernote data folder: the RemoteGraph.sql SQLite store holding
notebooks, notes, tags and attachments, one CRDT document per note under
internal_rteDoc, and the resource-cache holding attachment bytes.
"""

import asyncio
import logging
import sqlite3
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Type

from ..assets import AssetResolver, ext_from_mime
from ..assets.resolver import ext_from_filename
from ..config import config
from ..decoders import CrdtDocumentDecoder, CrdtRegions, RelationalStore
from ..errors import AssetCopyError, DocumentDecodeError, RowSchemaError, SourceInvalidError
from ..fileops import (
    count_missing_documents,
    document_path,
    find_source_paths,
    get_dir_size,
    path_exists,
    path_is_dir,
    read_file_bytes,
    resolve_resource_roots,
)
from ..models import (
    AttachmentOutcome,
    AttachmentRecord,
    AttachmentRow,
    ByteSizes,
    DecodedNote,
    ImportLedger,
    ImportPackage,
    NormalizedNote,
    NotebookRow,
    NoteRow,
    NoteTagRow,
    PackageNotebook,
    PackageNoteTag,
    PackageStack,
    PackageTag,
    SkippedAttachment,
    SourceCounts,
    SourceSummary,
    TagRow,
)
from ..transcode import normalize_timestamp
from ..transcode.transcoder import ContentTranscoder
from .base import BaseImporter

REQUIRED_TABLES = ("Nodes_Note", "Nodes_Notebook")
ACTIVE_NOTES = "SELECT id FROM Nodes_Note WHERE deleted IS NULL OR deleted = 0"


def normalize_stack_id(value: Optional[str], prefix: Optional[str] = None) -> Optional[str]:
    """Strip the 'Stack:' prefix from a notebook's stack id; None for blank values."""
    if value is None:
        return None
    raw = str(value).strip()
    if not raw:
        return None
    prefix = prefix if prefix is not None else config.evernote_layout["stack_prefix"]
    if prefix and raw.startswith(prefix):
        return raw[len(prefix):]
    return raw


class EvernoteImporter(BaseImporter):
    """
    Importer for Evernote's local data folder.
    """

    kind = "evernote"

    def __init__(self, source_root: str, decoder: Optional[CrdtDocumentDecoder] = None,
                 decode_timeout: Optional[float] = None):
        """
        Initialize the Evernote importer.

        Args:
            source_root: The Evernote data folder (or a folder above it)
            decoder: Document decoder, a CrdtDocumentDecoder by default
            decode_timeout: Seconds allowed per document decode
        """
        super().__init__(source_root)
        self.layout = config.evernote_layout
        self.decoder = decoder or CrdtDocumentDecoder()
        self.decode_timeout = decode_timeout or config.decode_timeout
        self.transcoder = ContentTranscoder()
        self._reset()

        logging.info(f"Initialized Evernote importer for: {self.source_root}")

    def _reset(self):
        self.notebooks: List[NotebookRow] = []
        self.notes: List[NoteRow] = []
        self.tags: List[TagRow] = []
        self.note_tags: List[NoteTagRow] = []
        self.attachment_rows: List[AttachmentRow] = []
        self.active_note_ids = set()
        self.stack_ids: List[str] = []
        self.attachments: List[AttachmentRecord] = []

    def _required_path(self, key: str) -> Optional[Path]:
        if self.summary is None:
            return None
        value = self.summary.required_paths.get(key)
        return Path(value) if value else None

    # Scanning

    def scan(self) -> SourceSummary:
        """
        Validate the data folder and count what it holds.

        Returns:
            SourceSummary; valid is False when anything required is missing
            or the primary store cannot be read
        """
        root = self.source_root
        if not path_is_dir(root):
            return SourceSummary(
                source_kind=self.kind,
                source_root=root,
                valid=False,
                errors=["Selected path is not a folder."],
            )

        layout = self.layout
        found = find_source_paths(
            root,
            db_filename=layout["db_filename"],
            documents_dirname=layout["documents_dirname"],
            resources_dirname=layout["resources_dirname"],
            max_depth=int(layout["search_max_depth"]),
            max_entries=int(layout["search_max_entries"]),
        )
        db_path = found["db_path"] or Path(root) / layout["db_filename"]
        document_root = found["document_root"] or Path(root) / layout["documents_dirname"]
        resources_root = found["resources_root"] or Path(root) / layout["resources_dirname"]

        errors: List[str] = []
        has_db = path_exists(db_path)
        has_documents = path_is_dir(document_root)
        if not has_db:
            errors.append(f"{layout['db_filename']} not found.")
        if not has_documents:
            errors.append(f"{layout['documents_dirname']} not found.")

        resource_roots = resolve_resource_roots(resources_root)
        counts = SourceCounts()
        attachment_bytes = 0
        missing_count = 0

        if has_db:
            try:
                counts, attachment_bytes, active_ids = self._count_store(db_path, errors)
                if has_documents:
                    missing_count = count_missing_documents(document_root, active_ids)
            except sqlite3.Error as e:
                logging.warning(f"Cannot read {db_path}: {e}")
                errors.append(f"Primary store unreadable: {e}")

        summary = SourceSummary(
            source_kind=self.kind,
            source_root=root,
            required_paths={
                "db_path": str(db_path),
                "document_root": str(document_root),
                "resources_root": str(resources_root),
                "resource_roots": [str(path) for path in resource_roots],
            },
            counts=counts,
            byte_sizes=ByteSizes(
                attachments=attachment_bytes,
                resources=get_dir_size(resources_root),
            ),
            missing_count=missing_count,
            valid=not errors,
            errors=errors,
        )
        logging.info(
            f"Scanned {root}: {counts.notes} notes, {counts.notebooks} notebooks, "
            f"{counts.attachments} attachments, {missing_count} missing documents"
        )
        return summary

    def _count_store(self, db_path: Path, errors: List[str]):
        with RelationalStore(db_path) as store:
            tables = set(store.list_tables())
            missing_tables = [name for name in REQUIRED_TABLES if name not in tables]
            for name in missing_tables:
                errors.append(f"Primary store is missing table {name}.")
            if missing_tables:
                return SourceCounts(), 0, []

            active_ids = [str(row["id"]) for row in store.select_all(ACTIVE_NOTES)]
            stacks = set()
            for row in store.select_all("SELECT * FROM Nodes_Notebook"):
                try:
                    stack = normalize_stack_id(NotebookRow.from_row(row).stack_id, self.layout["stack_prefix"])
                except RowSchemaError:
                    continue
                if stack:
                    stacks.add(stack)

            attachments = images = attachment_bytes = 0
            if "Attachment" in tables:
                active_parent = f"parent_Note_id IN ({ACTIVE_NOTES})"
                attachments = store.scalar(f"SELECT COUNT(*) FROM Attachment WHERE {active_parent}") or 0
                attachment_bytes = store.scalar(f"SELECT SUM(dataSize) FROM Attachment WHERE {active_parent}") or 0
                images = store.scalar(
                    f"SELECT COUNT(*) FROM Attachment WHERE mime LIKE 'image/%' AND {active_parent}"
                ) or 0

            counts = SourceCounts(
                notes=len(active_ids),
                notebooks=store.scalar("SELECT COUNT(*) FROM Nodes_Notebook") or 0,
                stacks=len(stacks),
                tags=store.scalar("SELECT COUNT(*) FROM Nodes_Tag") or 0 if "Nodes_Tag" in tables else 0,
                note_tags=store.scalar("SELECT COUNT(*) FROM NoteTag") or 0 if "NoteTag" in tables else 0,
                attachments=attachments,
                images=images,
            )
        return counts, int(attachment_bytes), active_ids

    # Extraction

    def _rows(self, store: RelationalStore, table: str, schema: Type[Any], ledger: ImportLedger) -> List[Any]:
        rows = []
        for raw in store.select_all(f"SELECT * FROM {table}"):
            try:
                rows.append(schema.from_row(raw))
            except RowSchemaError as e:
                logging.warning(f"Rejected row: {e}")
                ledger.add_error(f"Rejected row: {e}")
        return rows

    def extract(self, summary: SourceSummary, ledger: ImportLedger) -> None:
        """
        Pull every row of the source tables.

        Soft-deleted notes leave the working set along with their note-tags;
        all attachment rows are kept so the resources stage can report the
        orphaned ones as skipped.

        Raises:
            SourceInvalidError: If the summary is not importable
        """
        if not summary.valid:
            raise SourceInvalidError(f"Cannot extract from an invalid source: {summary.source_root}")
        self.summary = summary
        self._reset()
        db_path = self._required_path("db_path")

        with RelationalStore(db_path) as store:
            tables = set(store.list_tables())
            self.notebooks = self._rows(store, "Nodes_Notebook", NotebookRow, ledger)
            notes = self._rows(store, "Nodes_Note", NoteRow, ledger)
            if "Nodes_Tag" in tables:
                self.tags = self._rows(store, "Nodes_Tag", TagRow, ledger)
            note_tags = self._rows(store, "NoteTag", NoteTagRow, ledger) if "NoteTag" in tables else []
            if "Attachment" in tables:
                self.attachment_rows = self._rows(store, "Attachment", AttachmentRow, ledger)

        self.notes = [note for note in notes if not note.is_deleted]
        self.active_note_ids = {note.id for note in self.notes}
        self.note_tags = [link for link in note_tags if link.note_id in self.active_note_ids]

        prefix = self.layout["stack_prefix"]
        for notebook in self.notebooks:
            stack = normalize_stack_id(notebook.stack_id, prefix)
            if stack and stack not in self.stack_ids:
                self.stack_ids.append(stack)

        logging.info(
            f"Extracted {len(self.notes)} active notes ({len(notes) - len(self.notes)} deleted), "
            f"{len(self.notebooks)} notebooks, {len(self.tags)} tags, "
            f"{len(self.attachment_rows)} attachments"
        )

    # Resources

    def resource_items(self) -> List[AttachmentRow]:
        return list(self.attachment_rows)

    def _record(self, row: AttachmentRow, outcome: AttachmentOutcome, local_file=None) -> AttachmentRecord:
        return AttachmentRecord(
            source_id=row.id,
            note_source_id=row.note_id,
            data_hash=row.data_hash,
            filename=row.filename,
            mime=row.mime,
            size=row.data_size,
            width=row.width,
            height=row.height,
            source_url=row.source_url,
            outcome=outcome,
            local_file=local_file,
        )

    def process_resource(self, item: AttachmentRow, resolver: AssetResolver, ledger: ImportLedger) -> None:
        """
        Classify one attachment and copy its bytes when it can be placed.

        Checked in order: parent note excluded (skipped), no hash or parent
        (incomplete), bytes not found (missing), inactive, then copy.
        """
        note_id = item.note_id
        if note_id and note_id not in self.active_note_ids:
            ledger.add_skipped(SkippedAttachment(
                source_id=item.id,
                note_source_id=note_id,
                data_hash=item.data_hash,
            ))
            return

        if not item.data_hash or not note_id:
            self.attachments.append(self._record(item, AttachmentOutcome.INCOMPLETE))
            return

        extension = ext_from_filename(item.filename) or ext_from_mime(item.mime)
        record = resolver.place(item.data_hash, extension)
        roots = self.summary.required_paths.get("resource_roots") or []
        source = resolver.resolve(roots, note_id, item.data_hash)
        if source is None or not source.exists():
            resolver.record_missing(note_id, item.data_hash, source)
            self.attachments.append(self._record(item, AttachmentOutcome.MISSING))
            return

        if item.is_active == 0:
            self.attachments.append(self._record(item, AttachmentOutcome.INACTIVE))
            return

        try:
            resolver.copy(source, record)
        except AssetCopyError as e:
            resolver.record_copy_error(e)
            self.attachments.append(self._record(item, AttachmentOutcome.COPY_FAILED))
            return

        resolver.register(record)
        self.attachments.append(self._record(item, AttachmentOutcome.COPIED, local_file=record))

    # Decoding

    def note_items(self) -> List[NoteRow]:
        return list(self.notes)

    def _decode_file(self, path: Path) -> CrdtRegions:
        return self.decoder.decode(read_file_bytes(path))

    def _start_decode(self, note_id: str, path: Path) -> "asyncio.Future[CrdtRegions]":
        """
        Decode a document on its own daemon thread.

        A decode that outlives its timeout is abandoned: the thread holds no
        executor worker and does not hold up loop shutdown or process exit.
        """
        loop = asyncio.get_running_loop()
        future = loop.create_future()

        def settle(result, error):
            if future.done():
                return
            if error is not None:
                future.set_exception(error)
            else:
                future.set_result(result)

        def work():
            try:
                result, error = self._decode_file(path), None
            except Exception as e:
                result, error = None, e
            try:
                loop.call_soon_threadsafe(settle, result, error)
            except RuntimeError:
                # Loop already closed
                logging.debug(f"Dropped late decode result of note {note_id}")

        threading.Thread(target=work, name=f"decode-{note_id}", daemon=True).start()
        return future

    async def transcode_note(self, item: NoteRow, resolver: AssetResolver,
                             ledger: ImportLedger) -> Optional[NormalizedNote]:
        """
        Decode one note's document and normalize it.

        A missing, undecodable or timed-out document is recorded and the note
        is still imported with empty content.
        """
        path = document_path(self._required_path("document_root"), item.id)
        regions: Optional[CrdtRegions] = None

        if not path_exists(path):
            logging.warning(f"Document of note {item.id} not found at {path}")
            ledger.add_missing_document(item.id, str(path))
        else:
            try:
                regions = await asyncio.wait_for(
                    self._start_decode(item.id, path),
                    timeout=self.decode_timeout,
                )
            except asyncio.TimeoutError:
                logging.warning(f"Decode timeout for note {item.id}")
                ledger.add_decode_error(item.id, str(path), f"Decode timeout for note {item.id}")
            except (DocumentDecodeError, OSError) as e:
                logging.warning(f"Failed to decode note {item.id}: {e}")
                ledger.add_decode_error(item.id, str(path), e)

        created_at = normalize_timestamp(item.created, int(time.time()))
        updated_at = normalize_timestamp(item.updated, created_at)
        decoded = DecodedNote(
            source_id=item.id,
            title=(regions.title if regions else "") or item.title or "Untitled",
            raw_markup=regions.content if regions else "",
            style=regions.styles if regions else {},
            meta=regions.meta if regions else {},
            created_at=created_at,
            updated_at=updated_at,
        )
        return self.transcoder.transcode_enml(decoded, resolver.asset_map, notebook_ref=item.notebook_id)

    # Packaging

    def build_package(self, notes: List[NormalizedNote], ledger: ImportLedger) -> ImportPackage:
        prefix = self.layout["stack_prefix"]
        meta: Dict[str, Any] = {
            "exported_at": datetime.now().isoformat(),
            "source_kind": self.kind,
            "source_root": self.source_root,
            "note_count": len(notes),
            "notebook_count": len(self.notebooks),
            "stack_count": len(self.stack_ids),
            "attachment_count": len(self.attachments),
            "tag_count": len(self.tags),
            "note_tag_count": len(self.note_tags),
            "missing_document_count": len(ledger.missing_documents),
            "decode_error_count": len(ledger.decode_errors),
        }
        return ImportPackage(
            meta=meta,
            stacks=[PackageStack(id=stack, name=stack) for stack in self.stack_ids],
            notebooks=[
                PackageNotebook(
                    id=notebook.id,
                    name=notebook.name,
                    stack_id=normalize_stack_id(notebook.stack_id, prefix),
                )
                for notebook in self.notebooks
            ],
            tags=[PackageTag(id=tag.id, name=tag.name, parent_id=tag.parent_id) for tag in self.tags],
            notes=notes,
            note_tags=[PackageNoteTag(note_id=link.note_id, tag_id=link.tag_id) for link in self.note_tags],
            attachments=list(self.attachments),
            missing_documents=list(ledger.missing_documents),
            decode_errors=list(ledger.decode_errors),
        )
