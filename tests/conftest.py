"""
Shared fixtures: a small Evernote data folder, a fake document decoder and
a fake destination store.
"""

import json
import sqlite3
import time
from pathlib import Path

import pytest

from noteport.database import BaseNoteStore
from noteport.decoders import CrdtRegions
from noteport.errors import DocumentDecodeError, PersistError
from noteport.models import ImportStats


class FakeDecoder:
    """Reads documents written as JSON instead of CRDT update logs."""

    def __init__(self, delay: float = 0.0):
        self.delay = delay

    def decode(self, data: bytes) -> CrdtRegions:
        if self.delay:
            time.sleep(self.delay)
        payload = json.loads(data.decode("utf-8"))
        if payload.get("broken"):
            raise DocumentDecodeError("Cannot decode document: broken")
        return CrdtRegions(**payload)


class FakeStore(BaseNoteStore):
    """Records the calls the orchestrator makes."""

    def __init__(self, data_dir: Path, has_notes: bool = False, fail_import: bool = False,
                 fail_backfill: bool = False, info_error: bool = False):
        self._data_dir = Path(data_dir)
        self.has_notes = has_notes
        self.fail_import = fail_import
        self.fail_backfill = fail_backfill
        self.info_error = info_error
        self.calls = []
        self.package = None

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def storage_info(self):
        if self.info_error:
            raise OSError("storage unreadable")
        return {
            "has_data": self.has_notes,
            "notes_count": 3 if self.has_notes else 0,
            "notebooks_count": 1 if self.has_notes else 0,
            "valid": True,
        }

    def create_backup(self, kind: str) -> Path:
        self.calls.append("backup")
        backup_dir = self._data_dir / "backups" / f"{kind}-test"
        backup_dir.mkdir(parents=True, exist_ok=True)
        return backup_dir

    def import_from_json(self, package_path, assets_dir) -> ImportStats:
        self.calls.append("import")
        if self.fail_import:
            raise PersistError("disk full")
        self.package = json.loads(Path(package_path).read_text(encoding="utf-8"))
        self.assets_dir = Path(assets_dir)
        return ImportStats(
            notes=len(self.package["notes"]),
            notebooks=len(self.package["notebooks"]),
            tags=len(self.package["tags"]),
            attachments=len(self.package["attachments"]),
        )

    def backfill(self) -> int:
        self.calls.append("backfill")
        if self.fail_backfill:
            raise RuntimeError("boom")
        return 0

    def restore_backup(self, backup_dir) -> None:
        self.calls.append("restore")


def write_document(document_root: Path, note_id: str, payload) -> Path:
    path = document_root / note_id[:3] / note_id[-3:] / f"{note_id}.dat"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def write_resource(resources_root: Path, note_id: str, data_hash: str, data: bytes) -> Path:
    path = resources_root / "user1" / note_id / data_hash
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


def build_evernote_source(root: Path) -> Path:
    """
    Two active notes and one soft-deleted note.

    Attachments: att1 copied, att2 missing, att3 belongs to the deleted
    note, att4 has no hash, att5 is inactive.
    """
    root.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(root / "RemoteGraph.sql")
    conn.executescript("""
        CREATE TABLE Nodes_Notebook (id TEXT, label TEXT, personal_Stack_id TEXT);
        CREATE TABLE Nodes_Note (id TEXT, title TEXT, parent_Notebook_id TEXT, deleted REAL,
                                 created REAL, updated REAL);
        CREATE TABLE Nodes_Tag (id TEXT, name TEXT, parent_Tag_id TEXT);
        CREATE TABLE NoteTag (Note_id TEXT, Tag_id TEXT);
        CREATE TABLE Attachment (id TEXT, filename TEXT, mime TEXT, width INTEGER, height INTEGER,
                                 isActive INTEGER, dataHash TEXT, dataSize INTEGER, parent_Note_id TEXT);
    """)
    conn.executemany("INSERT INTO Nodes_Notebook VALUES (?, ?, ?)", [
        ("nb1", "Inbox", "Stack:Work"),
        ("nb2", "Loose", None),
    ])
    conn.executemany("INSERT INTO Nodes_Note VALUES (?, ?, ?, ?, ?, ?)", [
        ("note-000001", "Row title one", "nb1", None, 1700000000000, None),
        ("note-000002", "Row title two", "nb2", 0, 1700000000, 1700000500),
        ("note-000003", "Deleted", "nb1", 1700000000, 1600000000, None),
    ])
    conn.executemany("INSERT INTO Nodes_Tag VALUES (?, ?, ?)", [
        ("tag2", "child", "tag1"),
        ("tag1", "root", None),
    ])
    conn.executemany("INSERT INTO NoteTag VALUES (?, ?)", [
        ("note-000001", "tag1"),
        ("note-000001", "tag2"),
        ("note-000003", "tag1"),
    ])
    conn.executemany("INSERT INTO Attachment VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)", [
        ("att1", "photo.PNG", "image/png", 10, 20, 1, "aa11", 5, "note-000001"),
        ("att2", "lost.jpg", "image/jpeg", None, None, 1, "bb22", 7, "note-000001"),
        ("att3", "old.png", "image/png", None, None, 1, "cc33", 3, "note-000003"),
        ("att4", "nohash.txt", "text/plain", None, None, 1, None, 2, "note-000002"),
        ("att5", "report.pdf", "application/pdf", None, None, 0, "dd44", 4, "note-000002"),
    ])
    conn.commit()
    conn.close()

    documents = root / "internal_rteDoc"
    documents.mkdir()
    write_document(documents, "note-000001", {
        "title": "Decoded title",
        "content": '<en-note><div>Hello</div><en-media hash="aa11" type="image/png" /></en-note>',
        "styles": {"font": "serif"},
        "meta": {"source": "desktop"},
    })

    resources = root / "resource-cache"
    write_resource(resources, "note-000001", "aa11", b"image")
    write_resource(resources, "note-000002", "dd44", b"pdf!")
    write_resource(resources, "note-000003", "cc33", b"old")
    return root


def build_markdown_tree(root: Path) -> Path:
    """Notes at three depths, one attachment folder and a hidden folder."""
    files = {
        "root.md": "# Root\n\nSee [[plan|the plan]].\n",
        "Work/plan.md": "Plan with ![[attachments/pic.png]]\n",
        "Work/Projects/Alpha/spec.md": "- [ ] write\n- [x] review\n",
        "Work/attachments/pic.png": "png-bytes",
        ".hidden/secret.md": "ignored",
    }
    for rel_path, text in files.items():
        path = root / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    return root


@pytest.fixture
def evernote_source(tmp_path):
    return build_evernote_source(tmp_path / "evernote")


@pytest.fixture
def markdown_tree(tmp_path):
    return build_markdown_tree(tmp_path / "tree")


@pytest.fixture
def fake_decoder():
    return FakeDecoder()


@pytest.fixture
def fake_store(tmp_path):
    return FakeStore(tmp_path / "data")


@pytest.fixture
def isolated_tempdir(tmp_path, monkeypatch):
    """Point tempfile.gettempdir() at a per-test folder for fallback backups."""
    temp_root = tmp_path / "tmp"
    temp_root.mkdir()
    monkeypatch.setattr("tempfile.tempdir", str(temp_root))
    return temp_root
