"""
Tests for the Evernote data folder importer.
"""

import asyncio
import shutil
import sqlite3
import time

import pytest

from noteport.assets import AssetResolver
from noteport.importers import EvernoteImporter, create_importer
from noteport.importers.base import clean_root
from noteport.importers.evernote import normalize_stack_id
from noteport.errors import SourceInvalidError
from noteport.models import AttachmentOutcome, ImportLedger

from conftest import FakeDecoder


@pytest.fixture
def importer(evernote_source, fake_decoder):
    return EvernoteImporter(str(evernote_source), decoder=fake_decoder)


@pytest.fixture
def extracted(importer, tmp_path):
    """An importer after scan, extract and the resources stage."""
    ledger = ImportLedger()
    summary = importer.scan()
    importer.extract(summary, ledger)
    resolver = AssetResolver(tmp_path / "assets")
    for item in importer.resource_items():
        importer.process_resource(item, resolver, ledger)
    return importer, resolver, ledger


def test_clean_root():
    assert clean_root("  /data/Evernote/*  ") == "/data/Evernote"
    assert clean_root("C:\\Notes\\") == "C:\\Notes"
    assert clean_root("/") == "/"


def test_normalize_stack_id():
    assert normalize_stack_id("Stack:Work") == "Work"
    assert normalize_stack_id("Personal") == "Personal"
    assert normalize_stack_id("  ") is None
    assert normalize_stack_id(None) is None
    assert normalize_stack_id("S/Work", prefix="S/") == "Work"


def test_create_importer_by_kind(evernote_source):
    assert isinstance(create_importer("evernote", str(evernote_source)), EvernoteImporter)
    assert create_importer("text", str(evernote_source)).kind == "text"
    with pytest.raises(ValueError):
        create_importer("onenote", str(evernote_source))


def test_scan_counts(importer, evernote_source):
    summary = importer.scan()

    assert summary.valid, summary.errors
    assert summary.source_kind == "evernote"
    assert summary.counts.notes == 2
    assert summary.counts.notebooks == 2
    assert summary.counts.stacks == 1
    assert summary.counts.tags == 2
    assert summary.counts.note_tags == 3
    assert summary.counts.attachments == 4
    assert summary.counts.images == 2
    assert summary.byte_sizes.attachments == 18
    assert summary.byte_sizes.resources == 12
    assert summary.missing_count == 1
    assert summary.required_paths["resource_roots"] == [str(evernote_source / "resource-cache" / "user1")]


def test_scan_finds_nested_folder(tmp_path, fake_decoder):
    from conftest import build_evernote_source

    build_evernote_source(tmp_path / "Library" / "Evernote")
    summary = EvernoteImporter(str(tmp_path / "Library"), decoder=fake_decoder).scan()

    assert summary.valid, summary.errors
    assert summary.required_paths["db_path"].endswith("RemoteGraph.sql")


def test_scan_rejects_file_and_empty_folder(tmp_path):
    path = tmp_path / "file.txt"
    path.write_text("x")
    assert EvernoteImporter(str(path)).scan().errors == ["Selected path is not a folder."]

    empty = tmp_path / "empty"
    empty.mkdir()
    summary = EvernoteImporter(str(empty)).scan()
    assert not summary.valid
    assert summary.errors == ["RemoteGraph.sql not found.", "internal_rteDoc not found."]


def test_scan_resource_cache_that_is_a_file(evernote_source, fake_decoder):
    shutil.rmtree(evernote_source / "resource-cache")
    (evernote_source / "resource-cache").write_bytes(b"not a folder")

    summary = EvernoteImporter(str(evernote_source), decoder=fake_decoder).scan()

    assert summary.valid, summary.errors
    assert summary.required_paths["resource_roots"] == []
    assert summary.byte_sizes.resources == 0


def test_scan_corrupt_store(tmp_path):
    root = tmp_path / "broken"
    (root / "internal_rteDoc").mkdir(parents=True)
    (root / "RemoteGraph.sql").write_bytes(b"this is not a database" * 100)

    summary = EvernoteImporter(str(root)).scan()

    assert not summary.valid
    assert summary.errors[0].startswith("Primary store unreadable:")


def test_scan_missing_table(tmp_path):
    root = tmp_path / "partial"
    (root / "internal_rteDoc").mkdir(parents=True)
    conn = sqlite3.connect(root / "RemoteGraph.sql")
    conn.execute("CREATE TABLE Nodes_Note (id TEXT, deleted REAL)")
    conn.commit()
    conn.close()

    summary = EvernoteImporter(str(root)).scan()

    assert summary.errors == ["Primary store is missing table Nodes_Notebook."]
    assert summary.counts.notes == 0


def test_scan_counts_short_ids_as_missing(tmp_path):
    root = tmp_path / "short"
    (root / "internal_rteDoc").mkdir(parents=True)
    conn = sqlite3.connect(root / "RemoteGraph.sql")
    conn.executescript("""
        CREATE TABLE Nodes_Notebook (id TEXT, label TEXT);
        CREATE TABLE Nodes_Note (id TEXT, deleted REAL);
        INSERT INTO Nodes_Note VALUES ('abc', NULL);
    """)
    conn.commit()
    conn.close()

    summary = EvernoteImporter(str(root)).scan()

    assert summary.valid
    assert summary.missing_count == 1


def test_extract_excludes_deleted_notes(importer):
    ledger = ImportLedger()
    importer.extract(importer.scan(), ledger)

    assert [note.id for note in importer.note_items()] == ["note-000001", "note-000002"]
    assert [(link.note_id, link.tag_id) for link in importer.note_tags] == [
        ("note-000001", "tag1"),
        ("note-000001", "tag2"),
    ]
    assert importer.stack_ids == ["Work"]
    assert len(importer.resource_items()) == 5
    assert ledger.errors == []


def test_extract_reports_rejected_rows(evernote_source, fake_decoder):
    conn = sqlite3.connect(evernote_source / "RemoteGraph.sql")
    conn.execute("INSERT INTO NoteTag VALUES ('note-000002', NULL)")
    conn.commit()
    conn.close()
    importer = EvernoteImporter(str(evernote_source), decoder=fake_decoder)
    ledger = ImportLedger()

    importer.extract(importer.scan(), ledger)

    assert ledger.errors == ["Rejected row: NoteTag row without tag id"]
    assert len(importer.note_tags) == 2


def test_every_rejected_row_is_reported(evernote_source, fake_decoder):
    conn = sqlite3.connect(evernote_source / "RemoteGraph.sql")
    conn.executemany("INSERT INTO NoteTag VALUES (?, NULL)", [("note-000001",), ("note-000002",)])
    conn.commit()
    conn.close()
    importer = EvernoteImporter(str(evernote_source), decoder=fake_decoder)
    ledger = ImportLedger()

    importer.extract(importer.scan(), ledger)

    assert ledger.errors == ["Rejected row: NoteTag row without tag id"] * 2


def test_resources_are_classified(extracted):
    importer, resolver, ledger = extracted
    outcomes = {record.source_id: record.outcome for record in importer.attachments}

    assert outcomes == {
        "att1": AttachmentOutcome.COPIED,
        "att2": AttachmentOutcome.MISSING,
        "att4": AttachmentOutcome.INCOMPLETE,
        "att5": AttachmentOutcome.INACTIVE,
    }
    assert [(s.source_id, s.note_source_id) for s in ledger.skipped_attachments] == [("att3", "note-000003")]
    assert [(m.note_id, m.hash) for m in resolver.misses] == [("note-000001", "bb22")]
    assert resolver.asset_map == {"aa11": "aa/aa11.png"}

    copied = next(record for record in importer.attachments if record.source_id == "att1")
    assert copied.local_file.relative_path == "aa/aa11.png"
    assert (resolver.assets_root / "aa" / "aa11.png").read_bytes() == b"image"
    assert (copied.width, copied.height) == (10, 20)


def test_transcode_decoded_note(extracted):
    importer, resolver, ledger = extracted
    first = importer.note_items()[0]

    note = asyncio.run(importer.transcode_note(first, resolver, ledger))

    assert note.title == "Decoded title"
    assert note.notebook_ref == "nb1"
    assert note.created_at == 1700000000
    assert note.updated_at == 1700000000
    assert '<img data-en-hash="aa11" src="files/aa/aa11.png" />' in note.canonical_html
    assert note.canonical_html.startswith("<p>Hello</p>")
    assert note.meta == {"source": "desktop", "custom_note_styles": {"font": "serif"}}
    assert ledger.missing_documents == []


def test_transcode_missing_document(extracted):
    importer, resolver, ledger = extracted
    second = importer.note_items()[1]

    note = asyncio.run(importer.transcode_note(second, resolver, ledger))

    assert note.title == "Row title two"
    assert note.canonical_html == ""
    assert (note.created_at, note.updated_at) == (1700000000, 1700000500)
    assert [entry.id for entry in ledger.missing_documents] == ["note-000002"]


def test_transcode_undecodable_document(evernote_source, extracted):
    from conftest import write_document

    importer, resolver, ledger = extracted
    write_document(evernote_source / "internal_rteDoc", "note-000001", {"broken": True})

    note = asyncio.run(importer.transcode_note(importer.note_items()[0], resolver, ledger))

    assert note.title == "Row title one"
    assert note.canonical_html == ""
    assert ledger.decode_errors[0].id == "note-000001"
    assert "broken" in ledger.decode_errors[0].error


def test_transcode_timeout_keeps_note(evernote_source, tmp_path):
    importer = EvernoteImporter(str(evernote_source), decoder=FakeDecoder(delay=0.5), decode_timeout=0.05)
    ledger = ImportLedger()
    importer.extract(importer.scan(), ledger)
    resolver = AssetResolver(tmp_path / "assets")

    note = asyncio.run(importer.transcode_note(importer.note_items()[0], resolver, ledger))

    assert note.title == "Row title one"
    assert ledger.decode_errors[0].error == "Decode timeout for note note-000001"


def test_stuck_decode_does_not_hold_up_the_run(evernote_source, tmp_path):
    importer = EvernoteImporter(str(evernote_source), decoder=FakeDecoder(delay=3.0), decode_timeout=0.1)
    ledger = ImportLedger()
    importer.extract(importer.scan(), ledger)
    resolver = AssetResolver(tmp_path / "assets")
    first = importer.note_items()[0]

    async def transcode_twice():
        return [await importer.transcode_note(first, resolver, ledger) for _ in range(2)]

    started = time.monotonic()
    notes = asyncio.run(transcode_twice())
    elapsed = time.monotonic() - started

    assert elapsed < 1.5
    assert [note.canonical_html for note in notes] == ["", ""]
    assert [entry.error for entry in ledger.decode_errors] == ["Decode timeout for note note-000001"] * 2


def test_build_package(extracted):
    importer, resolver, ledger = extracted

    async def transcode_all():
        return [await importer.transcode_note(item, resolver, ledger) for item in importer.note_items()]

    notes = asyncio.run(transcode_all())
    package = importer.build_package(notes, ledger)

    assert [stack.id for stack in package.stacks] == ["Work"]
    assert {(nb.id, nb.stack_id) for nb in package.notebooks} == {("nb1", "Work"), ("nb2", None)}
    assert {tag.id: tag.parent_id for tag in package.tags} == {"tag1": None, "tag2": "tag1"}
    assert len(package.note_tags) == 2
    assert len(package.attachments) == 4
    assert package.meta["note_count"] == 2
    assert package.meta["missing_document_count"] == 1


def test_extract_refuses_invalid_summary(tmp_path):
    importer = EvernoteImporter(str(tmp_path / "absent"))
    with pytest.raises(SourceInvalidError):
        importer.extract(importer.scan(), ImportLedger())
