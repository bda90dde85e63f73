"""
Unit tests for core noteport components.

Tests configuration management, data models, row schemas, timestamp
normalization and the native file operations.
"""

import math
import os
import tempfile
import unittest
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from noteport.config import ConfigManager, config as global_config, get_config, merge_settings
from noteport.errors import RowSchemaError
from noteport.fileops import (
    count_missing_documents,
    document_path,
    find_source_paths,
    get_dir_size,
    list_files_recursive,
    resolve_resource_roots,
    unique_path,
)
from noteport.models import (
    AttachmentRow,
    ImportLedger,
    ImportStats,
    NotebookRow,
    NoteRow,
    NoteTagRow,
    SkippedAttachment,
    SourceSummary,
)
from noteport.transcode import content_digest, normalize_timestamp
from noteport.transcode.transcoder import ContentTranscoder


class TestConfigManager(unittest.TestCase):
    """Test configuration management functionality."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.config_path = Path(self.temp_dir) / "test_config.yaml"

    def tearDown(self):
        """Clean up test fixtures."""
        if self.config_path.exists():
            self.config_path.unlink()
        os.rmdir(self.temp_dir)

    def test_config_creation_with_defaults(self):
        """Test config manager falls back to defaults when file missing."""
        config = ConfigManager(str(self.config_path))

        self.assertEqual(config.decode_timeout, 10.0)
        self.assertEqual(config.download_timeout, 10.0)
        self.assertEqual(config.progress_interval, 10)
        self.assertEqual(config.default_notebook, "General")
        self.assertEqual(config.evernote_layout["db_filename"], "RemoteGraph.sql")
        self.assertEqual(config.default_stacks["markdown"], "Markdown")

    def test_config_loading_from_file(self):
        """Test loading configuration from YAML file."""
        test_config = """
import:
  decode_timeout: 2.5
  progress_interval: 5

evernote:
  db_filename: "Other.sql"

paths:
  data_dir: "elsewhere"
"""
        with open(self.config_path, 'w') as f:
            f.write(test_config)

        config = ConfigManager(str(self.config_path))

        self.assertEqual(config.decode_timeout, 2.5)
        self.assertEqual(config.progress_interval, 5)
        self.assertEqual(config.data_directory, "elsewhere")
        # Missing layout keys still come from the defaults
        self.assertEqual(config.evernote_layout["db_filename"], "Other.sql")
        self.assertEqual(config.evernote_layout["documents_dirname"], "internal_rteDoc")

    def test_dot_notation_access(self):
        """Test accessing config values with dot notation."""
        config = ConfigManager(str(self.config_path))

        self.assertEqual(config.get("evernote.stack_prefix"), "Stack:")
        self.assertEqual(config.get("tree.default_stacks.html"), "HTML")
        self.assertIsNone(config.get("nonexistent.key"))
        self.assertEqual(config.get("nonexistent.key", "fallback"), "fallback")

    def test_global_instance(self):
        """Test the module-level configuration accessor."""
        self.assertIs(get_config(), global_config)

    def test_config_reload(self):
        """Test configuration reloading."""
        config = ConfigManager(str(self.config_path))
        self.assertEqual(config.decode_timeout, 10.0)

        with open(self.config_path, 'w') as f:
            f.write("import:\n  decode_timeout: 1.0\n")

        config.reload()
        self.assertEqual(config.decode_timeout, 1.0)
        self.assertEqual(config.download_timeout, 10.0)

    def test_broken_file_falls_back_to_defaults(self):
        """Test a file that is not a YAML mapping is ignored."""
        with open(self.config_path, 'w') as f:
            f.write("- just\n- a list\n")

        config = ConfigManager(str(self.config_path))
        self.assertEqual(config.progress_interval, 10)
        self.assertEqual(config.get_section("paths")["log_file"], "noteport.log")

    def test_merge_settings_keeps_nested_defaults(self):
        merged = merge_settings({"a": {"b": 1, "c": 2}, "d": 3}, {"a": {"c": 9}, "e": 4})
        self.assertEqual(merged, {"a": {"b": 1, "c": 9}, "d": 3, "e": 4})


class TestTimestampsAndHashes(unittest.TestCase):

    def test_milliseconds_become_seconds(self):
        self.assertEqual(normalize_timestamp(1700000000000, 0), 1700000000)

    def test_seconds_unchanged(self):
        self.assertEqual(normalize_timestamp(1700000000, 0), 1700000000)
        self.assertEqual(normalize_timestamp(1700000000.9, 0), 1700000000)

    def test_unusable_values_fall_back(self):
        for value in (None, math.nan, math.inf, "not a number", True):
            self.assertEqual(normalize_timestamp(value, 42), 42)

    def test_content_hash_is_deterministic(self):
        first = ContentTranscoder.finalize("n1", "Title", "<p>café</p>")
        second = ContentTranscoder.finalize("n1", "Other title", "<p>café</p>")

        self.assertEqual(first.content_hash, second.content_hash)
        self.assertEqual(first.content_byte_size, len("<p>café</p>".encode("utf-8")))
        self.assertEqual((first.content_hash, first.content_byte_size), content_digest("<p>café</p>"))
        self.assertNotEqual(first.content_hash, content_digest("<p>cafe</p>")[0])


class TestRowSchemas(unittest.TestCase):

    def test_note_row_soft_delete(self):
        self.assertFalse(NoteRow.from_row({"id": "n1", "deleted": None}).is_deleted)
        self.assertFalse(NoteRow.from_row({"id": "n1", "deleted": 0}).is_deleted)
        self.assertTrue(NoteRow.from_row({"id": "n1", "deleted": 1700000000}).is_deleted)

    def test_note_row_aliases(self):
        row = NoteRow.from_row({"id": 7, "label": "Label", "parent_Notebook_id": "nb", "createdAt": 5})
        self.assertEqual(row.id, "7")
        self.assertEqual(row.title, "Label")
        self.assertEqual(row.notebook_id, "nb")
        self.assertEqual(row.created, 5)

    def test_notebook_row_falls_back_to_id(self):
        row = NotebookRow.from_row({"id": "nb1", "stack_Stack_id": "Stack:Home"})
        self.assertEqual(row.name, "nb1")
        self.assertEqual(row.stack_id, "Stack:Home")

    def test_attachment_row_aliases(self):
        row = AttachmentRow.from_row({
            "id": "a1",
            "imageWidth": 640,
            "imageHeight": "480",
            "isActive": 0,
            "dataHash": "ff00",
            "parent_Note_id": "n1",
            "sourceURL": "https://example.com/x.png",
        })
        self.assertEqual((row.width, row.height), (640, 480))
        self.assertEqual(row.is_active, 0)
        self.assertEqual(row.data_hash, "ff00")
        self.assertEqual(row.note_id, "n1")
        self.assertEqual(row.source_url, "https://example.com/x.png")

    def test_required_fields(self):
        with self.assertRaises(RowSchemaError):
            NoteRow.from_row({"id": None})
        with self.assertRaises(RowSchemaError):
            NoteTagRow.from_row({"noteId": "n1"})


class TestReportModels(unittest.TestCase):

    def setUp(self):
        self.summary = SourceSummary(source_kind="evernote", source_root="/src", valid=True)

    def _report(self, ledger, failed):
        now = datetime.now()
        return ledger.to_report(
            started_at=now,
            finished_at=now,
            summary=self.summary,
            target_data_dir="/data",
            backup_dir="/backup",
            failed=failed,
            stats=ImportStats(notes=5, notebooks=1, tags=2, attachments=3),
        )

    def test_failed_report_zeroes_stats(self):
        report = self._report(ImportLedger(), failed=True)
        self.assertEqual(report.stats, ImportStats())
        self.assertTrue(report.has_problems)

    def test_successful_report_keeps_stats_and_entries(self):
        ledger = ImportLedger()
        ledger.add_missing_resource("n1", "aa", None)
        ledger.add_skipped(SkippedAttachment(note_source_id="n2", data_hash="bb"))
        ledger.add_error("Download failed for https://example.com/a.png: 404")
        ledger.add_error("Download failed for https://example.com/a.png: 404")

        report = self._report(ledger, failed=False)

        self.assertEqual(report.stats.notes, 5)
        self.assertEqual(report.missing_resources[0].source_path, "")
        self.assertEqual(report.skipped_attachments[0].reason, "parent note deleted")
        # Each failing occurrence is kept
        self.assertEqual(report.errors, ["Download failed for https://example.com/a.png: 404"] * 2)

    def test_summary_and_report_are_frozen(self):
        with self.assertRaises(ValidationError):
            self.summary.valid = False
        report = self._report(ImportLedger(), failed=False)
        with self.assertRaises(ValidationError):
            report.failed = True


class TestFileOps(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)

    def tearDown(self):
        self.temp_dir.cleanup()

    def _touch(self, rel_path: str, data: bytes = b"x") -> Path:
        path = self.root / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return path

    def test_unique_path(self):
        target = self.root / "backup"
        self.assertEqual(unique_path(target), target)
        target.mkdir()
        self.assertEqual(unique_path(target).name, "backup-1")
        (self.root / "backup-1").mkdir()
        self.assertEqual(unique_path(target).name, "backup-2")

    def test_list_files_recursive_skips_dot_entries(self):
        self._touch("b.md")
        self._touch("a/c.md")
        self._touch(".git/config")
        self._touch("a/.DS_Store")

        rel_paths = [entry.rel_path for entry in list_files_recursive(self.root)]
        self.assertEqual(rel_paths, ["a/c.md", "b.md"])

    def test_get_dir_size(self):
        self._touch("one", b"12345")
        self._touch("sub/two", b"123")
        self.assertEqual(get_dir_size(self.root), 8)
        self.assertEqual(get_dir_size(self.root / "absent"), 0)

    def test_resolve_resource_roots(self):
        cache = self.root / "resource-cache"
        cache.mkdir()
        self.assertEqual(resolve_resource_roots(cache), [cache])
        (cache / "User2").mkdir()
        (cache / "user1").mkdir()
        (cache / "other").mkdir()
        self.assertEqual([p.name for p in resolve_resource_roots(cache)], ["User2", "user1"])
        self.assertEqual(resolve_resource_roots(self.root / "absent"), [])

    def test_resolve_resource_roots_of_a_file(self):
        cache = self.root / "resource-cache"
        cache.write_bytes(b"not a folder")
        self.assertEqual(resolve_resource_roots(cache), [])

    def test_find_source_paths_searches_nested_folders(self):
        self._touch("Evernote/conduit-storage/https%3A%2F%2Fwww.evernote.com/UDB-User1+RemoteGraph.sql")
        (self.root / "Evernote/conduit-fs/internal_rteDoc").mkdir(parents=True)
        (self.root / "Evernote/resource-cache").mkdir(parents=True)

        found = find_source_paths(self.root)

        self.assertTrue(found["db_path"].name.endswith("RemoteGraph.sql"))
        self.assertEqual(found["document_root"].name, "internal_rteDoc")
        self.assertEqual(found["resources_root"].name, "resource-cache")

    def test_find_source_paths_respects_depth(self):
        self._touch("a/b/c/RemoteGraph.sql")
        self.assertIsNone(find_source_paths(self.root, max_depth=1)["db_path"])
        self.assertIsNotNone(find_source_paths(self.root, max_depth=6)["db_path"])

    def test_document_path_and_missing_count(self):
        path = document_path(self.root, "abcdef123")
        self.assertEqual(path, self.root / "abc" / "123" / "abcdef123.dat")
        self._touch("abc/123/abcdef123.dat")

        self.assertEqual(count_missing_documents(self.root, ["abcdef123"]), 0)
        self.assertEqual(count_missing_documents(self.root, ["abcdef999"]), 1)
        # Ids shorter than six characters always count as missing
        self.assertEqual(count_missing_documents(self.root, ["abc"]), 1)


if __name__ == '__main__':
    unittest.main()
