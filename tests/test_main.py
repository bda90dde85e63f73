"""
Tests for the command line entry point.
"""

import pytest

import main
from noteport.errors import RestoreError
from noteport.importers import EvernoteImporter

from conftest import FakeDecoder, FakeStore


def test_scan_command_exit_codes(markdown_tree, tmp_path, monkeypatch, capsys):
    monkeypatch.setattr(main, "setup_logging", lambda: None)

    monkeypatch.setattr("sys.argv", ["main.py", "scan", "--source", str(markdown_tree), "--kind", "markdown"])
    with pytest.raises(SystemExit) as excinfo:
        main.main()
    assert excinfo.value.code == 0
    assert "Ready to import." in capsys.readouterr().out

    monkeypatch.setattr("sys.argv", ["main.py", "scan", "--source", str(tmp_path / "absent")])
    with pytest.raises(SystemExit) as excinfo:
        main.main()
    assert excinfo.value.code == 1
    assert "Selected path is not a folder." in capsys.readouterr().out


def test_confirm_rollback_retries(monkeypatch, capsys):
    answers = iter(["maybe", "Y"])
    monkeypatch.setattr("builtins.input", lambda prompt: next(answers))

    assert main.confirm_rollback()
    assert "Please enter 'yes' or 'no'" in capsys.readouterr().out


def test_restore_failure_is_reported(tmp_path, capsys):
    class BrokenStore(FakeStore):
        def restore_backup(self, backup_dir):
            raise RestoreError("backup folder not found")

    assert not main.restore(BrokenStore(tmp_path), str(tmp_path / "backup"))
    assert "Restore failed: backup folder not found" in capsys.readouterr().out


def test_import_offers_rollback_on_errors(evernote_source, tmp_path, monkeypatch, isolated_tempdir):
    store = FakeStore(tmp_path / "data", has_notes=True, fail_backfill=True)
    monkeypatch.setattr(main, "NoteStoreManager", lambda data_dir: store)
    monkeypatch.setattr(
        main, "create_importer",
        lambda kind, source: EvernoteImporter(source, decoder=FakeDecoder()),
    )
    monkeypatch.setattr(main, "confirm_rollback", lambda: True)

    report = main.run_import("evernote", str(evernote_source), str(tmp_path / "data"))

    assert report.errors == ["Backfill failed: boom"]
    assert store.calls == ["backup", "import", "backfill", "restore"]
