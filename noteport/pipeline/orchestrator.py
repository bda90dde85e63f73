"""
Import orchestration for noteport.

ImportOrchestrator runs one import from a scanned source into a destination
store: backup first, then the tables, resources, decode and database stages
in order, and finally the import report, which is written on every path.
"""

import logging
import tempfile
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import httpx

from ..assets import AssetResolver
from ..database import BaseNoteStore
from ..errors import BackupError
from ..fileops import ensure_dir, save_bytes_as, unique_path
from ..importers import BaseImporter
from ..models import ImportLedger, ImportReport, ImportStats, NormalizedNote, SourceSummary
from .progress import ProgressStream

STAGES = ("tables", "resources", "decode", "database")
REPORT_FILENAME = "import_report.json"
PACKAGE_FILENAME = "package.json"


def fallback_backup_dir(kind: str) -> Path:
    """A fresh <tempdir>/noteport/<kind>-<timestamp> directory."""
    stamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
    return ensure_dir(unique_path(Path(tempfile.gettempdir()) / "noteport" / f"{kind}-{stamp}"))


class ImportOrchestrator:
    """
    Sequences one import run.

    The orchestrator is the only component that knows the stage order and
    the only caller of the store's backup and write operations.
    """

    def __init__(self, importer: BaseImporter, store: BaseNoteStore,
                 progress: Optional[ProgressStream] = None,
                 client: Optional[httpx.Client] = None,
                 download_timeout: Optional[float] = None):
        """
        Args:
            importer: The source importer
            store: The destination store
            progress: Progress stream receiving stage events
            client: Optional httpx client used for remote images
            download_timeout: Seconds allowed per download
        """
        self.importer = importer
        self.store = store
        self.progress = progress or ProgressStream(STAGES)
        self.client = client
        self.download_timeout = download_timeout
        self.report_path: Optional[Path] = None

    def _needs_backup(self) -> bool:
        """True when the store holds notes or notebooks, or cannot tell."""
        try:
            info = self.store.storage_info()
        except Exception as e:
            logging.warning(f"Could not read destination storage info, backing up: {e}")
            return True
        if not info.get("valid", True):
            return True
        return bool(info.get("has_data")) and (
            info.get("notes_count", 0) > 0 or info.get("notebooks_count", 0) > 0
        )

    def _write_report(self, report: ImportReport) -> Path:
        path = Path(report.backup_dir) / REPORT_FILENAME
        save_bytes_as(path, report.model_dump_json(indent=2).encode("utf-8"))
        self.report_path = path
        logging.info(f"Import report written to {path}")
        return path

    def _finish(self, ledger: ImportLedger, started_at: datetime, summary: SourceSummary,
                backup_dir: Path, failed: bool, stats: Optional[ImportStats] = None) -> ImportReport:
        report = ledger.to_report(
            started_at=started_at,
            finished_at=datetime.now(),
            summary=summary,
            target_data_dir=str(self.store.data_dir),
            backup_dir=str(backup_dir),
            failed=failed,
            stats=stats,
        )
        self._write_report(report)
        return report

    async def run(self, summary: Optional[SourceSummary] = None) -> ImportReport:
        """
        Run the import.

        Args:
            summary: A summary from a previous scan; the source is scanned
                again when omitted

        Returns:
            The ImportReport, also written to <backup_dir>/import_report.json
        """
        started_at = datetime.now()
        ledger = ImportLedger()
        kind = self.importer.kind
        if summary is None:
            summary = self.importer.scan()

        if not summary.valid:
            logging.error(f"Source {summary.source_root} is not importable: {'; '.join(summary.errors)}")
            for error in summary.errors:
                ledger.add_error(error)
            return self._finish(ledger, started_at, summary, fallback_backup_dir(kind), failed=True)

        try:
            if self._needs_backup():
                backup_dir = self.store.create_backup(kind)
            else:
                backup_dir = fallback_backup_dir(kind)
        except (BackupError, OSError) as e:
            logging.error(f"Backup failed, nothing was imported: {e}", exc_info=True)
            ledger.add_error(f"Backup failed: {e}")
            return self._finish(ledger, started_at, summary, fallback_backup_dir(kind), failed=True)

        import_dir = Path(backup_dir) / "import"
        assets_dir = ensure_dir(import_dir / "assets")
        resolver = AssetResolver(assets_dir, download_timeout=self.download_timeout, client=self.client)

        failed = False
        stats: Optional[ImportStats] = None
        try:
            stats = await self._run_stages(summary, ledger, resolver, import_dir, assets_dir)
        except Exception as e:
            logging.error(f"Import failed: {e}", exc_info=True)
            self.progress.fail(str(e))
            ledger.add_error(str(e))
            failed = True
        finally:
            for miss in resolver.misses:
                ledger.add_missing_resource(miss.note_id, miss.hash, miss.source_path)
            for copy_error in resolver.copy_errors:
                ledger.add_copy_error(copy_error.source_path, copy_error.dest_path, copy_error.error)
            for error in resolver.errors:
                ledger.add_error(error)
            resolver.close()

        report = self._finish(ledger, started_at, summary, backup_dir, failed=failed, stats=stats)
        logging.info(
            f"Import {'failed' if failed else 'finished'}: {report.stats.notes} notes, "
            f"{len(report.decode_errors)} decode errors, {len(report.missing_resources)} missing resources"
        )
        return report

    async def _run_stages(self, summary: SourceSummary, ledger: ImportLedger, resolver: AssetResolver,
                          import_dir: Path, assets_dir: Path) -> ImportStats:
        progress = self.progress
        importer = self.importer

        progress.start("tables", total=1, message="Reading source tables...")
        importer.extract(summary, ledger)
        progress.advance("tables", 1)
        progress.finish("tables")

        resources = importer.resource_items()
        progress.start("resources", total=len(resources), message="Copying resources...")
        for index, item in enumerate(resources, start=1):
            importer.process_resource(item, resolver, ledger)
            progress.advance("resources", index)
        progress.finish("resources")

        note_items = importer.note_items()
        notes: List[NormalizedNote] = []
        progress.start("decode", total=len(note_items), message="Decoding note content...")
        for index, item in enumerate(note_items, start=1):
            note = await importer.transcode_note(item, resolver, ledger)
            if note is not None:
                notes.append(note)
            progress.advance("decode", index)
        progress.finish("decode")

        progress.start("database", total=1, message="Preparing import package...")
        package = importer.build_package(notes, ledger)
        package_path = import_dir / PACKAGE_FILENAME
        save_bytes_as(package_path, package.model_dump_json().encode("utf-8"))

        stats = self.store.import_from_json(package_path, assets_dir)
        try:
            self.store.backfill()
        except Exception as e:
            logging.warning(f"Backfill failed: {e}")
            ledger.add_error(f"Backfill failed: {e}")
        progress.advance("database", 1, message="Writing notes database...")
        progress.finish("database")
        return stats
