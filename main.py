#!/usr/bin/env python3
"""
noteport - Note Import Pipeline

Main entry point for noteport. Scans a note source, imports it into the
destination store and offers to roll back from the backup when the import
went wrong.
"""

import asyncio
import logging
import sys
import argparse
from typing import List

from noteport import __version__
from noteport.config import config
from noteport.database import NoteStoreManager
from noteport.errors import RestoreError
from noteport.importers import SOURCE_KINDS, create_importer
from noteport.models import ImportReport, ProgressEvent, SourceSummary
from noteport.pipeline import ImportOrchestrator, ProgressStream, STAGES


def setup_logging():
    """Configure logging for the application."""
    level = getattr(logging, config.get("logging.level", "INFO").upper())
    format_str = config.get("logging.format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    log_file = config.log_filename

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file)
        ]
    )


def print_summary(summary: SourceSummary):
    """Print what a scan found."""
    counts = summary.counts
    print("\n" + "="*60)
    print(f"SOURCE: {summary.source_root} ({summary.source_kind})")
    print("="*60)
    print(f"- Notes:       {counts.notes}")
    print(f"- Notebooks:   {counts.notebooks} in {counts.stacks} stacks")
    print(f"- Tags:        {counts.tags} ({counts.note_tags} note links)")
    print(f"- Attachments: {counts.attachments} ({counts.images} images, {summary.byte_sizes.attachments} bytes)")
    if summary.source_kind == "evernote":
        print(f"- Missing documents: {summary.missing_count}")
    if summary.errors:
        print("\nProblems:")
        for error in summary.errors:
            print(f"- {error}")
    print("\nReady to import." if summary.valid else "\nThis source cannot be imported.")


def _print_list(title: str, items: List[str], limit: int = 10):
    if not items:
        return
    print(f"\n{title} ({len(items)}):")
    for item in items[:limit]:
        print(f"- {item}")
    if len(items) > limit:
        print(f"- ... and {len(items) - limit} more")


def print_report(report: ImportReport):
    """Print the outcome of an import run."""
    stats = report.stats
    print("\n" + "="*60)
    print("IMPORT FAILED" if report.failed else "IMPORT COMPLETED")
    print("="*60)
    print(f"- Notes:       {stats.notes}")
    print(f"- Notebooks:   {stats.notebooks}")
    print(f"- Tags:        {stats.tags}")
    print(f"- Attachments: {stats.attachments}")
    print(f"- Backup:      {report.backup_dir}")

    _print_list("Errors", report.errors)
    _print_list("Missing documents", [f"{item.id}: {item.path}" for item in report.missing_documents])
    _print_list("Decode errors", [f"{item.id}: {item.error}" for item in report.decode_errors])
    _print_list("Missing resources", [f"{item.note_id}/{item.hash}" for item in report.missing_resources])
    _print_list("Copy errors", [f"{item.source_path}: {item.error}" for item in report.asset_copy_errors])
    if report.skipped_attachments:
        print(f"\nSkipped {len(report.skipped_attachments)} attachments of deleted notes")


def print_progress(event: ProgressEvent):
    print(f"[{event.stage}] {event.state.value} {event.current}/{event.total} {event.message}")


def confirm_rollback() -> bool:
    """
    Ask user whether to restore the backup taken before the import.

    Returns:
        True if user confirms, False otherwise
    """
    while True:
        response = input("\nRestore the data from before the import? (yes/no): ").strip().lower()
        if response in ['yes', 'y']:
            return True
        elif response in ['no', 'n']:
            return False
        else:
            print("Please enter 'yes' or 'no'")


def restore(store: NoteStoreManager, backup_dir: str) -> bool:
    """Restore a backup; a failure is reported, not raised."""
    try:
        store.restore_backup(backup_dir)
    except RestoreError as e:
        logging.error(f"Restore failed: {e}")
        print(f"\nRestore failed: {e}")
        return False
    print(f"\nRestored data from {backup_dir}")
    return True


def run_scan(kind: str, source: str) -> SourceSummary:
    summary = create_importer(kind, source).scan()
    print_summary(summary)
    return summary


def run_import(kind: str, source: str, data_dir: str) -> ImportReport:
    """
    Scan and import a source, then offer rollback when anything went wrong.

    Args:
        kind: Source kind
        source: Source folder
        data_dir: Destination data directory
    """
    importer = create_importer(kind, source)
    summary = importer.scan()
    print_summary(summary)

    store = NoteStoreManager(data_dir)
    progress = ProgressStream(STAGES)
    progress.subscribe(print_progress)
    orchestrator = ImportOrchestrator(importer, store, progress=progress)
    report = asyncio.run(orchestrator.run(summary))
    print_report(report)
    print(f"\nReport written to {orchestrator.report_path}")

    if summary.valid and (report.failed or report.errors):
        if confirm_rollback():
            restore(store, report.backup_dir)
    return report


def parse_arguments():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="noteport - Note Import Pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py scan --source ~/Evernote --kind evernote      # Check an Evernote data folder
  python main.py import --source ~/Evernote --kind evernote    # Import it into ./data
  python main.py import --source ~/notes --kind markdown --data-dir /tmp/notes
  python main.py restore --backup data/backups/evernote-20240101-120000
        """
    )

    parser.add_argument(
        "--data-dir",
        type=str,
        default=None,
        help=f"Destination data directory (default: {config.data_directory})"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"noteport {__version__}"
    )

    commands = parser.add_subparsers(dest="command", required=True)
    for name, help_text in (("scan", "Scan a source and print what it holds"),
                            ("import", "Import a source into the data directory")):
        command = commands.add_parser(name, help=help_text)
        command.add_argument(
            "--source",
            type=str,
            required=True,
            help="Path to the source folder"
        )
        command.add_argument(
            "--kind",
            choices=SOURCE_KINDS,
            default="evernote",
            help="Source kind (default: evernote)"
        )

    restore_command = commands.add_parser("restore", help="Restore a backup into the data directory")
    restore_command.add_argument(
        "--backup",
        type=str,
        required=True,
        help="Backup directory to restore"
    )

    return parser.parse_args()


def main():
    """Main entry point."""
    args = parse_arguments()
    setup_logging()
    data_dir = args.data_dir or config.data_directory

    logging.info(f"noteport {__version__} - {args.command}")

    try:
        if args.command == "scan":
            summary = run_scan(args.kind, args.source)
            sys.exit(0 if summary.valid else 1)
        elif args.command == "import":
            report = run_import(args.kind, args.source, data_dir)
            sys.exit(1 if report.failed else 0)
        else:
            sys.exit(0 if restore(NoteStoreManager(data_dir), args.backup) else 1)

    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        print("\nInterrupted.")
        sys.exit(130)


if __name__ == "__main__":
    main()
