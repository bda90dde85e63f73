"""Source importers for the supported note sources."""

from .base import BaseImporter
from .evernote import EvernoteImporter
from .tree import TreeImporter, NOTE_EXTENSIONS

SOURCE_KINDS = ["evernote", "html", "markdown", "text"]


def create_importer(kind: str, source_root: str) -> BaseImporter:
    """Build the importer for a source kind."""
    if kind == "evernote":
        return EvernoteImporter(source_root)
    if kind in NOTE_EXTENSIONS:
        return TreeImporter(source_root, kind=kind)
    raise ValueError(f"Unsupported source kind: {kind}")


__all__ = ["BaseImporter", "EvernoteImporter", "TreeImporter", "SOURCE_KINDS", "create_importer"]
