"""
noteport: Note import pipeline.

Imports Evernote data folders and HTML, Markdown or plain-text note trees
into a local note store, with content normalized to one HTML dialect.
"""

__version__ = "0.1.0"
__author__ = "noteport Project"

# Import main components
from .database import BaseNoteStore, NoteStoreManager
from .models import ImportReport, NormalizedNote, SourceSummary
from .importers import BaseImporter, EvernoteImporter, TreeImporter
from .pipeline import ImportOrchestrator, ProgressStream

__all__ = [
    "BaseNoteStore",
    "NoteStoreManager",
    "ImportReport",
    "NormalizedNote",
    "SourceSummary",
    "BaseImporter",
    "EvernoteImporter",
    "TreeImporter",
    "ImportOrchestrator",
    "ProgressStream",
]
