"""
Base importer interface for noteport.

This module defines the abstract interface that all source importers must implement.
"""

import re
from abc import ABC, abstractmethod
from typing import Any, List, Optional

from ..assets import AssetResolver
from ..models import ImportLedger, ImportPackage, NormalizedNote, SourceSummary


def clean_root(raw: str) -> str:
    """Strip surrounding whitespace plus trailing '*' wildcards and path separators."""
    value = str(raw).strip()
    cleaned = re.sub(r"[*/\\]+$", "", value)
    return cleaned or value


class BaseImporter(ABC):
    """
    Abstract base class for all source importers.

    Each importer scans one kind of source, extracts its records and turns
    them into NormalizedNote objects and an ImportPackage. The orchestrator
    calls the methods in this order: scan, extract, resource_items /
    process_resource, note_items / transcode_note, build_package.
    """

    kind: str = ""

    def __init__(self, source_root: str):
        """
        Args:
            source_root: The folder selected as the import source
        """
        self.source_root = clean_root(source_root)
        self.summary: Optional[SourceSummary] = None

    @abstractmethod
    def scan(self) -> SourceSummary:
        """
        Validate the source root without modifying anything.

        Never raises for a missing or invalid root; the returned summary has
        valid=False and readable errors instead.
        """
        pass

    @abstractmethod
    def extract(self, summary: SourceSummary, ledger: ImportLedger) -> None:
        """Read every record of the source into the importer's working set."""
        pass

    @abstractmethod
    def resource_items(self) -> List[Any]:
        """Items handled by the resources stage."""
        pass

    @abstractmethod
    def process_resource(self, item: Any, resolver: AssetResolver, ledger: ImportLedger) -> None:
        """Locate and place one resource. Per-item failures are recorded, not raised."""
        pass

    @abstractmethod
    def note_items(self) -> List[Any]:
        """Items handled by the decode stage."""
        pass

    @abstractmethod
    async def transcode_note(self, item: Any, resolver: AssetResolver,
                             ledger: ImportLedger) -> Optional[NormalizedNote]:
        """Decode and normalize one note. Per-item failures are recorded, not raised."""
        pass

    @abstractmethod
    def build_package(self, notes: List[NormalizedNote], ledger: ImportLedger) -> ImportPackage:
        """Assemble the package handed to the destination store."""
        pass
