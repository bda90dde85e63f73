"""
Destination store interface for noteport.

This module defines the abstract interface the import pipeline writes through.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Union

from ..models import ImportStats


class BaseNoteStore(ABC):
    """
    Abstract base class for destination note stores.

    The orchestrator only talks to a store through this interface: it asks
    for the current state, takes a backup, hands over the import package and
    finally asks for a backfill of derived data.
    """

    @property
    @abstractmethod
    def data_dir(self) -> Path:
        """Root directory of the store's data."""
        pass

    @abstractmethod
    def storage_info(self) -> Dict[str, Any]:
        """
        Describe what the store currently holds.

        Returns:
            Dict with at least 'has_data', 'notes_count' and 'notebooks_count'
        """
        pass

    @abstractmethod
    def create_backup(self, kind: str) -> Path:
        """
        Copy the current data aside before an import overwrites it.

        Args:
            kind: Source kind of the import, used in the backup folder name

        Returns:
            The backup directory
        """
        pass

    @abstractmethod
    def import_from_json(self, package_path: Union[str, Path], assets_dir: Union[str, Path]) -> ImportStats:
        """
        Replace the store's contents with an import package.

        Args:
            package_path: Path to the package JSON document
            assets_dir: Directory holding the placed assets

        Returns:
            Counts of the rows written
        """
        pass

    @abstractmethod
    def backfill(self) -> int:
        """Rebuild data derived from note content. Returns the number of rows written."""
        pass

    @abstractmethod
    def restore_backup(self, backup_dir: Union[str, Path]) -> None:
        """Put the contents of a backup directory back in place."""
        pass
