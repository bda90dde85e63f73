"""Destination note stores."""

from .base import BaseNoteStore
from .manager import NoteStoreManager

__all__ = ["BaseNoteStore", "NoteStoreManager"]
