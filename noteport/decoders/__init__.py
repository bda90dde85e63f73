"""Decoders for source stores and note documents."""

from .relational import RelationalStore
from .crdt import CrdtDocumentDecoder, CrdtRegions

__all__ = ["RelationalStore", "CrdtDocumentDecoder", "CrdtRegions"]
