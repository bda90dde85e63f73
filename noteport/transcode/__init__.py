"""Content transcoders: ENML, HTML and Markdown to the canonical HTML dialect."""

from .common import content_digest, normalize_key, normalize_timestamp
from .enml import normalize_enml, rewrite_media

__all__ = ["content_digest", "normalize_key", "normalize_timestamp", "normalize_enml", "rewrite_media"]
