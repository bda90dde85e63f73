"""Asset resolution and placement."""

from .resolver import AssetResolver, ResolvedTarget, place_asset, sanitize_ext, ext_from_mime

__all__ = ["AssetResolver", "ResolvedTarget", "place_asset", "sanitize_ext", "ext_from_mime"]
