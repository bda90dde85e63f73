"""
Asset resolution and placement.

Resources are located across candidate roots, copied into a sharded,
content-addressed namespace and remembered in a per-run asset map
(hash -> relative path) that the transcoders use to rewrite references.
"""

import hashlib
import logging
import re
from pathlib import Path
from typing import Dict, List, Mapping, NamedTuple, Optional, Sequence, Union
from urllib.parse import unquote, urlparse

import httpx

from ..config import config
from ..errors import AssetCopyError, AssetDownloadError
from ..fileops import copy_file, ensure_dir
from ..models import AssetCopyErrorEntry, AssetRecord, MissingResource
from ..transcode.common import normalize_key, normalize_rel_path

_MIME_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/svg+xml": "svg",
    "application/pdf": "pdf",
    "text/plain": "txt",
    "application/json": "json",
}

_REMOTE = re.compile(r"^https?://", re.IGNORECASE)
_WINDOWS_ABSOLUTE = re.compile(r"^[a-zA-Z]:[\\/]")


class ResolvedTarget(NamedTuple):
    """Where a reference found in a note points: a URL, a local file, or nothing."""

    url: Optional[str] = None
    local_path: Optional[Path] = None


def sanitize_ext(ext: Optional[str]) -> Optional[str]:
    """Keep alphanumerics and dots, lower-case, drop a leading dot."""
    if not ext:
        return None
    clean = re.sub(r"[^a-zA-Z0-9.]", "", ext)
    if not clean:
        return None
    if clean.startswith("."):
        clean = clean[1:]
    return clean.lower() or None


def ext_from_mime(mime: Optional[str]) -> Optional[str]:
    if not mime:
        return None
    return _MIME_EXTENSIONS.get(mime.split(";", 1)[0].strip().lower())


def ext_from_filename(filename: Optional[str]) -> Optional[str]:
    if not filename or "." not in filename:
        return None
    return sanitize_ext(filename.rsplit(".", 1)[-1])


def place_asset(assets_root: Union[str, Path], hash: str, extension: Optional[str]) -> AssetRecord:
    """
    Compute where an asset lives. Pure: the relative path depends only on
    hash and extension.
    """
    filename = f"{hash}.{extension}" if extension else hash
    relative_path = f"{hash[:2]}/{filename}"
    return AssetRecord(
        hash=hash,
        extension=extension,
        relative_path=relative_path,
        absolute_path=str(Path(assets_root) / hash[:2] / filename),
    )


class AssetResolver:
    """
    Locates, places and copies the resources of one import run.

    The resolver owns the run's asset map and the lists of hits, misses and
    copy errors; the orchestrator folds those into the import report.
    """

    def __init__(self, assets_root: Union[str, Path], download_timeout: Optional[float] = None,
                 client: Optional[httpx.Client] = None):
        """
        Args:
            assets_root: Directory receiving the sharded asset copies
            download_timeout: Seconds allowed per download (defaults to config value)
            client: Optional preconfigured httpx client
        """
        self.assets_root = Path(assets_root)
        self.download_timeout = download_timeout or config.download_timeout
        self._client = client
        self._owns_client = client is None
        self.asset_map: Dict[str, str] = {}
        self.hits: List[AssetRecord] = []
        self.misses: List[MissingResource] = []
        self.copy_errors: List[AssetCopyErrorEntry] = []
        self.errors: List[str] = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self):
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self.download_timeout, follow_redirects=True)
        return self._client

    @staticmethod
    def resolve(resource_roots: Sequence[Union[str, Path]], note_id: str, hash: str) -> Optional[Path]:
        """
        Find a resource file across the candidate roots.

        Returns the first existing root/note_id/hash; when none exists, the
        first root's candidate as a best guess; None when there are no roots.
        """
        if not resource_roots:
            return None
        for root in resource_roots:
            candidate = Path(root) / note_id / hash
            if candidate.exists():
                return candidate
        return Path(resource_roots[0]) / note_id / hash

    def place(self, hash: str, extension: Optional[str]) -> AssetRecord:
        return place_asset(self.assets_root, hash, extension)

    def copy(self, source: Union[str, Path], record: AssetRecord) -> AssetRecord:
        """
        Copy source bytes to the record's destination.

        An existing destination of the same size is left alone.

        Raises:
            AssetCopyError: On any I/O failure
        """
        source = Path(source)
        dest = Path(record.absolute_path)
        try:
            if dest.exists() and dest.stat().st_size == source.stat().st_size:
                return record
            copy_file(source, dest)
        except OSError as e:
            raise AssetCopyError(source, dest, e) from e
        return record

    def register(self, record: AssetRecord) -> None:
        """Remember a placed asset so references to its hash can be rewritten."""
        self.asset_map[record.hash] = record.relative_path
        self.hits.append(record)

    def record_missing(self, note_id: str, hash: str, source_path: Optional[Union[str, Path]]) -> None:
        logging.warning(f"Resource {hash} of note {note_id} not found at {source_path}")
        self.misses.append(
            MissingResource(note_id=note_id, hash=hash, source_path=str(source_path or ""))
        )

    def record_copy_error(self, error: AssetCopyError) -> None:
        logging.warning(str(error))
        self.copy_errors.append(
            AssetCopyErrorEntry(source_path=error.source_path, dest_path=error.dest_path, error=error.reason)
        )

    def resolve_target(self, note_dir: str, target: str, file_index: Mapping[str, Path]) -> ResolvedTarget:
        """
        Resolve a reference found in a tree note.

        Tries, in order: remote URL, absolute path, the path as an index key,
        the path relative to the note's folder, a suffix search for
        attachments/ and images/ paths, and an extension-less prefix search.
        """
        value = target.strip()
        if not value:
            return ResolvedTarget()
        if _REMOTE.match(value):
            return ResolvedTarget(url=value)

        value = unquote(value.split("?", 1)[0].split("#", 1)[0])
        if value.startswith("/") or _WINDOWS_ABSOLUTE.match(value):
            absolute = Path(value)
            if absolute.is_file():
                return ResolvedTarget(local_path=absolute)

        trimmed = re.sub(r"^\.?[\\/]+", "", value)
        direct = normalize_key(normalize_rel_path(trimmed))
        if direct in file_index:
            return ResolvedTarget(local_path=file_index[direct])

        scoped = normalize_key(normalize_rel_path(f"{note_dir}/{trimmed}" if note_dir else trimmed))
        if scoped in file_index:
            return ResolvedTarget(local_path=file_index[scoped])

        for key in (scoped, direct):
            if not key.startswith(("attachments/", "images/")):
                continue
            for index_key, path in file_index.items():
                if index_key == key or index_key.endswith("/" + key):
                    return ResolvedTarget(local_path=path)
            if not re.search(r"\.[^/.]+$", key):
                for index_key, path in file_index.items():
                    if index_key.startswith(key + "."):
                        return ResolvedTarget(local_path=path)

        return ResolvedTarget()

    def store_bytes(self, data: bytes, extension: Optional[str], origin: str = "<memory>") -> AssetRecord:
        """Place bytes under their SHA-256 hash and register the asset."""
        digest = hashlib.sha256(data).hexdigest()
        record = self.place(digest, extension)
        dest = Path(record.absolute_path)
        try:
            if not (dest.exists() and dest.stat().st_size == len(data)):
                ensure_dir(dest.parent)
                dest.write_bytes(data)
        except OSError as e:
            raise AssetCopyError(origin, dest, e) from e
        self.register(record)
        return record

    def store_file(self, path: Union[str, Path]) -> AssetRecord:
        """
        Hash a local file and copy it into the asset namespace.

        Raises:
            AssetCopyError: If the file cannot be read or written
        """
        path = Path(path)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise AssetCopyError(path, self.assets_root, e) from e
        return self.store_bytes(data, ext_from_filename(path.name), origin=str(path))

    def download(self, url: str) -> AssetRecord:
        """
        Fetch a remote file and place it.

        The extension comes from the URL path, or from the response content
        type when the path has none.

        Raises:
            AssetDownloadError: On network errors, HTTP errors or an empty body
        """
        try:
            response = self.client.get(url, timeout=self.download_timeout)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise AssetDownloadError(f"Download failed for {url}: {e}") from e

        data = response.content
        if not data:
            raise AssetDownloadError(f"Download failed for {url}: empty response")

        extension = ext_from_filename(Path(urlparse(url).path).name)
        if not extension:
            extension = ext_from_mime(response.headers.get("content-type"))
        try:
            return self.store_bytes(data, extension, origin=url)
        except AssetCopyError as e:
            raise AssetDownloadError(str(e)) from e
