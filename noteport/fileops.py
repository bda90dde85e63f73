"""
Native file operations used by scanners, importers and the asset resolver.

All paths are accepted as str or Path and returned as Path.
"""

import logging
import os
import shutil
from pathlib import Path
from typing import Dict, Iterable, List, NamedTuple, Optional, Union

PathLike = Union[str, os.PathLike]


class FileEntry(NamedTuple):
    """A file found by list_files_recursive."""

    path: Path
    rel_path: str


def path_exists(path: PathLike) -> bool:
    return Path(path).exists()


def path_is_dir(path: PathLike) -> bool:
    return Path(path).is_dir()


def read_file_bytes(path: PathLike) -> bytes:
    return Path(path).read_bytes()


def ensure_dir(path: PathLike) -> Path:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def copy_file(source: PathLike, dest: PathLike) -> None:
    """Copy a file, creating the destination's parent directory."""
    dest = Path(dest)
    ensure_dir(dest.parent)
    shutil.copyfile(source, dest)


def save_bytes_as(dest: PathLike, data: bytes) -> None:
    """Write bytes to a file, creating the parent directory."""
    dest = Path(dest)
    ensure_dir(dest.parent)
    dest.write_bytes(data)


def unique_path(dest: PathLike) -> Path:
    """
    If dest exists, append '-1', '-2', ... to its name.
    Returns a Path that does not exist.
    """
    dest = Path(dest)
    if not dest.exists():
        return dest

    i = 1
    while True:
        candidate = dest.parent / f"{dest.name}-{i}"
        if not candidate.exists():
            return candidate
        i += 1


def list_files_recursive(root: PathLike) -> List[FileEntry]:
    """
    Enumerate every file below root, skipping dot-files and dot-directories.

    Unreadable directories are skipped. rel_path always uses forward slashes.
    """
    root_path = Path(root)
    if not root_path.exists():
        return []

    entries: List[FileEntry] = []
    stack = [root_path]
    while stack:
        directory = stack.pop()
        try:
            children = sorted(directory.iterdir())
        except OSError as e:
            logging.warning(f"Skipping unreadable directory {directory}: {e}")
            continue
        for child in children:
            if child.name.startswith('.'):
                continue
            if child.is_dir():
                stack.append(child)
                continue
            rel_path = child.relative_to(root_path).as_posix()
            entries.append(FileEntry(path=child, rel_path=rel_path))

    entries.sort(key=lambda entry: entry.rel_path)
    return entries


def get_dir_size(path: PathLike) -> int:
    """Recursive size in bytes of every file below path; 0 if it is absent."""
    root = Path(path)
    if not root.exists():
        return 0
    total = 0
    for dirpath, _dirnames, filenames in os.walk(root):
        for name in filenames:
            try:
                total += (Path(dirpath) / name).stat().st_size
            except OSError:
                continue
    return total


def resolve_resource_roots(path: PathLike) -> List[Path]:
    """
    List the per-user resource roots of a resource cache.

    These are the sub-directories whose name starts with 'user'
    (case-insensitive); the cache itself when there are none. A cache that
    is absent, not a folder or unreadable has no roots.
    """
    root = Path(path)
    if not path_is_dir(root):
        return []
    try:
        roots = sorted(
            child for child in root.iterdir()
            if child.is_dir() and child.name.lower().startswith("user")
        )
    except OSError as e:
        logging.warning(f"Cannot list resource cache {root}: {e}")
        return []
    return roots or [root]


def _mtime(path: Path) -> float:
    try:
        return path.stat().st_mtime
    except OSError:
        return 0.0


def find_source_paths(
    base_path: PathLike,
    db_filename: str = "RemoteGraph.sql",
    documents_dirname: str = "internal_rteDoc",
    resources_dirname: str = "resource-cache",
    max_depth: int = 6,
    max_entries: int = 20000,
) -> Dict[str, Optional[Path]]:
    """
    Search below base_path for the primary store, document root and
    resource cache of a relational source.

    Depth-first, bounded by max_depth levels and max_entries visited
    directories. When several candidates exist the most recently modified
    one wins. Names are matched case-insensitively.

    Returns:
        Dict with keys 'db_path', 'document_root', 'resources_root'; values
        are None for anything not found.
    """
    base = Path(base_path)
    found: Dict[str, Optional[Path]] = {
        "db_path": None,
        "document_root": None,
        "resources_root": None,
    }
    if not base.exists():
        return found

    best: Dict[str, float] = {}

    def consider(key: str, candidate: Path) -> None:
        ts = _mtime(candidate)
        if found[key] is None or ts > best[key]:
            found[key] = candidate
            best[key] = ts

    stack = [(base, 0)]
    visited = 0
    while stack:
        if visited > max_entries:
            break
        directory, depth = stack.pop()
        visited += 1
        try:
            children = list(directory.iterdir())
        except OSError:
            continue
        for child in children:
            name = child.name.lower()
            if child.is_file() and name.endswith(db_filename.lower()):
                consider("db_path", child)
                continue
            if not child.is_dir():
                continue
            if name == documents_dirname.lower():
                consider("document_root", child)
            elif name == resources_dirname.lower():
                consider("resources_root", child)
            if depth < max_depth:
                stack.append((child, depth + 1))

    return found


def document_path(document_root: PathLike, note_id: str) -> Path:
    """Location of a note's document: <root>/<id[:3]>/<id[-3:]>/<id>.dat"""
    return Path(document_root) / note_id[:3] / note_id[-3:] / f"{note_id}.dat"


def count_missing_documents(document_root: PathLike, note_ids: Iterable[str]) -> int:
    """Count notes without a document file. Ids shorter than 6 characters count as missing."""
    missing = 0
    for note_id in note_ids:
        if len(note_id) < 6 or not document_path(document_root, note_id).exists():
            missing += 1
    return missing
