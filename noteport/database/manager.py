"""
Database manager for noteport.

This module implements the reference destination store on DuckDB: a
notes.duckdb file plus a files/ directory holding the imported assets.
"""

import duckdb
import json
import logging
import re
import shutil
import time
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from bs4 import BeautifulSoup

from ..errors import BackupError, PersistError, RestoreError
from ..fileops import ensure_dir, unique_path
from ..models import ImportPackage, ImportStats
from .base import BaseNoteStore

DB_FILENAME = "notes.duckdb"
FILES_DIRNAME = "files"
UNSORTED_STACK_KEY = "__unsorted__"

_FILE_REF = re.compile(r'src="files/([^"]+)"')

_TABLES = ["note_files", "attachments", "note_tags", "notes_text", "notes", "tags", "notebooks"]


def plain_text(html: str) -> str:
    """Visible text of an HTML fragment with whitespace collapsed."""
    if not html:
        return ""
    text = BeautifulSoup(html, "html.parser").get_text(" ")
    return " ".join(text.replace("\xa0", " ").split())


class NoteStoreManager(BaseNoteStore):
    """
    Manages the DuckDB destination store.
    """

    def __init__(self, data_dir: Union[str, Path] = "data"):
        """
        Initialize the store manager.

        Args:
            data_dir: Directory holding notes.duckdb and files/
        """
        self._data_dir = Path(data_dir)
        self.db_path = self._data_dir / DB_FILENAME
        self.connection = None

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    @property
    def files_dir(self) -> Path:
        return self._data_dir / FILES_DIRNAME

    def connect(self):
        """Establish connection to the database."""
        ensure_dir(self._data_dir)
        self.connection = duckdb.connect(str(self.db_path))

    def disconnect(self):
        """Close the database connection."""
        if self.connection:
            self.connection.close()
            self.connection = None

    def __enter__(self):
        """Context manager entry."""
        self.connect()
        self.initialize_database()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()

    @contextmanager
    def _session(self):
        """Reuse an open connection, or open one for the duration of the block."""
        opened = False
        if not self.connection:
            self.connect()
            opened = True
        try:
            self.initialize_database()
            yield self.connection
        finally:
            if opened:
                self.disconnect()

    def initialize_database(self):
        """
        Create all necessary tables if they don't exist.
        """
        if not self.connection:
            raise RuntimeError("Database connection not established")

        for name in ("notebook", "note", "tag", "attachment"):
            self.connection.execute(f"CREATE SEQUENCE IF NOT EXISTS {name}_id_seq;")

        # Stacks and notebooks share one table, told apart by notebook_type
        self.connection.execute("""
            CREATE TABLE IF NOT EXISTS notebooks (
                id BIGINT PRIMARY KEY DEFAULT nextval('notebook_id_seq'),
                name VARCHAR NOT NULL,
                notebook_type VARCHAR NOT NULL,
                parent_id BIGINT,
                sort_order INTEGER NOT NULL DEFAULT 0,
                external_id VARCHAR,
                created_at BIGINT
            )
        """)

        self.connection.execute("""
            CREATE TABLE IF NOT EXISTS notes (
                id BIGINT PRIMARY KEY DEFAULT nextval('note_id_seq'),
                title VARCHAR NOT NULL,
                content TEXT NOT NULL,
                created_at BIGINT NOT NULL,
                updated_at BIGINT NOT NULL,
                deleted_at BIGINT,
                notebook_id BIGINT,
                external_id VARCHAR,
                meta TEXT,
                content_hash VARCHAR,
                content_size BIGINT
            )
        """)

        self.connection.execute("""
            CREATE TABLE IF NOT EXISTS notes_text (
                note_id BIGINT NOT NULL,
                title VARCHAR,
                plain_text TEXT
            )
        """)

        self.connection.execute("""
            CREATE TABLE IF NOT EXISTS tags (
                id BIGINT PRIMARY KEY DEFAULT nextval('tag_id_seq'),
                name VARCHAR NOT NULL,
                parent_id BIGINT,
                external_id VARCHAR,
                created_at BIGINT,
                updated_at BIGINT
            )
        """)

        self.connection.execute("""
            CREATE TABLE IF NOT EXISTS note_tags (
                note_id BIGINT NOT NULL,
                tag_id BIGINT NOT NULL
            )
        """)

        self.connection.execute("""
            CREATE TABLE IF NOT EXISTS attachments (
                id BIGINT PRIMARY KEY DEFAULT nextval('attachment_id_seq'),
                note_id BIGINT NOT NULL,
                external_id VARCHAR,
                hash VARCHAR,
                filename VARCHAR,
                mime VARCHAR,
                size BIGINT,
                width INTEGER,
                height INTEGER,
                local_path VARCHAR,
                source_url VARCHAR,
                is_attachment BOOLEAN NOT NULL,
                created_at BIGINT,
                updated_at BIGINT
            )
        """)

        self.connection.execute("""
            CREATE TABLE IF NOT EXISTS note_files (
                note_id BIGINT NOT NULL,
                file_path VARCHAR NOT NULL
            )
        """)

    def storage_info(self) -> Dict[str, Any]:
        """
        Describe the store's current contents.

        A data directory without a database counts as holding data when a
        files/ directory exists. 'valid' is False when the database exists
        but cannot be queried.
        """
        has_files = self.files_dir.exists()
        if not self.db_path.exists():
            return {
                "has_data": has_files,
                "notes_count": 0,
                "notebooks_count": 0,
                "last_note_at": None,
                "last_note_title": None,
                "valid": True,
            }

        try:
            with self._session() as conn:
                notes_count = conn.execute(
                    "SELECT COUNT(*) FROM notes WHERE deleted_at IS NULL"
                ).fetchone()[0]
                notebooks_count = conn.execute(
                    "SELECT COUNT(*) FROM notebooks WHERE notebook_type = 'notebook'"
                ).fetchone()[0]
                last = conn.execute(
                    "SELECT updated_at, title FROM notes WHERE deleted_at IS NULL "
                    "ORDER BY updated_at DESC LIMIT 1"
                ).fetchone()
        except duckdb.Error as e:
            logging.warning(f"Could not read destination store {self.db_path}: {e}")
            return {
                "has_data": True,
                "notes_count": 0,
                "notebooks_count": 0,
                "last_note_at": None,
                "last_note_title": None,
                "valid": False,
            }

        return {
            "has_data": True,
            "notes_count": int(notes_count),
            "notebooks_count": int(notebooks_count),
            "last_note_at": last[0] if last else None,
            "last_note_title": last[1] if last else None,
            "valid": True,
        }

    def create_backup(self, kind: str) -> Path:
        """
        Copy notes.duckdb and files/ into backups/<kind>-<YYYYmmdd-HHMMSS>.

        Raises:
            BackupError: If anything cannot be copied
        """
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        backup_dir = unique_path(self._data_dir / "backups" / f"{kind}-{stamp}")
        try:
            if self.connection:
                self.connection.execute("CHECKPOINT")
            ensure_dir(backup_dir)
            if self.db_path.exists():
                shutil.copy2(self.db_path, backup_dir / DB_FILENAME)
            if self.files_dir.exists():
                shutil.copytree(self.files_dir, backup_dir / FILES_DIRNAME)
        except (OSError, duckdb.Error) as e:
            raise BackupError(f"Failed to create backup in {backup_dir}: {e}") from e

        logging.info(f"Backup created at {backup_dir}")
        return backup_dir

    def restore_backup(self, backup_dir: Union[str, Path]) -> None:
        """
        Replace the current database and files/ with a backup's copies.

        A backup without a database restores an empty store.

        Raises:
            RestoreError: If the backup is missing or cannot be copied back
        """
        backup_dir = Path(backup_dir)
        if not backup_dir.is_dir():
            raise RestoreError(f"Backup folder not found: {backup_dir}")

        self.disconnect()
        try:
            for stale in (self.db_path, self.db_path.with_name(DB_FILENAME + ".wal")):
                if stale.exists():
                    stale.unlink()
            if self.files_dir.exists():
                shutil.rmtree(self.files_dir)

            ensure_dir(self._data_dir)
            if (backup_dir / DB_FILENAME).exists():
                shutil.copy2(backup_dir / DB_FILENAME, self.db_path)
            if (backup_dir / FILES_DIRNAME).exists():
                shutil.copytree(backup_dir / FILES_DIRNAME, self.files_dir)
        except OSError as e:
            raise RestoreError(f"Failed to restore backup {backup_dir}: {e}") from e

        logging.info(f"Restored backup from {backup_dir}")

    def _clear(self, conn) -> None:
        for table in _TABLES:
            conn.execute(f"DELETE FROM {table}")

    def _insert_notebooks(self, conn, package: ImportPackage, now: int) -> Dict[str, int]:
        """Insert stacks then notebooks. Returns notebook source id -> row id."""
        stack_names = {stack.id: stack.name for stack in package.stacks}
        stack_keys: List[str] = []
        for stack in package.stacks:
            if stack.id not in stack_keys:
                stack_keys.append(stack.id)
        for notebook in package.notebooks:
            if notebook.stack_id and notebook.stack_id not in stack_keys:
                stack_keys.append(notebook.stack_id)

        stack_ids: Dict[str, int] = {}
        for index, key in enumerate(stack_keys):
            stack_ids[key] = conn.execute("""
                INSERT INTO notebooks (name, notebook_type, parent_id, sort_order, external_id, created_at)
                VALUES (?, 'stack', NULL, ?, ?, ?)
                RETURNING id
            """, [stack_names.get(key) or key, index, f"stack:{key}", now]).fetchone()[0]

        if any(not notebook.stack_id for notebook in package.notebooks):
            stack_ids[UNSORTED_STACK_KEY] = conn.execute("""
                INSERT INTO notebooks (name, notebook_type, parent_id, sort_order, external_id, created_at)
                VALUES ('Unsorted', 'stack', NULL, ?, ?, ?)
                RETURNING id
            """, [len(stack_keys), f"stack:{UNSORTED_STACK_KEY}", now]).fetchone()[0]

        notebook_ids: Dict[str, int] = {}
        sort_orders: Dict[int, int] = {}
        for notebook in package.notebooks:
            parent_id = stack_ids[notebook.stack_id or UNSORTED_STACK_KEY]
            sort_order = sort_orders.get(parent_id, 0)
            sort_orders[parent_id] = sort_order + 1
            notebook_ids[notebook.id] = conn.execute("""
                INSERT INTO notebooks (name, notebook_type, parent_id, sort_order, external_id, created_at)
                VALUES (?, 'notebook', ?, ?, ?, ?)
                RETURNING id
            """, [notebook.name, parent_id, sort_order, notebook.id, now]).fetchone()[0]
        return notebook_ids

    def _insert_notes(self, conn, package: ImportPackage, notebook_ids: Dict[str, int], now: int) -> Dict[str, int]:
        note_ids: Dict[str, int] = {}
        for note in package.notes:
            created_at = note.created_at or now
            updated_at = note.updated_at or created_at
            note_id = conn.execute("""
                INSERT INTO notes (title, content, created_at, updated_at, notebook_id,
                                   external_id, meta, content_hash, content_size)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                RETURNING id
            """, [
                note.title,
                note.canonical_html,
                created_at,
                updated_at,
                notebook_ids.get(note.notebook_ref) if note.notebook_ref else None,
                note.source_id,
                json.dumps(note.meta) if note.meta else None,
                note.content_hash,
                note.content_byte_size,
            ]).fetchone()[0]
            conn.execute(
                "INSERT INTO notes_text (note_id, title, plain_text) VALUES (?, ?, ?)",
                [note_id, note.title, plain_text(note.canonical_html)],
            )
            note_ids[note.source_id] = note_id
        return note_ids

    def _insert_tags(self, conn, package: ImportPackage, now: int) -> Dict[str, int]:
        """Insert tags parents first; tags in a parent cycle are inserted as roots."""
        known = {tag.id for tag in package.tags}
        tag_ids: Dict[str, int] = {}
        pending = list(package.tags)
        while pending:
            ready = [
                tag for tag in pending
                if not tag.parent_id or tag.parent_id not in known or tag.parent_id in tag_ids
            ]
            if not ready:
                logging.warning(f"{len(pending)} tags have cyclic parents; importing them as root tags")
                ready = pending
                for tag in ready:
                    tag.parent_id = None
            for tag in ready:
                tag_ids[tag.id] = conn.execute("""
                    INSERT INTO tags (name, parent_id, external_id, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    RETURNING id
                """, [tag.name, tag_ids.get(tag.parent_id) if tag.parent_id else None, tag.id, now, now]).fetchone()[0]
            pending = [tag for tag in pending if tag.id not in tag_ids]
        return tag_ids

    def import_from_json(self, package_path: Union[str, Path], assets_dir: Union[str, Path]) -> ImportStats:
        """
        Replace the store's contents with an import package.

        Everything is written in one transaction; files/ is replaced by a copy
        of assets_dir once the transaction is committed.

        Raises:
            PersistError: If the package cannot be read or written
        """
        try:
            package = ImportPackage.model_validate_json(Path(package_path).read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise PersistError(f"Cannot read import package {package_path}: {e}") from e

        now = int(time.time())
        stats = ImportStats(attachments=len(package.attachments))
        try:
            with self._session() as conn:
                conn.begin()
                try:
                    self._clear(conn)
                    notebook_ids = self._insert_notebooks(conn, package, now)
                    note_ids = self._insert_notes(conn, package, notebook_ids, now)
                    tag_ids = self._insert_tags(conn, package, now)

                    seen = set()
                    for link in package.note_tags:
                        note_id = note_ids.get(link.note_id)
                        tag_id = tag_ids.get(link.tag_id)
                        if note_id is None or tag_id is None or (note_id, tag_id) in seen:
                            continue
                        seen.add((note_id, tag_id))
                        conn.execute("INSERT INTO note_tags (note_id, tag_id) VALUES (?, ?)", [note_id, tag_id])

                    for attachment in package.attachments:
                        note_id = note_ids.get(attachment.note_source_id or "")
                        if note_id is None or attachment.local_file is None:
                            continue
                        mime = attachment.mime or ""
                        conn.execute("""
                            INSERT INTO attachments (note_id, external_id, hash, filename, mime, size, width,
                                                     height, local_path, source_url, is_attachment,
                                                     created_at, updated_at)
                            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """, [
                            note_id,
                            attachment.source_id,
                            attachment.data_hash,
                            attachment.filename,
                            attachment.mime,
                            attachment.size,
                            attachment.width,
                            attachment.height,
                            f"files/{attachment.local_file.relative_path}",
                            attachment.source_url,
                            not mime.startswith("image/"),
                            now,
                            now,
                        ])
                    conn.commit()
                except Exception:
                    conn.rollback()
                    raise
        except duckdb.Error as e:
            raise PersistError(f"Import into {self.db_path} failed: {e}") from e

        stats.notes = len(note_ids)
        stats.notebooks = len(notebook_ids)
        stats.tags = len(tag_ids)

        try:
            if self.files_dir.exists():
                shutil.rmtree(self.files_dir)
            assets_dir = Path(assets_dir)
            if assets_dir.exists():
                shutil.copytree(assets_dir, self.files_dir)
            else:
                ensure_dir(self.files_dir)
        except OSError as e:
            raise PersistError(f"Failed to copy assets into {self.files_dir}: {e}") from e

        logging.info(
            f"Imported {stats.notes} notes, {stats.notebooks} notebooks, "
            f"{stats.tags} tags and {stats.attachments} attachments"
        )
        return stats

    def backfill(self) -> int:
        """
        Rebuild note_files from the files/ references in note content.

        Returns:
            Number of note/file links written
        """
        with self._session() as conn:
            rows = conn.execute("SELECT id, content FROM notes WHERE deleted_at IS NULL").fetchall()
            conn.begin()
            try:
                conn.execute("DELETE FROM note_files")
                written = 0
                for note_id, content in rows:
                    for file_path in sorted(set(_FILE_REF.findall(content or ""))):
                        conn.execute(
                            "INSERT INTO note_files (note_id, file_path) VALUES (?, ?)",
                            [note_id, file_path],
                        )
                        written += 1
                conn.commit()
            except Exception:
                conn.rollback()
                raise
        return written

    def get_note(self, external_id: str) -> Optional[Dict[str, Any]]:
        """
        Retrieve a note row by its source identifier.

        Returns:
            Dict of the note's columns, or None if not found
        """
        with self._session() as conn:
            cursor = conn.execute("SELECT * FROM notes WHERE external_id = ?", [external_id])
            row = cursor.fetchone()
            if row is None:
                return None
            columns = [column[0] for column in cursor.description]
        return dict(zip(columns, row))

    def count_rows(self, table: str) -> int:
        """Number of rows in one of the store's tables."""
        if table not in _TABLES:
            raise ValueError(f"Unknown table: {table}")
        with self._session() as conn:
            return int(conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0])
