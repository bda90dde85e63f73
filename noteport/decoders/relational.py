"""
Read-only access to the relational note source.

The source database is opened through SQLite's URI syntax in read-only
mode, so scanning and extraction can never modify it.
"""

import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union


class RelationalStore:
    """
    Read-only SQLite connection over the source's primary store.

    Usage:
        with RelationalStore(db_path) as store:
            tables = store.list_tables()
            rows = store.select_all("SELECT * FROM Nodes_Note")
    """

    def __init__(self, db_path: Union[str, Path]):
        """
        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = Path(db_path)
        self.connection: Optional[sqlite3.Connection] = None

    def connect(self):
        """Open the database read-only."""
        self.connection = sqlite3.connect(f"file:{self.db_path.as_posix()}?mode=ro", uri=True)
        self.connection.row_factory = sqlite3.Row
        logging.debug(f"Opened relational store {self.db_path}")

    def disconnect(self):
        """Close the database connection."""
        if self.connection:
            self.connection.close()
            self.connection = None

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()

    def _require_connection(self) -> sqlite3.Connection:
        if not self.connection:
            raise RuntimeError("Database connection not established")
        return self.connection

    def list_tables(self) -> List[str]:
        """Names of all tables. Raises sqlite3.DatabaseError for a file that is not a database."""
        rows = self._require_connection().execute(
            "SELECT name FROM sqlite_master WHERE type='table'"
        ).fetchall()
        return [row["name"] for row in rows]

    def select_all(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        """Run a query and return every row as a plain dict."""
        cursor = self._require_connection().execute(sql, tuple(params))
        return [dict(row) for row in cursor.fetchall()]

    def scalar(self, sql: str, params: Sequence[Any] = ()) -> Any:
        """Run a query and return the first column of the first row, or None."""
        row = self._require_connection().execute(sql, tuple(params)).fetchone()
        if row is None:
            return None
        return row[0]
