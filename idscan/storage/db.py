"""
SQLite connections for the scan and backup databases.
"""
import sqlite3
import logging
from pathlib import Path
from typing import Optional, Union

from .schema import init_schema

MEMORY_DB = ":memory:"


class DBManager:
    """
    Owns one SQLite connection. `IDScanApp.open()` keeps two of these, one for
    the scan collection and one for the backup database.

    Pass ":memory:" for a throwaway database; file paths get their parent
    directory created on connect.
    """

    def __init__(self, db_path: Union[Path, str]):
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def in_memory(self) -> bool:
        return str(self.db_path) == MEMORY_DB

    def connect(self) -> sqlite3.Connection:
        if self._conn:
            return self._conn

        if not self.in_memory:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        logging.info(f"Opening scan database: {self.db_path}")
        conn = sqlite3.connect(self.db_path)
        try:
            if not self.in_memory:
                # File databases only
                conn.execute("PRAGMA journal_mode=WAL;")
                conn.execute("PRAGMA synchronous=NORMAL;")
            init_schema(conn)
        except sqlite3.Error:
            conn.close()
            raise

        self._conn = conn
        return conn

    def close(self):
        if self._conn is None:
            return
        logging.debug(f"Closing scan database: {self.db_path}")
        self._conn.close()
        self._conn = None

    def __enter__(self):
        return self.connect()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
