"""
Database service for the API.

Uses PostgreSQL when DATABASE_URL is set (credentials from backend/.env),
otherwise the recrawler's SQLite file. Rows come back as dicts either way.
"""

import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, Generator, Optional

try:
    import psycopg2
    import psycopg2.extras
    HAS_POSTGRES = True
except ImportError:
    HAS_POSTGRES = False

from catalog_config import DATABASE_FILE, USE_POSTGRES, get_database_url
from catalog_db import create_schema


def _dict_factory(cursor, row) -> Dict[str, Any]:
    return {col[0]: row[i] for i, col in enumerate(cursor.description)}


class DatabasePool:
    """
    Simple connection holder.

    Uses a single connection that is reused across requests.
    """

    def __init__(self):
        self._conn = None
        self._db_url: Optional[str] = None
        self._db_path: Optional[str] = None

    @property
    def is_postgres(self) -> bool:
        return self._db_url is not None

    @property
    def placeholder(self) -> str:
        return '%s' if self.is_postgres else '?'

    def initialize(self, db_path: Optional[str] = None) -> None:
        """Initialize the database connection (SQLite when db_path is given)."""
        url = None if db_path else get_database_url()
        if url and USE_POSTGRES and HAS_POSTGRES:
            self._db_url = url
            self._db_path = None
        else:
            self._db_url = None
            self._db_path = db_path or DATABASE_FILE
        self._connect()

    def _connect(self) -> None:
        """Establish database connection."""
        if self._conn is not None:
            try:
                self._conn.close()
            except Exception:
                pass

        if self._db_url:
            self._conn = psycopg2.connect(self._db_url)
            self._conn.autocommit = False
        else:
            # Requests are served from a threadpool
            self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
            create_schema(self._conn)
            self._conn.row_factory = _dict_factory

    def _ensure_connection(self) -> None:
        """Ensure the connection is alive, reconnect if needed."""
        if self._conn is None:
            if self._db_url is None and self._db_path is None:
                raise RuntimeError("Database not initialized")
            self._connect()
            return

        try:
            cursor = self._conn.cursor()
            cursor.execute("SELECT 1")
            cursor.close()
        except Exception as e:
            if HAS_POSTGRES and isinstance(e, (psycopg2.OperationalError, psycopg2.InterfaceError)):
                self._connect()
            elif isinstance(e, sqlite3.ProgrammingError):
                self._connect()
            else:
                raise

    @contextmanager
    def get_connection(self) -> Generator[Any, None, None]:
        """
        Get the database connection; commits on success, rolls back on error.

        Example:
            with db_pool.get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT * FROM stores")
        """
        self._ensure_connection()
        try:
            yield self._conn
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

    @contextmanager
    def get_cursor(self) -> Generator[Any, None, None]:
        """
        Get a dict-row cursor with automatic connection management.

        Example:
            with db_pool.get_cursor() as cursor:
                cursor.execute("SELECT * FROM stores")
                rows = cursor.fetchall()
                # rows is a list of dicts: [{'store_id': 1, 'store_key': 'example'}, ...]
        """
        with self.get_connection() as conn:
            if self.is_postgres:
                cursor = conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            else:
                cursor = conn.cursor()
            try:
                yield cursor
            finally:
                cursor.close()

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            try:
                self._conn.close()
            except Exception:
                pass
            self._conn = None


# Global database pool instance
db_pool = DatabasePool()
