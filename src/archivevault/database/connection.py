"""SQLite connection and initialization utilities."""

import sqlite3
import threading
from pathlib import Path

from ..core.exceptions import CatalogError
from .schema import SCHEMA_VERSION, get_init_schema


class DatabaseConnection:
    """Manage SQLite connections and schema init.

    Connections are thread-local because the async catalog runs each query on
    a worker thread via ``asyncio.to_thread``.
    """

    __slots__ = ("db_path", "_local", "_lock", "_initialized", "_connections")

    def __init__(self, db_path="./archivevault.db"):
        """Initialize connection state."""
        self.db_path = Path(db_path).expanduser()
        self._local = threading.local()
        self._lock = threading.RLock()
        self._initialized = False
        self._connections = []

    def initialize(self):
        """Initialize schema if not already initialized."""
        if self._initialized:
            return

        with self._lock:
            if self._initialized:
                return

            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)

                conn = self._get_connection()
                for statement in get_init_schema():
                    conn.execute(statement)

                conn.commit()

            except sqlite3.Error as e:
                raise CatalogError(f"Failed to initialize database: {e}")

            # refuse catalogs written by a newer release
            version = self.get_version()
            if version > SCHEMA_VERSION:
                raise CatalogError(
                    f"Database schema version {version} is newer than supported {SCHEMA_VERSION}"
                )
            self._initialized = True

    def _get_connection(self):
        """Get or create a thread-local SQLite connection."""
        if not hasattr(self._local, "connection") or self._local.connection is None:
            conn = sqlite3.connect(
                str(self.db_path), check_same_thread=False, isolation_level=None
            )
            conn.row_factory = sqlite3.Row
            self._local.connection = conn
            with self._lock:
                self._connections.append(conn)

        return self._local.connection

    def get_transaction_context(self):
        """Return a transaction context manager (BEGIN/COMMIT/ROLLBACK)."""
        return TransactionContext(self._get_connection())

    def execute(self, query, params=None):
        """Execute a single SQL statement and return the affected row count."""
        cursor = self._get_connection().cursor()
        try:
            cursor.execute(query, params or ())
            return cursor.rowcount
        except sqlite3.IntegrityError as e:
            raise CatalogError(f"Constraint violated: {e}")
        except sqlite3.Error as e:
            raise CatalogError(f"Query failed: {e}")
        finally:
            cursor.close()

    def fetch_one(self, query, params=None):
        """Fetch a single row as a dict or None."""
        cursor = self._get_connection().cursor()
        try:
            cursor.execute(query, params or ())
            row = cursor.fetchone()
            return dict(row) if row else None
        except sqlite3.Error as e:
            raise CatalogError(f"Query failed: {e}")
        finally:
            cursor.close()

    def get_version(self):
        """Return current schema version number."""
        try:
            result = self.fetch_one("SELECT MAX(version) as version FROM schema_version")
            return result["version"] if result and result["version"] else 0
        except CatalogError:
            return 0

    def close(self):
        """Close every connection opened by any thread."""
        with self._lock:
            for conn in self._connections:
                conn.close()
            self._connections = []
        self._local = threading.local()
        self._initialized = False


class TransactionContext:
    """Context manager for transactions (BEGIN/COMMIT/ROLLBACK)."""

    __slots__ = ("connection", "cursor")

    def __init__(self, connection):
        """Initialize with a SQLite connection."""
        self.connection = connection
        self.cursor = None

    def __enter__(self):
        """Begin a transaction and return a cursor."""
        self.cursor = self.connection.cursor()
        self.cursor.execute("BEGIN")
        return self.cursor

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Commit on success, rollback on error, then close cursor."""
        try:
            if exc_type is None:
                self.connection.commit()
            else:
                self.connection.rollback()
        finally:
            if self.cursor:
                self.cursor.close()


