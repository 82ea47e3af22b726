# KV_Store_DB.py
#########################################
# KV_Store_DB Library
# Durable key-value storage for the offline sync core.
#
# This library provides a `KeyValueDatabase` class that encapsulates a single SQLite
# file holding JSON documents under string keys. The sync core keeps two kinds of
# documents in it: cached snapshots of resources (`cache_<resource>`) and the ordered
# offline mutation queue (`offline_queue`).
#
# Key Features:
# - Instance-based: Each `KeyValueDatabase` object connects to a specific DB file (or ':memory:').
# - Thread-Safety: Uses thread-local storage for database connections.
# - Schema Versioning: Checks and applies schema updates upon initialization.
# - Transaction Management: Provides a context manager for atomic operations.
# - JSON values: Values are serialized with `json` and must be plain structured data.
####
import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional, Union

# --- Logging Setup ---
import logging

logger = logging.getLogger(__name__)


# --- Custom Exceptions ---
class DatabaseError(Exception):
    """Base exception for database related errors."""
    pass


class SchemaError(DatabaseError):
    """Exception for schema version mismatches or migration failures."""
    pass


# --- Database Class ---
class KeyValueDatabase:
    _CURRENT_SCHEMA_VERSION = 1

    _TABLES_SQL_V1 = """
    CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER PRIMARY KEY NOT NULL
    );
    INSERT OR IGNORE INTO schema_version (version) VALUES (0);

    CREATE TABLE IF NOT EXISTS kv_store (
        key TEXT PRIMARY KEY NOT NULL,
        value TEXT NOT NULL,
        last_modified DATETIME NOT NULL
    );
    """

    _SCHEMA_UPDATE_VERSION_SQL_V1 = "UPDATE schema_version SET version = 1 WHERE version = 0;"

    def __init__(self, db_path: Union[str, Path]):
        """
        Initializes the KeyValueDatabase instance and ensures the schema exists.

        Args:
            db_path (Union[str, Path]): The path to the SQLite database file or ':memory:'.

        Raises:
            DatabaseError: If database initialization or schema setup fails.
        """
        if isinstance(db_path, Path):
            self.is_memory_db = False
            self.db_path = db_path.expanduser().resolve()
        else:
            self.is_memory_db = (db_path == ':memory:')
            self.db_path = Path(":memory:") if self.is_memory_db else Path(db_path).expanduser().resolve()

        self.db_path_str = ':memory:' if self.is_memory_db else str(self.db_path)

        if not self.is_memory_db:
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise DatabaseError(f"Failed to create database directory {self.db_path.parent}: {e}") from e

        logger.info(f"Initializing KeyValueDatabase object for path: {self.db_path_str}")
        self._local = threading.local()

        try:
            self._initialize_schema()
        except (DatabaseError, sqlite3.Error) as e:
            logger.critical(f"FATAL: KV store initialization failed for {self.db_path_str}: {e}", exc_info=True)
            self.close_connection()
            raise DatabaseError(f"KV store initialization failed: {e}") from e

    # --- Connection Management ---
    def _get_thread_connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, 'conn', None)
        if conn is not None:
            try:
                conn.execute("SELECT 1")
                return conn
            except (sqlite3.ProgrammingError, sqlite3.OperationalError):
                logger.warning(f"Thread-local connection to {self.db_path_str} was closed. Reopening.")
                self._local.conn = None

        try:
            conn = sqlite3.connect(self.db_path_str, check_same_thread=False, timeout=10)
            conn.row_factory = sqlite3.Row
            if not self.is_memory_db:
                conn.execute("PRAGMA journal_mode=WAL;")
            self._local.conn = conn
            logger.debug(f"Opened SQLite connection to {self.db_path_str} [Thread: {threading.current_thread().name}]")
        except sqlite3.Error as e:
            logger.error(f"Failed to connect to database at {self.db_path_str}: {e}", exc_info=True)
            self._local.conn = None
            raise DatabaseError(f"Failed to connect to database '{self.db_path_str}': {e}") from e
        return conn

    def get_connection(self) -> sqlite3.Connection:
        return self._get_thread_connection()

    def close_connection(self):
        conn = getattr(self._local, 'conn', None)
        if conn is None:
            return
        self._local.conn = None
        try:
            conn.close()
            logger.debug(f"Closed connection for thread {threading.current_thread().name}.")
        except sqlite3.Error as e:
            logger.warning(f"Error closing connection: {e}")

    # --- Query Execution ---
    def execute_query(self, query: str, params: tuple = None, *, commit: bool = False) -> sqlite3.Cursor:
        conn = self.get_connection()
        try:
            cursor = conn.cursor()
            logger.debug(f"Executing Query: {query[:200]}... Params: {str(params)[:100]}...")
            cursor.execute(query, params or ())
            if commit:
                conn.commit()
            return cursor
        except sqlite3.Error as e:
            logger.error(f"Query failed: {query[:200]}... Error: {e}", exc_info=True)
            raise DatabaseError(f"Query execution failed: {e}") from e

    # --- Transaction Context ---
    @contextmanager
    def transaction(self):
        conn = self.get_connection()
        in_outer = conn.in_transaction
        try:
            if not in_outer:
                conn.execute("BEGIN")
            yield conn
            if not in_outer:
                conn.commit()
        except Exception as e:
            if not in_outer:
                logger.error(f"Transaction failed, rolling back: {type(e).__name__} - {e}")
                try:
                    conn.rollback()
                except sqlite3.Error as rb_err:
                    logger.error(f"Rollback FAILED: {rb_err}", exc_info=True)
            raise

    # --- Schema Initialization ---
    def _get_db_version(self, conn: sqlite3.Connection) -> int:
        try:
            cursor = conn.execute("SELECT version FROM schema_version LIMIT 1")
            result = cursor.fetchone()
            return result['version'] if result else 0
        except sqlite3.Error as e:
            if "no such table: schema_version" in str(e).lower():
                return 0
            raise DatabaseError(f"Could not determine schema version: {e}") from e

    def _initialize_schema(self):
        conn = self.get_connection()
        current_version = self._get_db_version(conn)
        if current_version == self._CURRENT_SCHEMA_VERSION:
            logger.debug(f"KV store schema is up to date (version {current_version}).")
            return
        if current_version > self._CURRENT_SCHEMA_VERSION:
            raise SchemaError(
                f"Database schema version ({current_version}) is newer than supported "
                f"({self._CURRENT_SCHEMA_VERSION}).")
        logger.info(f"Applying KV store schema v1 to {self.db_path_str}")
        conn.executescript(self._TABLES_SQL_V1)
        conn.execute(self._SCHEMA_UPDATE_VERSION_SQL_V1)
        conn.commit()

    # --- Key/Value Access ---
    def get_json(self, key: str, default: Any = None) -> Any:
        """Returns the decoded JSON value stored under `key`, or `default` if absent."""
        cursor = self.execute_query("SELECT value FROM kv_store WHERE key = ?", (key,))
        row = cursor.fetchone()
        if row is None:
            return default
        try:
            return json.loads(row['value'])
        except json.JSONDecodeError as e:
            raise DatabaseError(f"Stored value for key '{key}' is not valid JSON: {e}") from e

    def set_json(self, key: str, value: Any) -> None:
        """Serializes `value` as JSON and stores it under `key`, replacing any previous value."""
        try:
            encoded = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise DatabaseError(f"Value for key '{key}' is not JSON serializable: {e}") from e
        now = datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%fZ')
        with self.transaction():
            self.execute_query(
                "INSERT INTO kv_store (key, value, last_modified) VALUES (?, ?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, last_modified = excluded.last_modified",
                (key, encoded, now))

    def delete_key(self, key: str) -> bool:
        with self.transaction():
            cursor = self.execute_query("DELETE FROM kv_store WHERE key = ?", (key,))
            return cursor.rowcount > 0

    def list_keys(self, prefix: str = "") -> List[str]:
        # Escape LIKE wildcards so resource names containing '_' match literally.
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        cursor = self.execute_query(
            "SELECT key FROM kv_store WHERE key LIKE ? ESCAPE '\\' ORDER BY key", (escaped + "%",))
        return [row['key'] for row in cursor.fetchall()]

    def get_last_modified(self, key: str) -> Optional[str]:
        cursor = self.execute_query("SELECT last_modified FROM kv_store WHERE key = ?", (key,))
        row = cursor.fetchone()
        return row['last_modified'] if row else None

#
# End of KV_Store_DB.py
#######################################################################################################################
