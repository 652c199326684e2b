"""
Encrypted settings store.

SQLite-backed key-value table where every value is sealed with the
DatabaseCipher (server key) before it is written. Plaintext values never
reach the database file and are never logged.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

from config import DATABASE_FILE_NAME
from security.encryption import DatabaseCipher
from security.errors import AuthError, NotFoundError, StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCHEMA = """
CREATE TABLE IF NOT EXISTS settings (
    key        VARCHAR(255) PRIMARY KEY,
    value      TEXT NOT NULL,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

-- updated_at is maintained by UPSERT_SQL; older databases may still carry a trigger
DROP TRIGGER IF EXISTS settings_updated_at;
"""

PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA busy_timeout=5000",
    "PRAGMA cache_size=-64000",  # 64MB cache
    "PRAGMA temp_store=MEMORY",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA foreign_keys=ON",
)

UPSERT_SQL = """
INSERT INTO settings (key, value, created_at, updated_at)
VALUES (?, ?, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
ON CONFLICT(key) DO UPDATE SET
    value = excluded.value,
    updated_at = CURRENT_TIMESTAMP
"""


@dataclass
class SettingsSnapshot:
    """Result of a bulk read: decrypted values plus keys that failed to open."""
    values: dict[str, str] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)


@contextmanager
def _storage_errors(action: str):
    """Translate sqlite3 errors into StorageError."""
    try:
        yield
    except sqlite3.Error as e:
        raise StorageError(f"failed to {action}: {e}") from e


class SettingsStore:
    """Encrypted key-value settings backed by SQLite."""

    def __init__(self, server_key: bytes, data_dir: Path):
        """
        Open (or create) the settings database.

        Args:
            server_key: 32-byte server key for the database domain
            data_dir: Directory holding the database file

        Raises:
            KeyMaterialError: If the server key is not 32 bytes
            StorageError: If the database cannot be opened
        """
        # Validate the key before touching the disk
        self._cipher = DatabaseCipher(server_key)
        self._lock = threading.RLock()
        self._conn: Optional[sqlite3.Connection] = None

        data_dir = Path(data_dir)
        self.db_path = data_dir / DATABASE_FILE_NAME

        try:
            data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"failed to create data directory: {e}") from e

        with _storage_errors("open database"):
            self._conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                isolation_level=None,  # transactions are explicit
                timeout=5.0,
            )

        try:
            with _storage_errors("initialize database"):
                for pragma in PRAGMAS:
                    self._conn.execute(pragma)
                self._conn.executescript(SCHEMA)
        except StorageError:
            self._conn.close()
            self._conn = None
            raise

        logger.info(f"Settings database ready at {self.db_path}")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def __enter__(self) -> "SettingsStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def ping(self) -> bool:
        """Check that the database connection is alive."""
        with self._lock:
            if self._conn is None:
                return False
            try:
                self._conn.execute("SELECT 1").fetchone()
            except sqlite3.Error:
                return False
            return True

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageError("database connection is closed")
        return self._conn

    # ------------------------------------------------------------------
    # Row helpers (caller holds the lock)
    # ------------------------------------------------------------------

    def _get(self, key: str) -> str:
        with _storage_errors("query setting"):
            row = self._connection().execute(
                "SELECT value FROM settings WHERE key = ?", (key,)
            ).fetchone()

        if row is None:
            raise NotFoundError(key)

        return self._cipher.open(row[0]).decode("utf-8")

    def _set(self, key: str, value: str) -> None:
        sealed = self._cipher.seal(value.encode("utf-8"))
        with _storage_errors("set setting"):
            self._connection().execute(UPSERT_SQL, (key, sealed))

    def _delete(self, key: str) -> None:
        with _storage_errors("delete setting"):
            cursor = self._connection().execute(
                "DELETE FROM settings WHERE key = ?", (key,)
            )
        if cursor.rowcount == 0:
            raise NotFoundError(key)

    def _exists(self, key: str) -> bool:
        with _storage_errors("check setting existence"):
            row = self._connection().execute(
                "SELECT EXISTS(SELECT 1 FROM settings WHERE key = ?)", (key,)
            ).fetchone()
        return bool(row[0])

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, key: str) -> str:
        """
        Get a decrypted setting value.

        Raises:
            NotFoundError: If the key does not exist
            AuthError: If the stored value does not open under the current key.
                This usually means the server key was rotated without
                re-encrypting existing rows.
        """
        with self._lock:
            return self._get(key)

    def set(self, key: str, value: str) -> None:
        """Insert or replace a setting (value is encrypted before writing)."""
        with self._lock:
            self._set(key, value)

    def delete(self, key: str) -> None:
        """
        Delete a setting.

        Raises:
            NotFoundError: If the key did not exist
        """
        with self._lock:
            self._delete(key)

    def exists(self, key: str) -> bool:
        """Check whether a setting key exists."""
        with self._lock:
            return self._exists(key)

    def count(self) -> int:
        """Number of stored settings."""
        with self._lock:
            with _storage_errors("count settings"):
                row = self._connection().execute("SELECT COUNT(*) FROM settings").fetchone()
        return int(row[0])

    def list_all_detailed(self) -> SettingsSnapshot:
        """
        Read every setting.

        Rows that fail to decrypt are left out of the values and reported in
        SettingsSnapshot.skipped. One corrupt row does not block the rest.
        """
        with self._lock:
            with _storage_errors("query settings"):
                rows = self._connection().execute(
                    "SELECT key, value FROM settings ORDER BY key"
                ).fetchall()

        snapshot = SettingsSnapshot()
        for key, sealed in rows:
            try:
                snapshot.values[key] = self._cipher.open(sealed).decode("utf-8")
            except (AuthError, UnicodeDecodeError):
                logger.warning(f"Failed to decrypt setting {key!r}, skipping")
                snapshot.skipped.append(key)

        return snapshot

    def list_all(self) -> dict[str, str]:
        """Decrypted map of all readable settings (see list_all_detailed)."""
        return self.list_all_detailed().values

    def run_in_transaction(self, body: Callable[["SettingsTransaction"], T]) -> T:
        """
        Run body inside a single atomic transaction.

        Any exception raised by body (including KeyboardInterrupt) rolls the
        transaction back and is re-raised unchanged.

        Args:
            body: Callable receiving a SettingsTransaction handle

        Returns:
            Whatever body returns
        """
        with self._lock:
            conn = self._connection()
            with _storage_errors("begin transaction"):
                conn.execute("BEGIN IMMEDIATE")

            tx = SettingsTransaction(self)
            try:
                result = body(tx)
            except BaseException:
                self._rollback(conn)
                raise
            finally:
                tx._active = False

            try:
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                self._rollback(conn)
                raise StorageError(f"failed to commit transaction: {e}") from e

            return result

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            logger.error(f"Failed to rollback transaction: {e}")


class SettingsTransaction:
    """Handle passed to run_in_transaction bodies."""

    def __init__(self, store: SettingsStore):
        self._store = store
        self._active = True

    def _check(self) -> SettingsStore:
        if not self._active:
            raise StorageError("transaction is no longer active")
        return self._store

    def get(self, key: str) -> str:
        return self._check()._get(key)

    def set(self, key: str, value: str) -> None:
        self._check()._set(key, value)

    def delete(self, key: str) -> None:
        self._check()._delete(key)

    def exists(self, key: str) -> bool:
        return self._check()._exists(key)

    def set_many(self, values: dict[str, Any]) -> None:
        """Upsert several settings; values are converted with str()."""
        store = self._check()
        for key, value in values.items():
            store._set(key, str(value))
