from enum import Enum
from io import BytesIO
import os
try:
    # A newer SQLite build than the interpreter bundles, where one is installed.
    import pysqlite3 as sqlite3
except ModuleNotFoundError:
    import sqlite3 # type: ignore
import struct
import threading
from typing import Iterator, List, Optional, Tuple
import urllib.request

from bitcoinx import pack_le_int32, pack_varbytes, read_le_int32

from .exceptions import StoreClosedError, StoreError
from .logs import logs


logger = logs.get_logger("kvstore")

# The reserved schema version slot, serialized the same way as a `version` record key.
VERSION_KEY = pack_varbytes(b"version")

RawRecord = Tuple[bytes, bytes]


class JournalModes(Enum):
    DELETE = "DELETE"
    TRUNCATE = "TRUNCATE"
    PERSIST = "PERSIST"
    MEMORY = "MEMORY"
    WAL = "WAL"
    OFF = "OFF"


class KeyValueStore:
    """
    An ordered byte key to byte value store. Keys iterate in bytewise order.

    Point operations are individually committed unless a transaction has been started with
    `txn_begin`. Engine failures raise `StoreError`.
    """

    def get_path(self) -> str:
        raise NotImplementedError

    def read(self, key: bytes) -> Optional[bytes]:
        raise NotImplementedError

    def write(self, key: bytes, value: bytes, overwrite: bool=True) -> bool:
        raise NotImplementedError

    def erase(self, key: bytes) -> bool:
        raise NotImplementedError

    def exists(self, key: bytes) -> bool:
        raise NotImplementedError

    def cursor(self, start: Optional[bytes]=None) -> Iterator[RawRecord]:
        raise NotImplementedError

    def txn_begin(self) -> bool:
        raise NotImplementedError

    def txn_commit(self) -> bool:
        raise NotImplementedError

    def txn_abort(self) -> bool:
        raise NotImplementedError

    def flush(self) -> None:
        raise NotImplementedError

    def backup_to(self, path: str) -> None:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError

    def read_version(self) -> Optional[int]:
        value = self.read(VERSION_KEY)
        if value is None:
            return None
        try:
            return read_le_int32(BytesIO(value).read)
        except struct.error:
            return None

    def write_version(self, version: int) -> bool:
        return self.write(VERSION_KEY, pack_le_int32(version))


class SqliteKeyValueStore(KeyValueStore):
    JOURNAL_MODE = JournalModes.DELETE
    CURSOR_BATCH_SIZE = 500

    def __init__(self, path: str, create: bool=True) -> None:
        if not create and not os.path.exists(path):
            raise StoreError(f"Wallet database '{path}' does not exist")

        self._path = path
        self._lock = threading.RLock()
        self._in_transaction = False
        try:
            self._connection: Optional[sqlite3.Connection] = sqlite3.connect(path,
                check_same_thread=False, isolation_level=None)
            self._connection.execute("PRAGMA busy_timeout=5000;")
            self._ensure_journal_mode(self._connection)
            self._connection.execute("CREATE TABLE IF NOT EXISTS main ("
                "key BLOB PRIMARY KEY, value BLOB NOT NULL)")
        except sqlite3.Error as e:
            raise StoreError(f"Unable to open wallet database '{path}': {e}") from e

    def _ensure_journal_mode(self, connection: sqlite3.Connection) -> None:
        cursor = connection.execute("PRAGMA journal_mode;")
        journal_mode = cursor.fetchone()[0]
        if journal_mode.upper() == self.JOURNAL_MODE.value:
            return

        logger.debug("Switching database from journal mode %s to journal mode %s",
            journal_mode.upper(), self.JOURNAL_MODE.value)
        cursor = connection.execute(f"PRAGMA journal_mode={self.JOURNAL_MODE.value};")
        journal_mode = cursor.fetchone()[0]
        if journal_mode.upper() != self.JOURNAL_MODE.value:
            logger.error("Database unable to switch from journal mode %s to journal mode %s",
                journal_mode.upper(), self.JOURNAL_MODE.value)

    def _get_connection(self) -> sqlite3.Connection:
        if self._connection is None:
            raise StoreClosedError()
        return self._connection

    def get_path(self) -> str:
        return self._path

    def read(self, key: bytes) -> Optional[bytes]:
        with self._lock:
            try:
                row = self._get_connection().execute(
                    "SELECT value FROM main WHERE key=?", (key,)).fetchone()
            except sqlite3.Error as e:
                raise StoreError(f"Read failed: {e}") from e
        return None if row is None else bytes(row[0])

    def write(self, key: bytes, value: bytes, overwrite: bool=True) -> bool:
        if overwrite:
            query = "INSERT OR REPLACE INTO main (key, value) VALUES (?, ?)"
        else:
            query = "INSERT INTO main (key, value) VALUES (?, ?)"
        with self._lock:
            try:
                self._get_connection().execute(query, (key, value))
            except sqlite3.IntegrityError:
                # The key exists and we were asked not to overwrite it.
                return False
            except sqlite3.Error as e:
                raise StoreError(f"Write failed: {e}") from e
        return True

    def erase(self, key: bytes) -> bool:
        # Erasing a key that is not present is not an error.
        with self._lock:
            try:
                self._get_connection().execute("DELETE FROM main WHERE key=?", (key,))
            except sqlite3.Error as e:
                raise StoreError(f"Erase failed: {e}") from e
        return True

    def exists(self, key: bytes) -> bool:
        with self._lock:
            try:
                row = self._get_connection().execute(
                    "SELECT 1 FROM main WHERE key=?", (key,)).fetchone()
            except sqlite3.Error as e:
                raise StoreError(f"Read failed: {e}") from e
        return row is not None

    def cursor(self, start: Optional[bytes]=None) -> Iterator[RawRecord]:
        """
        Open a forward cursor positioned at the first key that is equal to or follows `start`.

        Failure to open the cursor raises immediately, failures reading further records are
        raised from the iterator.
        """
        with self._lock:
            try:
                if start is None:
                    db_cursor = self._get_connection().execute(
                        "SELECT key, value FROM main ORDER BY key")
                else:
                    db_cursor = self._get_connection().execute(
                        "SELECT key, value FROM main WHERE key>=? ORDER BY key", (start,))
            except sqlite3.Error as e:
                raise StoreError(f"Unable to open cursor: {e}") from e
        return self._iterate_cursor(db_cursor)

    def _iterate_cursor(self, db_cursor: sqlite3.Cursor) -> Iterator[RawRecord]:
        try:
            while True:
                with self._lock:
                    try:
                        rows = db_cursor.fetchmany(self.CURSOR_BATCH_SIZE)
                    except sqlite3.Error as e:
                        raise StoreError(f"Error reading next record: {e}") from e
                if not rows:
                    break
                for key, value in rows:
                    yield bytes(key), bytes(value)
        finally:
            db_cursor.close()

    def txn_begin(self) -> bool:
        with self._lock:
            if self._in_transaction:
                return False
            try:
                self._get_connection().execute("BEGIN")
            except sqlite3.Error as e:
                logger.error("Unable to begin transaction: %s", e)
                return False
            self._in_transaction = True
        return True

    def txn_commit(self) -> bool:
        with self._lock:
            if not self._in_transaction:
                return False
            self._in_transaction = False
            try:
                self._get_connection().execute("COMMIT")
            except sqlite3.Error as e:
                logger.error("Unable to commit transaction: %s", e)
                return False
        return True

    def txn_abort(self) -> bool:
        with self._lock:
            if not self._in_transaction:
                return False
            self._in_transaction = False
            try:
                self._get_connection().execute("ROLLBACK")
            except sqlite3.Error as e:
                logger.error("Unable to abort transaction: %s", e)
                return False
        return True

    def flush(self) -> None:
        with self._lock:
            if self._in_transaction:
                return
            try:
                if self.JOURNAL_MODE == JournalModes.WAL:
                    self._get_connection().execute("PRAGMA wal_checkpoint(TRUNCATE);")
                else:
                    self._get_connection().execute("PRAGMA optimize;")
            except sqlite3.Error as e:
                raise StoreError(f"Flush failed: {e}") from e

    def backup_to(self, path: str) -> None:
        with self._lock:
            try:
                destination = sqlite3.connect(path)
                try:
                    self._get_connection().backup(destination)
                finally:
                    destination.close()
            except sqlite3.Error as e:
                raise StoreError(f"Backup to '{path}' failed: {e}") from e

    def close(self) -> None:
        with self._lock:
            if self._connection is None:
                return
            if self._in_transaction:
                self.txn_abort()
            self._connection.close()
            self._connection = None

    def is_closed(self) -> bool:
        return self._connection is None


def _open_read_only(path: str) -> sqlite3.Connection:
    uri = "file:"+ urllib.request.pathname2url(os.path.abspath(path)) +"?mode=ro"
    return sqlite3.connect(uri, uri=True, check_same_thread=False)


def verify_store_file(path: str) -> bool:
    """Shallow structural check of a store file, it does not interpret any records."""
    try:
        connection = _open_read_only(path)
    except sqlite3.Error:
        return False
    try:
        result = connection.execute("PRAGMA integrity_check;").fetchone()
        if result is None or result[0] != "ok":
            return False
        connection.execute("SELECT COUNT(*) FROM main").fetchone()
    except sqlite3.Error as e:
        logger.warning("Integrity check of '%s' failed: %s", path, e)
        return False
    finally:
        connection.close()
    return True


def salvage_store_file(path: str) -> Tuple[bool, List[RawRecord]]:
    """
    Read every record that can still be read out of a possibly damaged store file.

    Rows are fetched one at a time so that a damaged page only loses the rows within it.
    Returns whether the file could be examined at all, and the salvaged records.
    """
    try:
        connection = _open_read_only(path)
    except sqlite3.Error as e:
        logger.error("Salvage of '%s' unable to open the file: %s", path, e)
        return False, []

    records: List[RawRecord] = []
    try:
        try:
            max_rowid = connection.execute("SELECT MAX(rowid) FROM main").fetchone()[0]
        except sqlite3.Error as e:
            logger.error("Salvage of '%s' unable to locate records: %s", path, e)
            return False, []

        if max_rowid is None:
            return True, []

        skipped = 0
        for rowid in range(1, max_rowid + 1):
            try:
                row = connection.execute("SELECT key, value FROM main WHERE rowid=?",
                    (rowid,)).fetchone()
            except sqlite3.DatabaseError:
                skipped += 1
                continue
            if row is not None:
                records.append((bytes(row[0]), bytes(row[1])))
        if skipped:
            logger.warning("Salvage of '%s' skipped %d unreadable rows", path, skipped)
    finally:
        connection.close()
    return True, records
