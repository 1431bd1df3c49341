import copy
import json
import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional

from circulation.config import settings
from circulation.errors import PersistenceError

logger = logging.getLogger(__name__)

# Default database file.
# Priority:
# 1) LIBRARY_DB_FILE (explicit override, read through settings)
# 2) circulation.db in the working directory
DATABASE_FILE = settings.database_file

BOOKS = "books"
ISSUES = "issues"
REQUESTS = "requests"
USERS = "users"
COLLECTIONS = (BOOKS, ISSUES, REQUESTS, USERS)

Record = Dict[str, Any]


def next_id(records: Iterable[Record]) -> int:
    """max(existing ids) + 1, or 1 for an empty collection."""
    return max((int(r["id"]) for r in records), default=0) + 1


class Database:
    """Persistence port: whole collections in, whole collections out.

    ``load`` returns an empty list for a collection that was never written.
    ``save_many`` must write every collection it is given or none of them.
    ``transaction`` excludes every other writer of the same store, in any
    process, until the block ends.
    """

    @contextmanager
    def transaction(self) -> Iterator[None]:
        yield

    def load(self, name: str) -> List[Record]:
        raise NotImplementedError

    def save_many(self, collections: Dict[str, List[Record]]) -> None:
        raise NotImplementedError

    def save(self, name: str, records: List[Record]) -> None:
        self.save_many({name: records})

    def close(self) -> None:
        return None


class SQLiteDatabase(Database):
    """Collections stored as one JSON document per row in SQLite."""

    def __init__(self, db_file: Optional[str] = None, timeout: float = 5.0) -> None:
        self.db_file = db_file or DATABASE_FILE
        self.timeout = timeout
        # Connection of the transaction open on the current thread, if any
        self._local = threading.local()
        self.create_tables()

    def get_db_connection(self) -> sqlite3.Connection:
        """Open a fresh connection; callers close it."""
        conn = sqlite3.connect(self.db_file, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        return conn

    def create_tables(self) -> None:
        """Create the collections table if it does not exist yet."""
        directory = os.path.dirname(os.path.abspath(self.db_file))
        os.makedirs(directory, exist_ok=True)
        conn = None
        try:
            conn = self.get_db_connection()
            conn.execute("""
                CREATE TABLE IF NOT EXISTS collections (
                    name TEXT PRIMARY KEY,
                    records TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Could not open database {self.db_file}: {e}") from e
        finally:
            if conn is not None:
                conn.close()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Hold SQLite's write lock from the first read to the final write.

        ``BEGIN IMMEDIATE`` takes the reserved lock up front, so another
        process running the same block waits (up to ``timeout``) instead of
        reading rows that are about to change. Nested calls on one thread join
        the outer transaction.
        """
        if getattr(self._local, "conn", None) is not None:
            yield
            return
        conn = self.get_db_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            conn.close()
            raise PersistenceError(f"Could not lock {self.db_file}: {e}") from e
        self._local.conn = conn
        try:
            yield
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"Transaction on {self.db_file} failed: {e}")
            raise PersistenceError(f"Could not write to {self.db_file}: {e}") from e
        except BaseException:
            conn.rollback()
            raise
        finally:
            self._local.conn = None
            conn.close()

    def load(self, name: str) -> List[Record]:
        active = getattr(self._local, "conn", None)
        conn = active or self.get_db_connection()
        try:
            row = conn.execute(
                "SELECT records FROM collections WHERE name = ?", (name,)
            ).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Could not read collection '{name}': {e}") from e
        finally:
            if active is None:
                conn.close()
        if row is None:
            return []
        return json.loads(row["records"])

    def save_many(self, collections: Dict[str, List[Record]]) -> None:
        if not collections:
            return
        # Joins the caller's transaction, or runs one of its own
        with self.transaction():
            for name, records in collections.items():
                self._local.conn.execute(
                    """
                    INSERT INTO collections (name, records, updated_at)
                    VALUES (?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(name) DO UPDATE SET
                        records = excluded.records,
                        updated_at = excluded.updated_at
                    """,
                    (name, json.dumps(records, ensure_ascii=False)),
                )


class MemoryDatabase(Database):
    """In-process store, mostly for tests and throwaway sessions."""

    def __init__(self, initial: Optional[Dict[str, List[Record]]] = None) -> None:
        self._lock = threading.RLock()
        self._collections: Dict[str, List[Record]] = copy.deepcopy(initial or {})

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            yield

    def load(self, name: str) -> List[Record]:
        with self._lock:
            return copy.deepcopy(self._collections.get(name, []))

    def save_many(self, collections: Dict[str, List[Record]]) -> None:
        with self._lock:
            for name, records in collections.items():
                self._collections[name] = copy.deepcopy(records)


class UnitOfWork:
    """Working copies of collections for one logical operation.

    Collections are loaded lazily on first access. Nothing reaches the database
    until ``commit``, which writes every touched collection in one call.
    """

    def __init__(self, database: Database) -> None:
        self.database = database
        self._loaded: Dict[str, List[Record]] = {}
        self._dirty: set = set()

    def collection(self, name: str) -> List[Record]:
        if name not in self._loaded:
            self._loaded[name] = self.database.load(name)
        return self._loaded[name]

    def touch(self, name: str) -> None:
        self._dirty.add(name)

    @property
    def dirty(self) -> bool:
        return bool(self._dirty)

    def commit(self) -> None:
        if not self._dirty:
            return
        self.database.save_many({name: self._loaded[name] for name in self._dirty})
        self._dirty.clear()


# Legacy JSON layout: file name -> (collection, camelCase renames)
_LEGACY_FILES = {
    "books.json": (BOOKS, {}),
    "issued.json": (ISSUES, {"bookId": "book_id"}),
    "requests.json": (REQUESTS, {"bookId": "book_id"}),
    "users.json": (USERS, {}),
}


def _rename_keys(record: Record, renames: Dict[str, str]) -> Record:
    return {renames.get(k, k): v for k, v in record.items()}


def migrate_from_json(database: Database, data_dir: str) -> int:
    """Import the JSON files written by the previous service into ``database``.

    This is a one-off operation. It does nothing when the directory is missing
    or the database already holds books. Returns the number of migrated records.
    """
    from circulation.auth import hash_password

    if not os.path.isdir(data_dir):
        logger.info(f"No legacy data directory at {data_dir}, skipping migration")
        return 0
    with database.transaction():
        if database.load(BOOKS):
            logger.info("Database already populated, skipping JSON migration")
            return 0

        migrated: Dict[str, List[Record]] = {}
        for filename, (collection, renames) in _LEGACY_FILES.items():
            path = os.path.join(data_dir, filename)
            if not os.path.exists(path):
                continue
            try:
                with open(path, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (json.JSONDecodeError, IOError) as e:
                raise PersistenceError(f"Error reading {path}: {e}") from e

            records = [_rename_keys(item, renames) for item in data if isinstance(item, dict)]
            if collection == USERS:
                for user in records:
                    password = user.pop("password", None)
                    if password is not None:
                        user["password_hash"] = hash_password(password)
            migrated[collection] = records

        database.save_many(migrated)
    total = sum(len(records) for records in migrated.values())
    logger.info(f"Migrated {total} records from {data_dir}")
    return total


def initialize_database(db_file: Optional[str] = None) -> SQLiteDatabase:
    """Open the SQLite store and run the legacy migration if configured."""
    database = SQLiteDatabase(db_file)
    if settings.legacy_data_dir:
        migrate_from_json(database, settings.legacy_data_dir)
    return database
