"""
Embedded SQLite store for entities, observations, relations and memory summaries.

A single connection is shared by every caller in the process and guarded by a
re-entrant lock. Uniqueness invariants live in the schema (expression indexes
on lower-cased names and texts) so concurrent writers cannot create duplicates.
"""

import random
import sqlite3
import struct
import threading
import time
from contextlib import contextmanager
from functools import wraps
from pathlib import Path
from typing import Iterator, List, Optional

from .config import StoreConfig
from .logging_config import get_logger

logger = get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS entities (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    project_id TEXT,
    name TEXT NOT NULL,
    type TEXT NOT NULL DEFAULT 'concept',
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS ux_entities_scope_name
    ON entities(user_id, COALESCE(project_id, ''), lower(name));
CREATE INDEX IF NOT EXISTS ix_entities_scope ON entities(user_id, project_id);

CREATE TABLE IF NOT EXISTS observations (
    id TEXT PRIMARY KEY,
    entity_id TEXT NOT NULL REFERENCES entities(id) ON DELETE CASCADE,
    text TEXT NOT NULL,
    importance TEXT NOT NULL DEFAULT 'normal',
    embedding BLOB,
    is_user_edit INTEGER NOT NULL DEFAULT 0,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS ux_observations_entity_text
    ON observations(entity_id, lower(text));
CREATE INDEX IF NOT EXISTS ix_observations_user_edit ON observations(is_user_edit);

CREATE TABLE IF NOT EXISTS relations (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    project_id TEXT,
    from_entity_id TEXT NOT NULL REFERENCES entities(id) ON DELETE CASCADE,
    to_entity_id TEXT NOT NULL REFERENCES entities(id) ON DELETE CASCADE,
    type TEXT NOT NULL,
    created_at INTEGER NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS ux_relations_tuple
    ON relations(user_id, COALESCE(project_id, ''), from_entity_id, to_entity_id, lower(type));
CREATE INDEX IF NOT EXISTS ix_relations_from ON relations(from_entity_id);
CREATE INDEX IF NOT EXISTS ix_relations_to ON relations(to_entity_id);

CREATE TABLE IF NOT EXISTS memory_summaries (
    user_id TEXT NOT NULL,
    project_id TEXT,
    summary_text TEXT NOT NULL,
    entity_count_snapshot INTEGER NOT NULL DEFAULT 0,
    observation_count_snapshot INTEGER NOT NULL DEFAULT 0,
    generated_at INTEGER NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS ux_memory_summaries_scope
    ON memory_summaries(user_id, COALESCE(project_id, ''));
"""

TRANSIENT_ERRORS = ('database is locked', 'database is busy')


class StoreUnavailableError(Exception):
    """Custom exception for persistence failures."""
    pass


def pack_embedding(vector: Optional[List[float]]) -> Optional[bytes]:
    """Serialize a vector to a little-endian float32 blob (None stays None)."""
    if vector is None:
        return None
    return struct.pack(f'<{len(vector)}f', *vector)


def unpack_embedding(blob: Optional[bytes]) -> Optional[List[float]]:
    """Deserialize a float32 blob back to a list of floats."""
    if blob is None:
        return None
    return list(struct.unpack(f'<{len(blob) // 4}f', blob))


def retry_on_locked(func):
    """Decorator to retry store operations on transient lock errors.

    Works on the store itself and on any object exposing it as ``self.store``.
    Integrity errors are programming errors and are re-raised untouched; every
    other sqlite3 error becomes a StoreUnavailableError.
    """

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        store = getattr(self, 'store', self)
        attempts = max(1, store.config.retry_attempts)

        for attempt in range(attempts):
            try:
                return func(self, *args, **kwargs)
            except sqlite3.IntegrityError:
                raise
            except sqlite3.OperationalError as e:
                transient = any(marker in str(e).lower() for marker in TRANSIENT_ERRORS)
                if transient and attempt < attempts - 1:
                    logger.warning(f'Store busy in {func.__name__} (attempt {attempt + 1}/{attempts}): {e}')
                    # Exponential backoff with jitter
                    time.sleep(store.config.retry_delay * (2**attempt) + random.uniform(0, store.config.retry_delay))
                    continue
                logger.error(f'Error in {func.__name__}: {e}')
                raise StoreUnavailableError(f'Failed to {func.__name__}: {e}')
            except sqlite3.Error as e:
                logger.error(f'Error in {func.__name__}: {e}')
                raise StoreUnavailableError(f'Failed to {func.__name__}: {e}')

        raise StoreUnavailableError(f'Failed to {func.__name__} after {attempts} attempts')

    return wrapper


class SQLiteStore:
    """Process-wide handle on the SQLite database."""

    def __init__(self, config: StoreConfig):
        """
        Open (and if needed create) the database.

        Args:
            config: StoreConfig instance with the database path and retry policy
        """
        self.config = config
        self.db_path = config.db_path
        self.connection: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._depth = 0
        self._connect()
        self._init_schema()

        logger.info(f'Connected to SQLite store at {self.db_path}')

    @retry_on_locked
    def _connect(self) -> None:
        """Establish the shared connection."""
        if self.db_path != ':memory:':
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        # Transactions are managed explicitly in transaction()
        conn = sqlite3.connect(self.db_path,
                               timeout=self.config.busy_timeout_ms / 1000,
                               isolation_level=None,
                               check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute('PRAGMA journal_mode=WAL')
        conn.execute(f'PRAGMA busy_timeout={int(self.config.busy_timeout_ms)}')
        conn.execute('PRAGMA foreign_keys=ON')
        self.connection = conn

    @retry_on_locked
    def _init_schema(self) -> None:
        """Create tables and indexes if they don't exist."""
        with self._lock:
            self._require_connection().executescript(SCHEMA)

    def _require_connection(self) -> sqlite3.Connection:
        if self.connection is None:
            raise StoreUnavailableError('Store connection is closed')
        return self.connection

    def close(self) -> None:
        """Close the SQLite connection."""
        with self._lock:
            if self.connection is not None:
                self.connection.close()
                self.connection = None

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block as one write transaction.

        Nested use joins the outer transaction; only the outermost block
        commits or rolls back.
        """
        with self._lock:
            conn = self._require_connection()
            outermost = self._depth == 0
            if outermost:
                conn.execute('BEGIN IMMEDIATE')
            self._depth += 1
            try:
                yield conn
            except BaseException:
                self._depth -= 1
                if outermost and conn.in_transaction:
                    conn.execute('ROLLBACK')
                raise
            else:
                self._depth -= 1
                if outermost:
                    conn.execute('COMMIT')

    @contextmanager
    def reader(self) -> Iterator[sqlite3.Connection]:
        """Borrow the connection for read-only queries."""
        with self._lock:
            yield self._require_connection()

    def health_check(self) -> bool:
        """
        Perform a health check on the store.

        Returns:
            True if the database answers a trivial query, False otherwise
        """
        try:
            with self.reader() as conn:
                return conn.execute('SELECT 1').fetchone()[0] == 1
        except Exception as e:
            logger.error(f'SQLite store health check failed: {e}')
            return False
