"""SQLite storage handle for the taakl sync server.

The handle owns the database path and the server clock. It hands out
connections for reads and transactions for units of work; it holds no
account state, so one handle serves every account and is passed
explicitly to whatever needs the store.
"""

import contextlib
import logging
import sqlite3
import tempfile
from pathlib import Path
from typing import Callable, Iterator, Optional, Union

from taakl.types import StorageError, utc_now
from taakl.utils import get_taakl_home

from .schema import init_db

logger = logging.getLogger(__name__)

DEFAULT_DB_NAME = "taakl.db"


class SQLiteStorage:
    """SQLite-backed store for accounts and their work-item trees.

    Every connection runs in autocommit mode; units of work open an
    explicit ``BEGIN IMMEDIATE`` transaction so concurrent writers
    serialize on the database lock rather than on anything in-process.
    """

    # Milliseconds a connection waits on a locked database before failing
    BUSY_TIMEOUT_MS = 5000

    def __init__(
        self,
        db_path: Optional[Union[str, Path]] = None,
        clock: Optional[Callable[[], str]] = None,
    ):
        self.db_path = self._resolve_db_path(Path(db_path) if db_path is not None else None)
        self._clock = clock or utc_now

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _resolve_db_path(self, db_path: Optional[Path]) -> Path:
        """Resolve the database path, falling back to temp dir if home is not writable."""
        if db_path is not None:
            return db_path.expanduser().resolve()

        default_path = get_taakl_home() / DEFAULT_DB_NAME
        try:
            default_path.parent.mkdir(parents=True, exist_ok=True)
            return default_path
        except OSError as e:
            fallback_dir = Path(tempfile.gettempdir()) / ".taakl"
            logger.warning(f"Cannot write to {default_path.parent} ({e}), falling back to {fallback_dir}")
            return fallback_dir / DEFAULT_DB_NAME

    def _get_conn(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(self.db_path, isolation_level=None)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open database {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute(f"PRAGMA busy_timeout={self.BUSY_TIMEOUT_MS}")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextlib.contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Connection for reads and single-statement writes; always closed."""
        conn = self._get_conn()
        try:
            yield conn
        finally:
            conn.close()

    @contextlib.contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """One atomic unit of work.

        Commits when the block exits normally. Any exception rolls back
        everything done inside the block and is re-raised.
        """
        conn = self._get_conn()
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.execute("COMMIT")
        except Exception as e:
            logger.debug(f"Transaction failed, rolling back: {e}")
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def _init_db(self):
        with self.connect() as conn:
            init_db(conn)

    def now(self) -> str:
        """Current server time in the stored wall-clock form."""
        return self._clock()

    def ping(self) -> bool:
        """Check that the database answers a trivial query."""
        with self.connect() as conn:
            return conn.execute("SELECT 1").fetchone()[0] == 1

    def close(self):
        """Fold the write-ahead log back into the database file.

        Connections are per-operation, so this is the only cleanup left.
        The handle stays usable afterwards.
        """
        with self.connect() as conn:
            busy, log_frames, checkpointed = conn.execute("PRAGMA wal_checkpoint(TRUNCATE)").fetchone()
        if busy:
            logger.warning(f"WAL checkpoint of {self.db_path} incomplete ({checkpointed}/{log_frames} frames)")
