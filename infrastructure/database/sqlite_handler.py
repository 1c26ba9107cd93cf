import logging
import shutil
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

from infrastructure.database.ops.decisions import DecisionOperations
from infrastructure.database.ops.feedback import FeedbackOperations
from infrastructure.database.ops.jobs import JobOperations
from infrastructure.database.ops.schedules import ScheduleOperations

logger = logging.getLogger(__name__)

MEMORY_DATABASE = ":memory:"

_CORRUPTION_MARKERS = (
    "database disk image is malformed",
    "file is not a database",
    "file is encrypted or is not a database",
)


class SQLiteDatabaseHandler(
    JobOperations,
    ScheduleOperations,
    DecisionOperations,
    FeedbackOperations,
):
    """Thread-safe SQLite store for jobs, schedules, decisions and feedback.

    A file database gets one WAL-mode connection per thread. ``:memory:``
    lives inside a single connection, so that one is shared and every
    ``connection()`` block holds a lock around it.
    """

    def __init__(self, database_path: str) -> None:
        self._database_path = database_path
        self._local = threading.local()
        self._shared: Optional[sqlite3.Connection] = None
        self._shared_lock = threading.RLock()

        if not self.is_memory:
            parent = Path(database_path).parent
            if not parent.exists():
                parent.mkdir(parents=True, exist_ok=True)
                logger.info("Created database directory: %s", parent)

    @property
    def is_memory(self) -> bool:
        return self._database_path == MEMORY_DATABASE

    # --- Connections -------------------------------------------------------------
    def get_db(self) -> sqlite3.Connection:
        if self.is_memory:
            with self._shared_lock:
                if self._shared is None:
                    self._shared = self._open_connection()
                return self._shared

        existing: Optional[sqlite3.Connection] = getattr(self._local, "connection", None)
        if existing is not None:
            return existing
        try:
            opened = self._open_connection()
        except sqlite3.DatabaseError as exc:
            if not any(marker in str(exc).lower() for marker in _CORRUPTION_MARKERS):
                raise
            logger.error("Database %s is unreadable (%s); starting a fresh one", self._database_path, exc)
            self._quarantine()
            opened = self._open_connection()
        self._local.connection = opened
        return opened

    def _open_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._database_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        try:
            if not self.is_memory:
                # WAL lets status reads run while a controller writes
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("PRAGMA synchronous=NORMAL")
            # Writers from different controllers wait instead of failing
            conn.execute("PRAGMA busy_timeout=5000")
            conn.execute("PRAGMA temp_store=MEMORY")
            conn.commit()
        except sqlite3.Error:
            conn.close()
            raise
        return conn

    def _quarantine(self) -> Optional[Path]:
        """Move an unreadable database file and its WAL sidecars to ``corrupt/``."""
        original = Path(self._database_path)
        if not original.exists():
            return None

        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        target_dir = original.parent / "corrupt"
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / f"{original.stem}_corrupt_{stamp}{original.suffix or '.db'}"
        try:
            shutil.move(str(original), str(target))
            for sidecar in (Path(f"{original}-wal"), Path(f"{original}-shm")):
                if sidecar.exists():
                    shutil.move(str(sidecar), str(target_dir / f"{sidecar.name}_{stamp}"))
        except OSError as exc:
            logger.error("Could not move unreadable database %s aside: %s", original, exc)
            return None
        logger.warning("Moved unreadable database to %s", target)
        return target

    def close_db(self) -> None:
        if self.is_memory:
            with self._shared_lock:
                shared, self._shared = self._shared, None
            if shared is not None:
                shared.close()
            return
        conn: Optional[sqlite3.Connection] = getattr(self._local, "connection", None)
        if conn is not None:
            conn.close()
            del self._local.connection

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection, committing when the block exits.

        On the shared in-memory connection the lock spans the whole block.
        """
        if not self.is_memory:
            conn = self.get_db()
            try:
                yield conn
            finally:
                conn.commit()
            return

        with self._shared_lock:
            conn = self.get_db()
            try:
                yield conn
            finally:
                conn.commit()

    # --- Schema ----------------------------------------------------------------
    def create_tables(self) -> None:
        """Creates the store tables and indexes if they do not already exist."""
        with self.connection() as db:
            db.executescript(
                """
                CREATE TABLE IF NOT EXISTS jobs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    device TEXT NOT NULL,
                    session TEXT,
                    start_time TEXT NOT NULL,
                    end_time TEXT,
                    duration INTEGER,
                    conditions TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS schedules (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    device TEXT NOT NULL UNIQUE,
                    config TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS ai_decisions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    device TEXT NOT NULL,
                    date TEXT NOT NULL,
                    duration INTEGER NOT NULL,
                    temperature REAL,
                    humidity REAL,
                    forecast TEXT,
                    reasoning TEXT,
                    should_water INTEGER NOT NULL DEFAULT 1,
                    source TEXT NOT NULL DEFAULT 'llm',
                    outcome TEXT NOT NULL DEFAULT 'pending',
                    created_at TEXT NOT NULL,
                    UNIQUE(device, date)
                );

                CREATE TABLE IF NOT EXISTS user_feedback (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    feedback_type TEXT NOT NULL,
                    office_temp REAL,
                    thermostat_setpoint REAL,
                    hvac_mode TEXT,
                    temp_change_rate_15min REAL,
                    temp_change_rate_30min REAL,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_jobs_device ON jobs(device);
                CREATE INDEX IF NOT EXISTS idx_jobs_start_time ON jobs(start_time);
                CREATE INDEX IF NOT EXISTS idx_jobs_device_end ON jobs(device, end_time);
                CREATE INDEX IF NOT EXISTS idx_ai_decisions_device_date ON ai_decisions(device, date);
                CREATE INDEX IF NOT EXISTS idx_user_feedback_created ON user_feedback(created_at);
                """
            )
        logger.info("Database tables ready (%s)", self._database_path)
