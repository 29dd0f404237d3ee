import asyncio
import logging
import os
import sqlite3
import time
from typing import List, Optional, Tuple

from mbconsole.core.models import LogEntry

logger = logging.getLogger("mbconsole.database")

DEFAULT_DB = "mbconsole_trace.db"


class DBLogger:
    """Async-aware SQLite sink for push-channel trace lines, with WAL and pruning.

    Usage:
      recorder = DBLogger(db_path="/path/to/db")
      await recorder.start()
      recorder.enqueue(entry)
      await recorder.stop()
    """

    def __init__(self, db_path: Optional[str] = None, prune_limit_bytes: int = 10 * 1024 * 1024):
        self.db_path = db_path or DEFAULT_DB
        self.queue: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._stop = asyncio.Event()
        self.prune_limit = prune_limit_bytes
        parent = os.path.dirname(self.db_path)
        if parent:
            os.makedirs(parent, exist_ok=True)

    def _connect(self):
        conn = sqlite3.connect(self.db_path, timeout=30, isolation_level=None)
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        return conn

    def _init_schema(self, conn: sqlite3.Connection):
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS trace_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp REAL NOT NULL,
                direction TEXT NOT NULL,
                message TEXT NOT NULL
            );
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_trace_timestamp ON trace_log(timestamp);")

    async def start(self):
        def init():
            conn = self._connect()
            self._init_schema(conn)
            conn.close()
        await asyncio.get_running_loop().run_in_executor(None, init)
        self._stop.clear()
        self._task = asyncio.create_task(self._worker())

    async def stop(self):
        self._stop.set()
        if self._task:
            await self._task
            self._task = None

    def enqueue(self, entry: LogEntry):
        self.queue.put_nowait(entry)

    def fetch_recent(self, limit: int = 500) -> List[Tuple[float, str, str]]:
        """Return up to `limit` most recent rows as (timestamp, direction, message), oldest first."""
        conn = self._connect()
        try:
            cur = conn.execute(
                "SELECT timestamp, direction, message FROM trace_log ORDER BY id DESC LIMIT ?",
                (limit,),
            )
            rows = cur.fetchall()
        finally:
            conn.close()
        return list(reversed(rows))

    def _prune_if_needed(self, conn: sqlite3.Connection):
        try:
            size = os.path.getsize(self.db_path)
        except OSError:
            return
        if size <= self.prune_limit:
            return
        # delete the oldest 10% per pass
        total = conn.execute("SELECT COUNT(*) FROM trace_log").fetchone()[0]
        if total == 0:
            return
        delete_count = max(1, total // 10)
        conn.execute(
            "DELETE FROM trace_log WHERE id IN (SELECT id FROM trace_log ORDER BY timestamp ASC LIMIT ?)",
            (delete_count,),
        )
        conn.execute("VACUUM;")

    async def _worker(self):
        conn = self._connect()
        try:
            while not self._stop.is_set() or not self.queue.empty():
                batch: List[LogEntry] = []
                try:
                    # gather up to 100 items or 0.5s
                    item = await asyncio.wait_for(self.queue.get(), timeout=0.5)
                    batch.append(item)
                    while len(batch) < 100:
                        try:
                            batch.append(self.queue.get_nowait())
                        except asyncio.QueueEmpty:
                            break
                except asyncio.TimeoutError:
                    pass

                if not batch:
                    continue

                cur = conn.cursor()
                cur.execute("BEGIN IMMEDIATE;")
                try:
                    for entry in batch:
                        ts = entry.time.timestamp() if entry.time is not None else time.time()
                        cur.execute(
                            "INSERT INTO trace_log(timestamp, direction, message) VALUES (?, ?, ?)",
                            (ts, entry.direction, entry.message),
                        )
                    conn.commit()
                except sqlite3.Error:
                    logger.exception("dropping %d trace line(s)", len(batch))
                    conn.rollback()
                    continue
                finally:
                    cur.close()

                self._prune_if_needed(conn)
        finally:
            conn.close()
