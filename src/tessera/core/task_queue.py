"""Database-backed task queue for worker invocations.

Every unit of worker-context work (pyramid start, one tile batch) is a row
in the ``tasks`` table: a task type plus a JSON payload.  A batch that has
more work left enqueues its own continuation as a new task instead of
looping, so each invocation stays bounded and the remaining-work state lives
in the database rather than in process memory.  Pending tasks survive a
restart; tasks left ``processing`` by a crashed worker are put back by
:meth:`TaskQueue.requeue_stale`.

Tasks are claimed oldest first.  A pyramid only ever has one outstanding
continuation, so its batches run one after another even when several
workers share the queue.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel

logger = logging.getLogger(__name__)

TaskHandler = Callable[[dict[str, Any]], None]


class TaskStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class Task:
    """Represents a single queued worker invocation."""

    id: int
    task_type: str
    payload: dict[str, Any]
    status: TaskStatus
    created_at: float
    started_at: float | None
    completed_at: float | None
    error_message: str | None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Task:
        return cls(
            id=row["id"],
            task_type=row["task_type"],
            payload=json.loads(row["payload"]),
            status=TaskStatus(row["status"]),
            created_at=row["created_at"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            error_message=row["error_message"],
        )


class TaskQueue:
    """Persistent FIFO of typed tasks with registered handlers.

    Args:
        db_path: SQLite database file holding the ``tasks`` table.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._handlers: dict[str, TaskHandler] = {}
        self._initialize_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=30, isolation_level=None)
        conn.row_factory = sqlite3.Row
        return conn

    def _initialize_db(self) -> None:
        conn = self._connect()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_type TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    created_at REAL NOT NULL,
                    started_at REAL,
                    completed_at REAL,
                    error_message TEXT
                )
                """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status, id)")
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Registration and enqueueing
    # ------------------------------------------------------------------

    def register(self, task_type: str, handler: TaskHandler) -> None:
        """Register the handler invoked for tasks of *task_type*."""
        self._handlers[task_type] = handler

    def enqueue(self, task_type: str, payload: BaseModel | dict[str, Any]) -> int:
        """Add a task to the back of the queue.

        Args:
            task_type: Name a handler is registered under.
            payload: Pydantic model or plain JSON-serialisable dict.

        Returns:
            The new task id.
        """
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(mode="json")
        conn = self._connect()
        try:
            cursor = conn.execute(
                """
                INSERT INTO tasks (task_type, payload, status, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (task_type, json.dumps(payload), TaskStatus.PENDING.value, time.time()),
            )
            task_id = cursor.lastrowid
        finally:
            conn.close()
        logger.debug(f"Enqueued task {task_id} ({task_type})")
        return task_id

    # ------------------------------------------------------------------
    # Claiming and completing
    # ------------------------------------------------------------------

    def claim_next(self) -> Task | None:
        """Atomically take the oldest pending task and mark it processing."""
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT * FROM tasks WHERE status = ? ORDER BY id LIMIT 1",
                (TaskStatus.PENDING.value,),
            ).fetchone()
            if row is None:
                conn.execute("COMMIT")
                return None
            started_at = time.time()
            conn.execute(
                "UPDATE tasks SET status = ?, started_at = ? WHERE id = ?",
                (TaskStatus.PROCESSING.value, started_at, row["id"]),
            )
            conn.execute("COMMIT")
        except sqlite3.Error:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

        task = Task.from_row(row)
        task.status = TaskStatus.PROCESSING
        task.started_at = started_at
        return task

    def _finish(self, task_id: int, status: TaskStatus, error_message: str | None = None) -> None:
        conn = self._connect()
        try:
            conn.execute(
                """
                UPDATE tasks SET status = ?, completed_at = ?, error_message = ?
                WHERE id = ?
                """,
                (status.value, time.time(), error_message, task_id),
            )
        finally:
            conn.close()

    def run_next(self) -> bool:
        """Claim and execute one task.

        A handler exception marks the task ``error`` with its message; it
        never propagates, so one bad task cannot stop the worker.

        Returns:
            ``True`` if a task was executed, ``False`` if the queue was empty.
        """
        task = self.claim_next()
        if task is None:
            return False

        handler = self._handlers.get(task.task_type)
        if handler is None:
            logger.error(f"No handler registered for task {task.id} ({task.task_type})")
            self._finish(task.id, TaskStatus.ERROR, f"No handler for {task.task_type}")
            return True

        try:
            handler(task.payload)
        except Exception as e:
            logger.error(f"Task {task.id} ({task.task_type}) failed: {e}", exc_info=True)
            self._finish(task.id, TaskStatus.ERROR, str(e))
        else:
            self._finish(task.id, TaskStatus.COMPLETE)
        return True

    def run_until_empty(self, max_tasks: int | None = None) -> int:
        """Execute tasks until the queue is drained (or *max_tasks* ran).

        Continuations enqueued by a task are picked up in the same call.

        Returns:
            Number of tasks executed.
        """
        executed = 0
        while max_tasks is None or executed < max_tasks:
            if not self.run_next():
                break
            executed += 1
        return executed

    def requeue_stale(self) -> int:
        """Return tasks stuck in ``processing`` (crashed worker) to ``pending``."""
        conn = self._connect()
        try:
            cursor = conn.execute(
                "UPDATE tasks SET status = ?, started_at = NULL WHERE status = ?",
                (TaskStatus.PENDING.value, TaskStatus.PROCESSING.value),
            )
            count = cursor.rowcount
        finally:
            conn.close()
        if count:
            logger.warning(f"Requeued {count} task(s) left processing by a previous worker")
        return count

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def get(self, task_id: int) -> Task | None:
        conn = self._connect()
        try:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        finally:
            conn.close()
        return Task.from_row(row) if row else None

    def list_tasks(self, status: TaskStatus | None = None) -> list[Task]:
        conn = self._connect()
        try:
            if status is None:
                rows = conn.execute("SELECT * FROM tasks ORDER BY id").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM tasks WHERE status = ? ORDER BY id",
                    (TaskStatus(status).value,),
                ).fetchall()
        finally:
            conn.close()
        return [Task.from_row(row) for row in rows]

    def counts(self) -> dict[str, int]:
        """Return the number of tasks in each status."""
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS n FROM tasks GROUP BY status"
            ).fetchall()
        finally:
            conn.close()
        result = {status.value: 0 for status in TaskStatus}
        result.update({row["status"]: row["n"] for row in rows})
        return result


class TaskWorker(threading.Thread):
    """Daemon thread that drains a :class:`TaskQueue`.

    Args:
        queue: Queue to poll.
        poll_interval: Seconds to sleep when the queue is empty.
    """

    def __init__(self, queue: TaskQueue, poll_interval: float = 0.5) -> None:
        super().__init__(name="tessera-task-worker", daemon=True)
        self.queue = queue
        self.poll_interval = poll_interval
        self._stop_event = threading.Event()

    def run(self) -> None:
        logger.info("Task worker started")
        while not self._stop_event.is_set():
            try:
                ran = self.queue.run_next()
            except sqlite3.Error as e:
                logger.error(f"Task queue unavailable: {e}")
                ran = False
            if not ran:
                self._stop_event.wait(self.poll_interval)
        logger.info("Task worker stopped")

    def stop(self, timeout: float | None = 5.0) -> None:
        """Signal the worker to stop after its current task and wait for it."""
        self._stop_event.set()
        if self.is_alive():
            self.join(timeout)
