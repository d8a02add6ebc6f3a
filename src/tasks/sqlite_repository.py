# src/tasks/sqlite_repository.py — v1
"""SQLite-backed task repository (TASK_STORE_BACKEND=sqlite).

Uses stdlib sqlite3. The full task is stored as JSON; the columns used in
WHERE / ORDER BY clauses are duplicated next to it and indexed.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from pathlib import Path

from gen3d.core.errors import TaskNotFoundError
from gen3d.core.models import GenerationTask
from gen3d.tasks.repository import BaseTaskRepository

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS generation_tasks (
    task_id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    kind TEXT NOT NULL,
    status TEXT NOT NULL,
    input_hash TEXT,
    create_time TEXT NOT NULL,
    complete_time TEXT,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_tasks_user ON generation_tasks(user_id);
CREATE INDEX IF NOT EXISTS idx_tasks_input_hash ON generation_tasks(input_hash);
CREATE INDEX IF NOT EXISTS idx_tasks_kind_status ON generation_tasks(kind, status);
"""

_COLUMNS = "task_id, user_id, kind, status, input_hash, create_time, complete_time, data"


class SqliteTaskRepository(BaseTaskRepository):
    """Persistent task store in a single SQLite file."""

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = str(db_path)
        self._conn: sqlite3.Connection | None = None

    async def open(self) -> None:
        if self._conn is not None:
            return
        if self._db_path != ":memory:":
            path = Path(self._db_path).expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)
            self._db_path = str(path)
        self._conn = sqlite3.connect(self._db_path)
        self._conn.executescript(_SCHEMA)
        logger.debug("Task store opened at %s", self._db_path)

    async def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    @property
    def _db(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("SqliteTaskRepository used before open()")
        return self._conn

    @staticmethod
    def _row(task: GenerationTask) -> tuple:
        return (
            task.task_id,
            task.user_id,
            task.kind,
            task.status,
            task.input_hash,
            task.create_time.isoformat(),
            task.complete_time.isoformat() if task.complete_time else None,
            task.model_dump_json(),
        )

    def _fetch(self, where: str, params: tuple, order: str, limit: int | None) -> list[GenerationTask]:
        sql = f"SELECT data FROM generation_tasks WHERE {where} ORDER BY {order}"
        if limit is not None:
            sql += f" LIMIT {int(limit)}"
        return [
            GenerationTask.model_validate_json(row[0])
            for row in self._db.execute(sql, params).fetchall()
        ]

    async def save(self, task: GenerationTask) -> GenerationTask:
        self._db.execute(
            f"INSERT INTO generation_tasks ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            self._row(task),
        )
        self._db.commit()
        return task

    async def update(self, task: GenerationTask) -> GenerationTask:
        cursor = self._db.execute(
            """UPDATE generation_tasks
               SET status = ?, input_hash = ?, complete_time = ?, data = ?
               WHERE task_id = ?""",
            (
                task.status,
                task.input_hash,
                task.complete_time.isoformat() if task.complete_time else None,
                task.model_dump_json(),
                task.task_id,
            ),
        )
        self._db.commit()
        if cursor.rowcount == 0:
            raise TaskNotFoundError(task.task_id)
        return task

    async def find_by_task_id(self, task_id: str) -> GenerationTask | None:
        tasks = self._fetch("task_id = ?", (task_id,), "create_time", 1)
        return tasks[0] if tasks else None

    async def find_by_user_id(self, user_id: str, limit: int | None = None) -> list[GenerationTask]:
        return self._fetch("user_id = ?", (user_id,), "create_time DESC", limit)

    async def find_by_input_hash(self, input_hash: str) -> list[GenerationTask]:
        return self._fetch("input_hash = ?", (input_hash,), "create_time DESC", None)

    async def find_similar_completed_tasks(
        self, kind: str, limit: int = 50
    ) -> list[GenerationTask]:
        return self._fetch(
            "kind = ? AND status = 'COMPLETED'", (kind,), "complete_time DESC", limit
        )

    async def find_recent_completed(
        self, since: datetime, limit: int = 100
    ) -> list[GenerationTask]:
        return self._fetch(
            "status = 'COMPLETED' AND complete_time >= ?",
            (since.isoformat(),),
            "complete_time DESC",
            limit,
        )
