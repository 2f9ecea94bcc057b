"""PostgreSQL-backed storage with automatic table migration."""

from __future__ import annotations

import threading
from datetime import UTC, datetime
from typing import Any

from agent_dashboard.storage.models import (
    AgentRecord,
    AgentRole,
    AgentStatus,
    LogLevel,
    LogRecord,
    TaskRecord,
    TaskStatus,
    new_record_id,
)


class PostgresDashboardStorage:
    """Persist agents, tasks, and log entries in PostgreSQL."""

    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise ValueError("AGENT_DASHBOARD_DATABASE_URL is required")
        self.database_url = database_url
        # Lock guards DB operations done through this storage instance.
        self._lock = threading.Lock()
        self._psycopg, self._dict_row = self._load_psycopg()

    def migrate(self) -> None:
        with self._lock, self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS dashboard_agents (
                    seq BIGSERIAL,
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    role TEXT NOT NULL,
                    status TEXT NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS dashboard_tasks (
                    seq BIGSERIAL,
                    id TEXT PRIMARY KEY,
                    agent_id TEXT NOT NULL,
                    description TEXT NOT NULL,
                    status TEXT NOT NULL,
                    result TEXT,
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_dashboard_tasks_status
                ON dashboard_tasks(status)
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS dashboard_logs (
                    id BIGSERIAL PRIMARY KEY,
                    agent_id TEXT NOT NULL,
                    message TEXT NOT NULL,
                    level TEXT NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_dashboard_logs_agent_id
                ON dashboard_logs(agent_id, id)
                """)
            conn.commit()

    def create_agent(
        self,
        *,
        name: str,
        role: AgentRole,
        status: AgentStatus = "idle",
        agent_id: str | None = None,
    ) -> AgentRecord:
        record_id = agent_id or new_record_id()
        now = datetime.now(tz=UTC)
        try:
            with self._lock, self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO dashboard_agents (id, name, role, status, created_at)
                    VALUES (%s, %s, %s, %s, %s)
                    """,
                    (record_id, name, role, status, now),
                )
                conn.commit()
        except self._psycopg.errors.UniqueViolation as exc:
            raise ValueError(f"Agent {record_id} already exists") from exc
        return AgentRecord(id=record_id, name=name, role=role, status=status, created_at=now)

    def list_agents(self) -> list[AgentRecord]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM dashboard_agents ORDER BY created_at DESC, seq DESC"
            ).fetchall()
        return [self._row_to_agent(row) for row in rows]

    def get_agent(self, agent_id: str) -> AgentRecord | None:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM dashboard_agents WHERE id = %s",
                (agent_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_agent(row)

    def create_task(
        self,
        *,
        agent_id: str,
        description: str,
        status: TaskStatus = "pending",
        task_id: str | None = None,
    ) -> TaskRecord:
        record_id = task_id or new_record_id()
        now = datetime.now(tz=UTC)
        try:
            with self._lock, self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO dashboard_tasks (
                        id,
                        agent_id,
                        description,
                        status,
                        result,
                        created_at,
                        updated_at
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s)
                    """,
                    (record_id, agent_id, description, status, None, now, now),
                )
                conn.commit()
        except self._psycopg.errors.UniqueViolation as exc:
            raise ValueError(f"Task {record_id} already exists") from exc
        return TaskRecord(
            id=record_id,
            agent_id=agent_id,
            description=description,
            status=status,
            result=None,
            created_at=now,
            updated_at=now,
        )

    def list_tasks(self) -> list[TaskRecord]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM dashboard_tasks ORDER BY created_at DESC, seq DESC"
            ).fetchall()
        return [self._row_to_task(row) for row in rows]

    def get_task(self, task_id: str) -> TaskRecord | None:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM dashboard_tasks WHERE id = %s",
                (task_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def update_task(
        self,
        task_id: str,
        *,
        status: TaskStatus,
        result: str | None = None,
    ) -> TaskRecord:
        updated_at = datetime.now(tz=UTC)
        with self._lock, self._connect() as conn:
            # COALESCE keeps an earlier result when none is supplied.
            row = conn.execute(
                """
                UPDATE dashboard_tasks
                SET status = %s,
                    result = COALESCE(%s, result),
                    updated_at = %s
                WHERE id = %s
                RETURNING *
                """,
                (status, result, updated_at, task_id),
            ).fetchone()
            conn.commit()
        if row is None:
            raise KeyError(f"Task {task_id} does not exist")
        return self._row_to_task(row)

    def append_log(self, agent_id: str, message: str, level: LogLevel = "info") -> LogRecord:
        now = datetime.now(tz=UTC)
        with self._lock, self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO dashboard_logs (agent_id, message, level, created_at)
                VALUES (%s, %s, %s, %s)
                RETURNING id
                """,
                (agent_id, message, level, now),
            ).fetchone()
            conn.commit()
        if row is None or row.get("id") is None:
            raise RuntimeError("Failed to persist log entry")
        return LogRecord(
            id=int(row["id"]),
            agent_id=agent_id,
            message=message,
            level=level,
            created_at=now,
        )

    def list_logs(self, agent_id: str) -> list[LogRecord]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM dashboard_logs
                WHERE agent_id = %s
                ORDER BY created_at ASC, id ASC
                """,
                (agent_id,),
            ).fetchall()
        return [self._row_to_log(row) for row in rows]

    def recent_logs(self, limit: int = 200) -> list[LogRecord]:
        if limit <= 0:
            return []
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM (
                    SELECT * FROM dashboard_logs ORDER BY id DESC LIMIT %s
                ) AS recent
                ORDER BY id ASC
                """,
                (limit,),
            ).fetchall()
        return [self._row_to_log(row) for row in rows]

    def _connect(self) -> Any:
        return self._psycopg.connect(self.database_url, row_factory=self._dict_row)

    @staticmethod
    def _load_psycopg() -> tuple[Any, Any]:
        try:
            import psycopg
            from psycopg.rows import dict_row
        except ImportError as exc:  # pragma: no cover
            raise RuntimeError(
                "PostgreSQL storage requires psycopg. "
                'Install with: python -m pip install "psycopg[binary]>=3.2,<4.0"'
            ) from exc
        return psycopg, dict_row

    @staticmethod
    def _parse_datetime(raw: Any) -> datetime:
        if isinstance(raw, datetime):
            return raw
        if isinstance(raw, str):
            return datetime.fromisoformat(raw)
        raise TypeError(f"Unsupported datetime value: {type(raw)!r}")

    @classmethod
    def _row_to_agent(cls, row: Any) -> AgentRecord:
        return AgentRecord(
            id=row["id"],
            name=row["name"],
            role=row["role"],
            status=row["status"],
            created_at=cls._parse_datetime(row["created_at"]),
        )

    @classmethod
    def _row_to_task(cls, row: Any) -> TaskRecord:
        return TaskRecord(
            id=row["id"],
            agent_id=row["agent_id"],
            description=row["description"],
            status=row["status"],
            result=row["result"],
            created_at=cls._parse_datetime(row["created_at"]),
            updated_at=cls._parse_datetime(row["updated_at"]),
        )

    @classmethod
    def _row_to_log(cls, row: Any) -> LogRecord:
        return LogRecord(
            id=int(row["id"]),
            agent_id=row["agent_id"],
            message=row["message"],
            level=row["level"],
            created_at=cls._parse_datetime(row["created_at"]),
        )
