"""In-memory storage backend for tests and local demos."""

from __future__ import annotations

import threading
from datetime import UTC, datetime

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


class InMemoryDashboardStorage:
    """Dict-backed implementation; insertion order stands in for creation time."""

    def __init__(self) -> None:
        self._agents: dict[str, AgentRecord] = {}
        self._tasks: dict[str, TaskRecord] = {}
        self._logs: list[LogRecord] = []
        self._next_log_id = 1
        # Callers reach the store from worker threads.
        self._lock = threading.Lock()

    def migrate(self) -> None:
        return None

    def create_agent(
        self,
        *,
        name: str,
        role: AgentRole,
        status: AgentStatus = "idle",
        agent_id: str | None = None,
    ) -> AgentRecord:
        record = AgentRecord(
            id=agent_id or new_record_id(),
            name=name,
            role=role,
            status=status,
            created_at=datetime.now(UTC),
        )
        with self._lock:
            if record.id in self._agents:
                raise ValueError(f"Agent {record.id} already exists")
            self._agents[record.id] = record
        return record.model_copy()

    def list_agents(self) -> list[AgentRecord]:
        with self._lock:
            return [agent.model_copy() for agent in reversed(self._agents.values())]

    def get_agent(self, agent_id: str) -> AgentRecord | None:
        with self._lock:
            agent = self._agents.get(agent_id)
        return agent.model_copy() if agent else None

    def create_task(
        self,
        *,
        agent_id: str,
        description: str,
        status: TaskStatus = "pending",
        task_id: str | None = None,
    ) -> TaskRecord:
        now = datetime.now(UTC)
        record = TaskRecord(
            id=task_id or new_record_id(),
            agent_id=agent_id,
            description=description,
            status=status,
            result=None,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            if record.id in self._tasks:
                raise ValueError(f"Task {record.id} already exists")
            self._tasks[record.id] = record
        return record.model_copy()

    def list_tasks(self) -> list[TaskRecord]:
        with self._lock:
            return [task.model_copy() for task in reversed(self._tasks.values())]

    def get_task(self, task_id: str) -> TaskRecord | None:
        with self._lock:
            task = self._tasks.get(task_id)
        return task.model_copy() if task else None

    def update_task(
        self,
        task_id: str,
        *,
        status: TaskStatus,
        result: str | None = None,
    ) -> TaskRecord:
        with self._lock:
            current = self._tasks.get(task_id)
            if current is None:
                raise KeyError(f"Task {task_id} does not exist")
            updated = current.model_copy(
                update={
                    "status": status,
                    "result": result if result is not None else current.result,
                    "updated_at": datetime.now(UTC),
                }
            )
            self._tasks[task_id] = updated
        return updated.model_copy()

    def append_log(self, agent_id: str, message: str, level: LogLevel = "info") -> LogRecord:
        with self._lock:
            record = LogRecord(
                id=self._next_log_id,
                agent_id=agent_id,
                message=message,
                level=level,
                created_at=datetime.now(UTC),
            )
            self._next_log_id += 1
            self._logs.append(record)
        return record.model_copy()

    def list_logs(self, agent_id: str) -> list[LogRecord]:
        with self._lock:
            return [log.model_copy() for log in self._logs if log.agent_id == agent_id]

    def recent_logs(self, limit: int = 200) -> list[LogRecord]:
        if limit <= 0:
            return []
        with self._lock:
            return [log.model_copy() for log in self._logs[-limit:]]
