"""Storage interface for agents, tasks, and log entries."""

from __future__ import annotations

from typing import Protocol

from agent_dashboard.storage.models import (
    AgentRecord,
    AgentRole,
    AgentStatus,
    LogLevel,
    LogRecord,
    TaskRecord,
    TaskStatus,
)


class DashboardStorage(Protocol):
    """Ordering contract: agents/tasks newest-first, logs oldest-first."""

    def migrate(self) -> None: ...

    def create_agent(
        self,
        *,
        name: str,
        role: AgentRole,
        status: AgentStatus = "idle",
        agent_id: str | None = None,
    ) -> AgentRecord: ...

    def list_agents(self) -> list[AgentRecord]: ...

    def get_agent(self, agent_id: str) -> AgentRecord | None: ...

    def create_task(
        self,
        *,
        agent_id: str,
        description: str,
        status: TaskStatus = "pending",
        task_id: str | None = None,
    ) -> TaskRecord: ...

    def list_tasks(self) -> list[TaskRecord]: ...

    def get_task(self, task_id: str) -> TaskRecord | None: ...

    def update_task(
        self,
        task_id: str,
        *,
        status: TaskStatus,
        result: str | None = None,
    ) -> TaskRecord: ...

    def append_log(self, agent_id: str, message: str, level: LogLevel = "info") -> LogRecord: ...

    def list_logs(self, agent_id: str) -> list[LogRecord]: ...

    def recent_logs(self, limit: int = 200) -> list[LogRecord]: ...
