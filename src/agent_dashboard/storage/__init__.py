"""Storage backends and models."""

from agent_dashboard.storage.base import DashboardStorage
from agent_dashboard.storage.memory import InMemoryDashboardStorage
from agent_dashboard.storage.models import AgentRecord, LogRecord, TaskRecord
from agent_dashboard.storage.postgres import PostgresDashboardStorage

__all__ = [
    "AgentRecord",
    "DashboardStorage",
    "InMemoryDashboardStorage",
    "LogRecord",
    "PostgresDashboardStorage",
    "TaskRecord",
]
