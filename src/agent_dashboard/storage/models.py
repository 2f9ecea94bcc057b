"""Storage models shared by API, runner, and persistence backends.

Beginner terms used in this file:
- Record: one persisted row (agent, task, or log entry) as a typed model.
- Literal: restricts a field to a fixed set of allowed string values.
- Weak reference: an id that points at another record without ownership;
  the target may not exist.
"""

from __future__ import annotations

import secrets
from datetime import datetime
from typing import Literal, get_args

from pydantic import BaseModel, Field

AgentRole = Literal["Orchestrator", "Coder", "Stylist", "Researcher", "Builder"]
AgentStatus = Literal["idle", "working", "error"]
# Task lifecycle: created pending, moved exactly once to a terminal state.
TaskStatus = Literal["pending", "completed", "failed"]
LogLevel = Literal["info", "success", "error"]

AGENT_ROLES: tuple[str, ...] = get_args(AgentRole)
TERMINAL_TASK_STATUSES: frozenset[str] = frozenset({"completed", "failed"})

# Pseudo-agent id used for log lines that belong to no real agent.
SYSTEM_AGENT_ID = "system"

_ID_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


def new_record_id(length: int = 9) -> str:
    """Short random base-36 id used for agents and tasks."""
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


class AgentRecord(BaseModel):
    """Persisted agent."""

    id: str
    name: str
    role: AgentRole
    status: AgentStatus = "idle"
    created_at: datetime


class TaskRecord(BaseModel):
    """Persisted task. `agent_id` is a weak reference to an AgentRecord."""

    id: str
    agent_id: str
    description: str
    status: TaskStatus = "pending"
    result: str | None = None
    created_at: datetime
    updated_at: datetime


class LogRecord(BaseModel):
    """Append-only log line; also the execution context for later LLM calls."""

    id: int
    agent_id: str
    message: str
    level: LogLevel = "info"
    created_at: datetime


class CreateAgentRequest(BaseModel):
    """Request body for POST /api/agents."""

    id: str | None = None
    name: str = Field(min_length=1)
    role: AgentRole
    status: AgentStatus = "idle"


class CreateTaskRequest(BaseModel):
    """Request body for POST /api/tasks."""

    id: str | None = None
    agent_id: str = Field(min_length=1)
    description: str = Field(min_length=1)
    status: TaskStatus = "pending"


class AppendLogRequest(BaseModel):
    """Request body for POST /api/logs."""

    agent_id: str = Field(min_length=1)
    message: str
    level: LogLevel = "info"
