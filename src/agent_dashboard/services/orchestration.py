"""Record agents, tasks, and log lines, and broadcast each write.

`Orchestrator` is the single write path used by both the HTTP routes and the
task runner, so every persisted change reaches connected dashboards.
Store calls run in worker threads so a slow database never stalls the event
loop that serves WebSockets.
"""

from __future__ import annotations

import asyncio
import logging

from pydantic import BaseModel, Field

from agent_dashboard.services.notifications import (
    AgentCreatedEvent,
    LogEntryEvent,
    NotificationBus,
    TaskCreatedEvent,
    TaskUpdatedEvent,
)
from agent_dashboard.services.planner import Planner
from agent_dashboard.storage.base import DashboardStorage
from agent_dashboard.storage.models import (
    AgentRecord,
    AgentRole,
    AgentStatus,
    LogLevel,
    LogRecord,
    TaskRecord,
    TaskStatus,
)

logger = logging.getLogger(__name__)


class OrchestrationResult(BaseModel):
    """Records created while realizing one goal."""

    goal: str
    agents: list[AgentRecord] = Field(default_factory=list)
    tasks: list[TaskRecord] = Field(default_factory=list)


class Orchestrator:
    def __init__(
        self,
        *,
        storage: DashboardStorage,
        bus: NotificationBus,
        planner: Planner,
    ) -> None:
        self.storage = storage
        self.bus = bus
        self.planner = planner

    async def create_agent(
        self,
        *,
        name: str,
        role: AgentRole,
        status: AgentStatus = "idle",
        agent_id: str | None = None,
    ) -> AgentRecord:
        agent = await asyncio.to_thread(
            self.storage.create_agent,
            name=name,
            role=role,
            status=status,
            agent_id=agent_id,
        )
        await self.bus.broadcast(AgentCreatedEvent(agent=agent))
        return agent

    async def create_task(
        self,
        *,
        agent_id: str,
        description: str,
        status: TaskStatus = "pending",
        task_id: str | None = None,
    ) -> TaskRecord:
        task = await asyncio.to_thread(
            self.storage.create_task,
            agent_id=agent_id,
            description=description,
            status=status,
            task_id=task_id,
        )
        await self.bus.broadcast(TaskCreatedEvent(task=task))
        return task

    async def append_log(self, agent_id: str, message: str, level: LogLevel = "info") -> LogRecord:
        log = await asyncio.to_thread(self.storage.append_log, agent_id, message, level)
        await self.bus.broadcast(LogEntryEvent(log=log))
        return log

    async def update_task_status(
        self,
        task_id: str,
        *,
        status: TaskStatus,
        result: str | None = None,
    ) -> TaskRecord:
        task = await asyncio.to_thread(
            self.storage.update_task,
            task_id,
            status=status,
            result=result,
        )
        await self.bus.broadcast(TaskUpdatedEvent(task=task))
        return task

    async def orchestrate(self, goal: str) -> OrchestrationResult:
        """Plan `goal`, then create its agents and their pending tasks."""
        goal_text = goal.strip()
        if not goal_text:
            raise ValueError("goal is required")

        # Planning may block on the LLM; keep the event loop free.
        plan = await asyncio.to_thread(self.planner.build_plan, goal_text)
        logger.info(
            "orchestrate event=plan_built agents=%d tasks=%d",
            len(plan.agents),
            len(plan.tasks),
        )

        result = OrchestrationResult(goal=goal_text)
        agents_by_name: dict[str, AgentRecord] = {}
        for planned in plan.agents:
            agent = await self.create_agent(name=planned.name, role=planned.role)
            agents_by_name[agent.name] = agent
            result.agents.append(agent)
            await self.append_log(agent.id, f"Agent {agent.name} initialized as {agent.role}")

        for planned_task in plan.tasks:
            owner = agents_by_name.get(planned_task.agent_name)
            if owner is None:
                logger.warning(
                    "orchestrate event=skip_task agent_name=%s reason=unknown_agent",
                    planned_task.agent_name,
                )
                continue
            task = await self.create_task(agent_id=owner.id, description=planned_task.description)
            result.tasks.append(task)
        return result
