"""Serialized task runner.

The runner polls the task list on a fixed interval and executes at most one
pending task at a time, process-wide. Each execution is bracketed by log
lines, and those log lines are the only context handed to later executions
for the same agent.

Beginner terms:
- Tick: one evaluation of "is there something to run, and may I run it?".
- In-flight guard: a flag that is set while a task executes; a tick that sees
  it set does nothing.
- Orphaned task: a pending task whose agent id matches no stored agent.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Collection, Sequence
from typing import Any, Literal

from agent_dashboard.services.execution import ExecutionService
from agent_dashboard.services.orchestration import Orchestrator
from agent_dashboard.storage.models import AgentRecord, LogLevel, TaskRecord, TaskStatus

logger = logging.getLogger(__name__)

TickOutcome = Literal["busy", "idle", "orphaned", "completed", "failed"]
OrphanPolicy = Literal["skip", "fail"]

RESULT_PREVIEW_CHARS = 100


def select_next_task(
    tasks: Sequence[TaskRecord],
    finished: Collection[str] = (),
) -> TaskRecord | None:
    """First pending task in the given (newest-first) order.

    Ids in `finished` already reached a terminal state in this process and are
    skipped even when the store still reports them as pending.
    """
    for task in tasks:
        if task.status == "pending" and task.id not in finished:
            return task
    return None


def build_context(messages: Sequence[str], *, max_messages: int, max_chars: int) -> str:
    """Newline-join the most recent messages, oldest first, within both limits.

    Whole messages are dropped from the oldest side. If the newest message
    alone exceeds `max_chars`, only its tail is kept.
    """
    recent = list(messages)[-max_messages:] if max_messages > 0 else []
    kept: list[str] = []
    total = 0
    for message in reversed(recent):
        extra = len(message) + (1 if kept else 0)
        if total + extra > max_chars:
            if not kept:
                kept.append(message[-max_chars:])
            break
        kept.append(message)
        total += extra
    kept.reverse()
    return "\n".join(kept)


def completion_message(result: str) -> str:
    return f"Task Completed: {result[:RESULT_PREVIEW_CHARS]}..."


def failure_message(exc: BaseException) -> str:
    return f"Task Failed: {str(exc) or 'Unknown error'}"


class TaskRunner:
    """Single-permit poller over the task list."""

    def __init__(
        self,
        *,
        orchestrator: Orchestrator,
        execution: ExecutionService,
        poll_interval_s: float = 2.0,
        orphan_policy: OrphanPolicy = "skip",
        context_max_messages: int = 50,
        context_max_chars: int = 8000,
    ) -> None:
        self.orchestrator = orchestrator
        self.execution = execution
        self.poll_interval_s = poll_interval_s
        self.orphan_policy = orphan_policy
        self.context_max_messages = context_max_messages
        self.context_max_chars = context_max_chars
        self.ticks = 0
        self.current_task_id: str | None = None
        self._in_flight = False
        # Task ids this runner has moved to a terminal state. Guards against
        # re-running a task whose status write did not reach the store.
        self._finished: set[str] = set()
        self._loop_task: asyncio.Task[None] | None = None

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def status(self) -> dict[str, Any]:
        return {
            "in_flight": self._in_flight,
            "current_task_id": self.current_task_id,
            "poll_interval_s": self.poll_interval_s,
            "orphan_policy": self.orphan_policy,
            "loop_running": self.running,
            "ticks": self.ticks,
        }

    async def tick(self) -> TickOutcome:
        """Run at most one pending task."""
        self.ticks += 1
        # Check-and-set happens with no await in between, so two ticks on the
        # same event loop cannot both pass the guard.
        if self._in_flight:
            logger.debug("task_runner event=tick_skipped reason=in_flight")
            return "busy"
        self._in_flight = True
        try:
            storage = self.orchestrator.storage
            tasks = await asyncio.to_thread(storage.list_tasks)
            task = select_next_task(tasks, self._finished)
            if task is None:
                return "idle"
            agent = await asyncio.to_thread(storage.get_agent, task.agent_id)
            if agent is None:
                return await self._handle_orphan(task)
            return await self._execute(task, agent)
        finally:
            self.current_task_id = None
            self._in_flight = False

    async def _handle_orphan(self, task: TaskRecord) -> TickOutcome:
        if self.orphan_policy == "fail":
            logger.warning(
                "task_run event=orphan_failed task_id=%s agent_id=%s",
                task.id,
                task.agent_id,
            )
            self._finished.add(task.id)
            await self._record_outcome(
                task,
                agent_id=task.agent_id,
                message=f"Task Failed: agent {task.agent_id} not found",
                level="error",
                status="failed",
            )
            return "failed"
        # Skipping leaves the task pending; it stays first in line and blocks
        # every later pending task until its agent appears.
        logger.warning(
            "task_run event=orphan_skipped task_id=%s agent_id=%s",
            task.id,
            task.agent_id,
        )
        return "orphaned"

    async def _execute(self, task: TaskRecord, agent: AgentRecord) -> TickOutcome:
        self.current_task_id = task.id
        # Context is the agent's history before this run's own log lines.
        logs = await asyncio.to_thread(self.orchestrator.storage.list_logs, agent.id)
        messages = [log.message for log in logs]
        context = build_context(
            messages,
            max_messages=self.context_max_messages,
            max_chars=self.context_max_chars,
        )
        logger.info(
            "task_run event=start task_id=%s agent_id=%s context_chars=%d",
            task.id,
            agent.id,
            len(context),
        )
        try:
            await self.orchestrator.append_log(agent.id, f"Starting task: {task.description}")
            result = await asyncio.to_thread(self.execution.run, agent, task, context)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "task_run event=failed task_id=%s agent_id=%s reason=%s",
                task.id,
                agent.id,
                exc,
            )
            self._finished.add(task.id)
            await self._record_outcome(
                task,
                agent_id=agent.id,
                message=failure_message(exc),
                level="error",
                status="failed",
            )
            return "failed"

        self._finished.add(task.id)
        await self._record_outcome(
            task,
            agent_id=agent.id,
            message=completion_message(result),
            level="success",
            status="completed",
            result=result,
        )
        logger.info(
            "task_run event=completed task_id=%s agent_id=%s result_chars=%d",
            task.id,
            agent.id,
            len(result),
        )
        return "completed"

    async def _record_outcome(
        self,
        task: TaskRecord,
        *,
        agent_id: str,
        message: str,
        level: LogLevel,
        status: TaskStatus,
        result: str | None = None,
    ) -> None:
        """Write the closing log line and terminal status.

        A store error here is logged, not raised: the task already ran and is
        remembered in `_finished`, so it will not be picked again.
        """
        try:
            await self.orchestrator.append_log(agent_id, message, level)
        except Exception:  # noqa: BLE001
            logger.exception("task_run event=log_failed task_id=%s status=%s", task.id, status)
        try:
            await self.orchestrator.update_task_status(task.id, status=status, result=result)
        except Exception:  # noqa: BLE001
            logger.exception("task_run event=persist_failed task_id=%s status=%s", task.id, status)

    async def run_forever(self) -> None:
        """Tick, then sleep `poll_interval_s`, until cancelled."""
        logger.info("task_runner event=started poll_interval_s=%s", self.poll_interval_s)
        while True:
            try:
                await self.tick()
            except Exception:  # noqa: BLE001
                # A broken store or bus must not stop the loop.
                logger.exception("task_runner event=tick_error")
            await asyncio.sleep(self.poll_interval_s)

    def start(self) -> None:
        if self.running:
            return
        self._loop_task = asyncio.create_task(self.run_forever())

    async def stop(self) -> None:
        loop_task = self._loop_task
        self._loop_task = None
        if loop_task is None:
            return
        loop_task.cancel()
        try:
            await loop_task
        except asyncio.CancelledError:
            pass
        logger.info("task_runner event=stopped ticks=%d", self.ticks)
