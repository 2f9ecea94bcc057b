"""Execution service: run one task for one agent and return result text."""

from __future__ import annotations

import logging

from agent_dashboard.llm.client import LLMAdapter
from agent_dashboard.storage.models import AgentRecord, TaskRecord

logger = logging.getLogger(__name__)

EMPTY_RESULT = "Task completed with no output."


class ExecutionError(RuntimeError):
    """Raised when the execution backend cannot produce a result."""


class ExecutionService:
    """Deterministic or LLM-backed task execution.

    Calls are synchronous; the runner moves them off the event loop.
    """

    def __init__(
        self,
        *,
        mode: str = "deterministic",
        llm_adapter: LLMAdapter | None = None,
        timeout_s: float = 30.0,
        max_output_tokens: int = 600,
    ) -> None:
        self.mode = mode.lower().strip()
        self.llm_adapter = llm_adapter
        self.timeout_s = timeout_s
        self.max_output_tokens = max_output_tokens

    def run(self, agent: AgentRecord, task: TaskRecord, context: str) -> str:
        if self.mode == "llm":
            return self._run_llm(agent, task, context)
        return self._run_deterministic(agent, task, context)

    def _run_llm(self, agent: AgentRecord, task: TaskRecord, context: str) -> str:
        if self.llm_adapter is None:
            raise ExecutionError("Executor mode is 'llm' but no LLM adapter is configured.")
        system_prompt = (
            f"You are {agent.role} agent named {agent.name}. Be concise, focus on the task, "
            "and include a short summary plus suggested next steps"
        )
        user_prompt = f"Task: {task.description}\n\nContext:\n{context}"
        try:
            text = self.llm_adapter.generate_text(
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                max_output_tokens=self.max_output_tokens,
                timeout_s=self.timeout_s,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "task_exec event=llm_failed task_id=%s agent_id=%s reason=%s",
                task.id,
                agent.id,
                exc,
            )
            raise ExecutionError(str(exc) or exc.__class__.__name__) from exc
        return text or EMPTY_RESULT

    @staticmethod
    def _run_deterministic(agent: AgentRecord, task: TaskRecord, context: str) -> str:
        context_lines = len(context.splitlines()) if context else 0
        return (
            f"{agent.role} {agent.name} finished: {task.description}. "
            f"Summary: reviewed {context_lines} prior log line(s). "
            "Next steps: hand results to the next agent."
        )
