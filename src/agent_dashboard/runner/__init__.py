"""Serialized task execution loop."""

from agent_dashboard.runner.task_runner import TaskRunner, TickOutcome, build_context

__all__ = ["TaskRunner", "TickOutcome", "build_context"]
