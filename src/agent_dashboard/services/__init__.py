"""Collaborators around the task runner: planning, execution, notification."""

from agent_dashboard.services.execution import ExecutionError, ExecutionService
from agent_dashboard.services.notifications import NotificationBus
from agent_dashboard.services.orchestration import OrchestrationResult, Orchestrator
from agent_dashboard.services.planner import PlanningError, PlanResponse, Planner

__all__ = [
    "ExecutionError",
    "ExecutionService",
    "NotificationBus",
    "OrchestrationResult",
    "Orchestrator",
    "PlanResponse",
    "Planner",
    "PlanningError",
]
