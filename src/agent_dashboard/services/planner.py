"""Planning layer: turn a user goal into a small team of agents and first tasks.

Two planning styles:
1) Deterministic planning: a fixed Researcher / Coder / Builder team.
2) LLM-backed planning: the model proposes the team, then code normalizes it.

Beginner terms:
- PlanResponse: proposed agents (name + role) and tasks (agent name + text).
- Normalization: mapping free-form model output onto the closed role set and
  dropping entries the rest of the system cannot use.

The planner does not create any records; the orchestration service does.
"""

from __future__ import annotations

import logging
import os

from pydantic import BaseModel, Field

from agent_dashboard.llm.client import LLMAdapter
from agent_dashboard.storage.models import AGENT_ROLES

logger = logging.getLogger(__name__)

DEFAULT_ROLE = "Orchestrator"


class PlanningError(RuntimeError):
    """Raised when a goal cannot be turned into a usable plan."""


class PlannedAgent(BaseModel):
    name: str
    role: str


class PlannedTask(BaseModel):
    agent_name: str
    description: str


class PlanResponse(BaseModel):
    """Structured plan shared by the API and the LLM response schema."""

    agents: list[PlannedAgent] = Field(default_factory=list)
    tasks: list[PlannedTask] = Field(default_factory=list)


def build_plan(goal: str) -> PlanResponse:
    """Build a deterministic three-agent plan for `goal`.

    Useful offline and as a predictable baseline in tests.
    """
    goal_text = goal.strip()
    return PlanResponse(
        agents=[
            PlannedAgent(name="Scout", role="Researcher"),
            PlannedAgent(name="Forge", role="Coder"),
            PlannedAgent(name="Mason", role="Builder"),
        ],
        tasks=[
            PlannedTask(
                agent_name="Scout",
                description=f"Research requirements and prior art for: {goal_text}",
            ),
            PlannedTask(
                agent_name="Forge",
                description=f"Draft the core implementation for: {goal_text}",
            ),
            PlannedTask(
                agent_name="Mason",
                description=f"Assemble and package a working deliverable for: {goal_text}",
            ),
        ],
    )


class LLMPlanner:
    """Planner that asks an LLM for a structured PlanResponse.

    Model output is never trusted directly: roles are mapped onto the closed
    role set and the team size is capped.
    """

    def __init__(
        self,
        *,
        llm_adapter: LLMAdapter,
        timeout_s: float = 30.0,
        max_agents: int = 5,
    ) -> None:
        self.llm_adapter = llm_adapter
        self.timeout_s = timeout_s
        self.max_agents = max_agents

    def build_plan(self, goal: str) -> PlanResponse:
        system_prompt = (
            "You are the Master Orchestrator. Decompose user goals into a small team of "
            f"specialized agents (3-{self.max_agents} max) and their first tasks."
        )
        user_prompt = (
            f'User Request: "{goal}"\n\n'
            "Return a JSON object with { agents: [{ name, role }], "
            "tasks: [{ agent_name, description }] }. "
            "Roles may include Coder, Stylist, Researcher, Builder."
        )
        plan = self.llm_adapter.generate_structured(
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            response_model=PlanResponse,
            timeout_s=self.timeout_s,
        )
        return normalize_plan(plan, max_agents=self.max_agents)


def normalize_plan(plan: PlanResponse, *, max_agents: int) -> PlanResponse:
    """Clamp a model-produced plan to what the dashboard can realize."""
    agents: list[PlannedAgent] = []
    seen_names: set[str] = set()
    for agent in plan.agents:
        name = agent.name.strip()
        if not name or name in seen_names:
            continue
        if len(agents) >= max_agents:
            logger.warning("plan_normalize event=drop_agent name=%s reason=max_agents", name)
            continue
        seen_names.add(name)
        agents.append(PlannedAgent(name=name, role=normalize_role(agent.role)))

    tasks = [
        PlannedTask(agent_name=task.agent_name.strip(), description=task.description.strip())
        for task in plan.tasks
        if task.description.strip()
    ]
    return PlanResponse(agents=agents, tasks=tasks)


def normalize_role(raw_role: str) -> str:
    """Match a role case-insensitively; unknown roles become Orchestrator."""
    lowered = raw_role.strip().lower()
    for role in AGENT_ROLES:
        if role.lower() == lowered:
            return role
    logger.warning("plan_normalize event=unknown_role role=%s fallback=%s", raw_role, DEFAULT_ROLE)
    return DEFAULT_ROLE


class Planner:
    """Route planning requests to the deterministic or LLM planner."""

    def __init__(
        self,
        *,
        mode: str = "deterministic",
        llm_adapter: LLMAdapter | None = None,
        timeout_s: float = 30.0,
        max_agents: int = 5,
    ) -> None:
        self.mode = mode.lower().strip()
        self.max_agents = max_agents
        self.llm_planner = (
            LLMPlanner(llm_adapter=llm_adapter, timeout_s=timeout_s, max_agents=max_agents)
            if llm_adapter
            else None
        )

    def build_plan(self, goal: str) -> PlanResponse:
        if not goal.strip():
            raise ValueError("goal is required")
        if self.mode == "llm":
            if self.llm_planner is None:
                raise PlanningError("Planner mode is 'llm' but no LLM adapter is configured.")
            if _trace_enabled():
                logger.warning("LLM trace planner mode=llm action=attempt_build_plan")
            try:
                return self.llm_planner.build_plan(goal)
            except Exception as exc:  # noqa: BLE001
                raise PlanningError(f"LLM planner failed: {exc}") from exc
        return normalize_plan(build_plan(goal), max_agents=self.max_agents)


def _trace_enabled() -> bool:
    return os.getenv("AGENT_DASHBOARD_LLM_TRACE", "0").strip() == "1"
