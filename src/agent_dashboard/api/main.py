"""FastAPI app entrypoint for the agent dashboard.

Beginner terms used in this file:
- Application factory: `create_app()` builds a fresh, fully wired app, which
  keeps tests isolated from each other.
- Lifespan: async context that runs on server start/stop; it starts and stops
  the background task runner.
- app.state: shared runtime objects (storage, bus, planner, runner, ...).
"""

from __future__ import annotations

import logging
import threading
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import HTMLResponse
from pydantic import BaseModel

from agent_dashboard.api.ui import render_homepage
from agent_dashboard.config.settings import Settings, get_settings
from agent_dashboard.llm.client import LLMAdapter, build_llm_adapter
from agent_dashboard.runner.task_runner import TaskRunner
from agent_dashboard.services.execution import ExecutionService
from agent_dashboard.services.notifications import NotificationBus
from agent_dashboard.services.orchestration import OrchestrationResult, Orchestrator
from agent_dashboard.services.planner import Planner, PlanningError, PlanResponse
from agent_dashboard.storage.base import DashboardStorage
from agent_dashboard.storage.memory import InMemoryDashboardStorage
from agent_dashboard.storage.models import (
    AgentRecord,
    AgentRole,
    AppendLogRequest,
    CreateAgentRequest,
    CreateTaskRequest,
    LogRecord,
    TaskRecord,
)
from agent_dashboard.storage.postgres import PostgresDashboardStorage

logger = logging.getLogger(__name__)

_STATE_LOCK = threading.Lock()


class GoalRequest(BaseModel):
    goal: str | None = None


class RunAgentPayload(BaseModel):
    id: str = ""
    name: str
    role: AgentRole


class RunTaskPayload(BaseModel):
    id: str = ""
    agent_id: str = ""
    description: str


class RunRequest(BaseModel):
    agent: RunAgentPayload | None = None
    task: RunTaskPayload | None = None
    context: str = ""


class RunResponse(BaseModel):
    result: str


def _build_storage(settings: Settings) -> DashboardStorage:
    if settings.storage_backend == "memory":
        return InMemoryDashboardStorage()
    database_url = settings.resolved_database_url()
    if not database_url:
        raise RuntimeError(
            "Missing database URL. Set AGENT_DASHBOARD_DATABASE_URL "
            "or DATABASE_URL before starting the app."
        )
    return PostgresDashboardStorage(database_url)


def _ensure_runtime_state(
    app: FastAPI,
    *,
    settings: Settings,
    storage_override: DashboardStorage | None,
    llm_adapter_override: LLMAdapter | None,
) -> None:
    if hasattr(app.state, "runner"):
        return
    # Sync routes run in a threadpool; only one of them may build the state.
    with _STATE_LOCK:
        if hasattr(app.state, "runner"):
            return
        _build_runtime_state(
            app,
            settings=settings,
            storage_override=storage_override,
            llm_adapter_override=llm_adapter_override,
        )


def _build_runtime_state(
    app: FastAPI,
    *,
    settings: Settings,
    storage_override: DashboardStorage | None,
    llm_adapter_override: LLMAdapter | None,
) -> None:
    storage = storage_override or _build_storage(settings)
    storage.migrate()

    llm_adapter = llm_adapter_override or build_llm_adapter(settings)
    # Fail fast if an LLM mode is requested without a usable adapter.
    if settings.uses_llm() and llm_adapter is None:
        raise RuntimeError(
            "LLM mode requested but no adapter is configured. "
            "Set OPENAI_API_KEY and AGENT_DASHBOARD_LLM_PROVIDER=openai."
        )

    bus = NotificationBus()
    planner = Planner(
        mode=settings.planner_mode,
        llm_adapter=llm_adapter,
        timeout_s=settings.llm_timeout_s,
        max_agents=settings.planner_max_agents,
    )
    executor = ExecutionService(
        mode=settings.executor_mode,
        llm_adapter=llm_adapter,
        timeout_s=settings.llm_timeout_s,
        max_output_tokens=settings.llm_max_output_tokens,
    )
    orchestrator = Orchestrator(storage=storage, bus=bus, planner=planner)
    runner = TaskRunner(
        orchestrator=orchestrator,
        execution=executor,
        poll_interval_s=settings.poll_interval_s,
        orphan_policy=settings.orphan_policy,
        context_max_messages=settings.context_max_messages,
        context_max_chars=settings.context_max_chars,
    )

    app.state.settings = settings
    app.state.storage = storage
    app.state.bus = bus
    app.state.planner = planner
    app.state.executor = executor
    app.state.orchestrator = orchestrator
    app.state.runner = runner


def create_app(
    *,
    storage: DashboardStorage | None = None,
    settings_override: Settings | None = None,
    llm_adapter: LLMAdapter | None = None,
) -> FastAPI:
    settings = settings_override or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _ensure_runtime_state(
            app,
            settings=settings,
            storage_override=storage,
            llm_adapter_override=llm_adapter,
        )
        if settings.runner_autostart:
            app.state.runner.start()
        try:
            yield
        finally:
            await app.state.runner.stop()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)

    # Keep test paths reliable when lifespan is not executed by the client.
    if storage is not None:
        _ensure_runtime_state(
            app,
            settings=settings,
            storage_override=storage,
            llm_adapter_override=llm_adapter,
        )

    def _orchestrator(request: Request) -> Orchestrator:
        _ensure_runtime_state(
            request.app,
            settings=settings,
            storage_override=storage,
            llm_adapter_override=llm_adapter,
        )
        return request.app.state.orchestrator

    @app.get("/health")
    @app.get("/healthz")
    @app.get("/live")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/", response_class=HTMLResponse)
    def home() -> str:
        return render_homepage(app_name=settings.app_name)

    @app.get("/api/agents", response_model=list[AgentRecord])
    def list_agents(request: Request) -> list[AgentRecord]:
        return _orchestrator(request).storage.list_agents()

    @app.post("/api/agents", response_model=AgentRecord)
    async def create_agent(payload: CreateAgentRequest, request: Request) -> AgentRecord:
        try:
            return await _orchestrator(request).create_agent(
                name=payload.name,
                role=payload.role,
                status=payload.status,
                agent_id=payload.id,
            )
        except ValueError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc

    @app.get("/api/agents/{agent_id}", response_model=AgentRecord)
    def get_agent(agent_id: str, request: Request) -> AgentRecord:
        agent = _orchestrator(request).storage.get_agent(agent_id)
        if agent is None:
            raise HTTPException(status_code=404, detail="Agent not found")
        return agent

    @app.get("/api/tasks", response_model=list[TaskRecord])
    def list_tasks(request: Request) -> list[TaskRecord]:
        return _orchestrator(request).storage.list_tasks()

    @app.get("/api/tasks/{task_id}", response_model=TaskRecord)
    def get_task(task_id: str, request: Request) -> TaskRecord:
        task = _orchestrator(request).storage.get_task(task_id)
        if task is None:
            raise HTTPException(status_code=404, detail="Task not found")
        return task

    @app.post("/api/tasks", response_model=TaskRecord)
    async def create_task(payload: CreateTaskRequest, request: Request) -> TaskRecord:
        try:
            return await _orchestrator(request).create_task(
                agent_id=payload.agent_id,
                description=payload.description,
                status=payload.status,
                task_id=payload.id,
            )
        except ValueError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc

    @app.get("/api/logs", response_model=list[LogRecord])
    def recent_logs(
        request: Request,
        limit: int = Query(default=200, ge=1, le=1000),
    ) -> list[LogRecord]:
        return _orchestrator(request).storage.recent_logs(limit)

    @app.post("/api/logs", response_model=LogRecord)
    async def append_log(payload: AppendLogRequest, request: Request) -> LogRecord:
        return await _orchestrator(request).append_log(
            payload.agent_id,
            payload.message,
            payload.level,
        )

    @app.get("/api/logs/{agent_id}", response_model=list[LogRecord])
    def agent_logs(agent_id: str, request: Request) -> list[LogRecord]:
        return _orchestrator(request).storage.list_logs(agent_id)

    @app.post("/api/ai/plan", response_model=PlanResponse)
    def plan(payload: GoalRequest, request: Request) -> PlanResponse:
        goal = (payload.goal or "").strip()
        if not goal:
            raise HTTPException(status_code=400, detail="goal is required")
        try:
            return _orchestrator(request).planner.build_plan(goal)
        except PlanningError as exc:
            logger.error("ai_plan event=failed reason=%s", exc)
            raise HTTPException(status_code=500, detail="failed to build plan") from exc

    @app.post("/api/ai/run", response_model=RunResponse)
    def run(payload: RunRequest, request: Request) -> RunResponse:
        if payload.agent is None or payload.task is None:
            raise HTTPException(status_code=400, detail="agent and task are required")
        _orchestrator(request)
        now = datetime.now(UTC)
        agent = AgentRecord(
            id=payload.agent.id,
            name=payload.agent.name,
            role=payload.agent.role,
            created_at=now,
        )
        task = TaskRecord(
            id=payload.task.id,
            agent_id=payload.task.agent_id or agent.id,
            description=payload.task.description,
            created_at=now,
            updated_at=now,
        )
        try:
            result = request.app.state.executor.run(agent, task, payload.context)
        except Exception as exc:  # noqa: BLE001
            logger.error("ai_run event=failed task_id=%s reason=%s", task.id, exc)
            raise HTTPException(status_code=500, detail="failed to execute task") from exc
        return RunResponse(result=result)

    @app.post("/api/orchestrate", response_model=OrchestrationResult)
    async def orchestrate(payload: GoalRequest, request: Request) -> OrchestrationResult:
        goal = (payload.goal or "").strip()
        if not goal:
            raise HTTPException(status_code=400, detail="goal is required")
        try:
            return await _orchestrator(request).orchestrate(goal)
        except PlanningError as exc:
            logger.error("orchestrate event=failed reason=%s", exc)
            raise HTTPException(status_code=500, detail="failed to build plan") from exc

    @app.get("/api/runner")
    def runner_status(request: Request) -> dict[str, object]:
        _orchestrator(request)
        return request.app.state.runner.status()

    @app.post("/api/runner/tick")
    async def runner_tick(request: Request) -> dict[str, object]:
        _orchestrator(request)
        runner: TaskRunner = request.app.state.runner
        outcome = await runner.tick()
        return {"outcome": outcome, **runner.status()}

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        _ensure_runtime_state(
            websocket.app,
            settings=settings,
            storage_override=storage,
            llm_adapter_override=llm_adapter,
        )
        bus: NotificationBus = websocket.app.state.bus
        await websocket.accept()
        bus.subscribe(websocket)
        try:
            # Inbound frames are ignored; reading detects the disconnect.
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            bus.unsubscribe(websocket)

    return app


# Module-level app for `uvicorn agent_dashboard.api.main:app`.
app = create_app()
