from __future__ import annotations

from typing import Any

import pytest
from fastapi.testclient import TestClient

from agent_dashboard.api.main import create_app
from agent_dashboard.config.settings import Settings
from agent_dashboard.services.notifications import NotificationBus
from agent_dashboard.services.orchestration import Orchestrator
from agent_dashboard.services.planner import Planner
from agent_dashboard.storage.memory import InMemoryDashboardStorage


class RecordingSubscriber:
    """Test-only WebSocket double that keeps every message it is sent."""

    def __init__(self, *, fail: bool = False) -> None:
        self.messages: list[dict[str, Any]] = []
        self.fail = fail

    async def send_json(self, data: Any, mode: str = "text") -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.messages.append(data)

    def types(self) -> list[str]:
        return [message["type"] for message in self.messages]


def memory_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "storage_backend": "memory",
        "planner_mode": "deterministic",
        "executor_mode": "deterministic",
        "runner_autostart": False,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def make_settings():
    return memory_settings


@pytest.fixture
def storage() -> InMemoryDashboardStorage:
    return InMemoryDashboardStorage()


@pytest.fixture
def make_subscriber() -> type[RecordingSubscriber]:
    return RecordingSubscriber


@pytest.fixture
def subscriber() -> RecordingSubscriber:
    return RecordingSubscriber()


@pytest.fixture
def orchestrator(
    storage: InMemoryDashboardStorage,
    subscriber: RecordingSubscriber,
) -> Orchestrator:
    bus = NotificationBus()
    bus.subscribe(subscriber)
    return Orchestrator(storage=storage, bus=bus, planner=Planner(mode="deterministic"))


@pytest.fixture
def client(storage: InMemoryDashboardStorage) -> TestClient:
    app = create_app(storage=storage, settings_override=memory_settings())
    with TestClient(app) as test_client:
        yield test_client
