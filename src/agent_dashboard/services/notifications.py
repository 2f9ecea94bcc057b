"""Notification bus: push new records to every open WebSocket.

Delivery is at-most-once and best-effort. A subscriber that fails a send is
dropped; late subscribers get no replay.
"""

from __future__ import annotations

import logging
from typing import Any, Literal, Protocol

from fastapi import WebSocketDisconnect
from pydantic import BaseModel

from agent_dashboard.storage.models import AgentRecord, LogRecord, TaskRecord

logger = logging.getLogger(__name__)


class Subscriber(Protocol):
    async def send_json(self, data: Any, mode: str = "text") -> None: ...


class AgentCreatedEvent(BaseModel):
    type: Literal["agent_created"] = "agent_created"
    agent: AgentRecord


class TaskCreatedEvent(BaseModel):
    type: Literal["task_created"] = "task_created"
    task: TaskRecord


class TaskUpdatedEvent(BaseModel):
    type: Literal["task_updated"] = "task_updated"
    task: TaskRecord


class LogEntryEvent(BaseModel):
    type: Literal["log_entry"] = "log_entry"
    log: LogRecord


DashboardEvent = AgentCreatedEvent | TaskCreatedEvent | TaskUpdatedEvent | LogEntryEvent


class NotificationBus:
    """Tracks connected subscribers and fans events out to them."""

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    async def broadcast(self, event: DashboardEvent) -> int:
        """Send `event` to every subscriber; return how many received it."""
        message = event.model_dump(mode="json")
        delivered = 0
        # Iterate over a copy; failed subscribers are removed during the loop.
        for subscriber in list(self._subscribers):
            try:
                await subscriber.send_json(message)
            except (ConnectionError, RuntimeError, WebSocketDisconnect) as exc:
                logger.info("notify event=drop_subscriber type=%s reason=%s", event.type, exc)
                self.unsubscribe(subscriber)
                continue
            delivered += 1
        return delivered
