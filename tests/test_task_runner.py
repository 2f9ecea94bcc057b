from __future__ import annotations

import asyncio
import threading
import time

from agent_dashboard.runner.task_runner import (
    TaskRunner,
    build_context,
    completion_message,
    select_next_task,
)
from agent_dashboard.services.notifications import NotificationBus
from agent_dashboard.services.orchestration import Orchestrator
from agent_dashboard.services.planner import Planner
from agent_dashboard.storage.memory import InMemoryDashboardStorage


class RecordingExecution:
    """Execution double that returns a fixed result or raises."""

    def __init__(self, result: str = "R", error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.calls: list[tuple[str, str, str]] = []

    def run(self, agent, task, context: str) -> str:
        self.calls.append((agent.id, task.id, context))
        if self.error is not None:
            raise self.error
        return self.result


class BlockingExecution:
    """Execution double that holds the worker thread until released."""

    def __init__(self) -> None:
        self.started = threading.Event()
        self.release = threading.Event()

    def run(self, agent, task, context: str) -> str:
        self.started.set()
        self.release.wait(timeout=5.0)
        return "done"


def _runner(orchestrator: Orchestrator, execution, **kwargs) -> TaskRunner:
    return TaskRunner(orchestrator=orchestrator, execution=execution, **kwargs)


def test_context_is_prior_agent_logs_joined_chronologically(
    orchestrator: Orchestrator,
    storage: InMemoryDashboardStorage,
) -> None:
    agent = storage.create_agent(name="Scout", role="Researcher")
    storage.append_log(agent.id, "m1")
    storage.append_log("someone-else", "not mine")
    storage.append_log(agent.id, "m2")
    storage.create_task(agent_id=agent.id, description="Find sources")
    execution = RecordingExecution()

    outcome = asyncio.run(_runner(orchestrator, execution).tick())

    assert outcome == "completed"
    assert execution.calls[0][2] == "m1\nm2"


def test_success_logs_preview_and_persists_completed_status(
    orchestrator: Orchestrator,
    storage: InMemoryDashboardStorage,
) -> None:
    agent = storage.create_agent(name="Forge", role="Coder")
    task = storage.create_task(agent_id=agent.id, description="Write the parser")
    long_result = "x" * 250

    outcome = asyncio.run(_runner(orchestrator, RecordingExecution(result=long_result)).tick())

    assert outcome == "completed"
    messages = [(log.message, log.level) for log in storage.list_logs(agent.id)]
    assert messages == [
        ("Starting task: Write the parser", "info"),
        ("Task Completed: " + "x" * 100 + "...", "success"),
    ]
    stored = storage.get_task(task.id)
    assert stored is not None
    assert stored.status == "completed"
    assert stored.result == long_result


def test_short_result_still_gets_ellipsis() -> None:
    assert completion_message("R") == "Task Completed: R..."


def test_failure_logs_error_and_marks_task_failed(
    orchestrator: Orchestrator,
    storage: InMemoryDashboardStorage,
) -> None:
    agent = storage.create_agent(name="Mason", role="Builder")
    task = storage.create_task(agent_id=agent.id, description="Ship it")

    outcome = asyncio.run(
        _runner(orchestrator, RecordingExecution(error=RuntimeError("boom"))).tick()
    )

    assert outcome == "failed"
    last_log = storage.list_logs(agent.id)[-1]
    assert last_log.message == "Task Failed: boom"
    assert last_log.level == "error"
    stored = storage.get_task(task.id)
    assert stored is not None
    assert stored.status == "failed"
    assert stored.result is None


def test_failure_without_message_reports_unknown_error(
    orchestrator: Orchestrator,
    storage: InMemoryDashboardStorage,
) -> None:
    agent = storage.create_agent(name="Mason", role="Builder")
    storage.create_task(agent_id=agent.id, description="Ship it")

    asyncio.run(_runner(orchestrator, RecordingExecution(error=RuntimeError())).tick())

    assert storage.list_logs(agent.id)[-1].message == "Task Failed: Unknown error"


def test_failed_task_is_not_retried(
    orchestrator: Orchestrator,
    storage: InMemoryDashboardStorage,
) -> None:
    agent = storage.create_agent(name="Mason", role="Builder")
    storage.create_task(agent_id=agent.id, description="Ship it")
    execution = RecordingExecution(error=RuntimeError("boom"))
    runner = _runner(orchestrator, execution)

    async def scenario() -> list[str]:
        return [await runner.tick(), await runner.tick()]

    assert asyncio.run(scenario()) == ["failed", "idle"]
    assert len(execution.calls) == 1


def test_one_task_per_tick_newest_first(
    orchestrator: Orchestrator,
    storage: InMemoryDashboardStorage,
) -> None:
    agent = storage.create_agent(name="Forge", role="Coder")
    oldest = storage.create_task(agent_id=agent.id, description="first")
    middle = storage.create_task(agent_id=agent.id, description="second")
    newest = storage.create_task(agent_id=agent.id, description="third")
    execution = RecordingExecution()
    runner = _runner(orchestrator, execution)

    asyncio.run(runner.tick())

    statuses = {task.id: task.status for task in storage.list_tasks()}
    assert statuses == {newest.id: "completed", middle.id: "pending", oldest.id: "pending"}
    assert [call[1] for call in execution.calls] == [newest.id]


def test_each_run_sees_previous_run_logs_as_context(
    orchestrator: Orchestrator,
    storage: InMemoryDashboardStorage,
) -> None:
    agent = storage.create_agent(name="Forge", role="Coder")
    storage.create_task(agent_id=agent.id, description="first")
    storage.create_task(agent_id=agent.id, description="second")
    execution = RecordingExecution(result="ok")
    runner = _runner(orchestrator, execution)

    async def scenario() -> None:
        await runner.tick()
        await runner.tick()

    asyncio.run(scenario())

    assert execution.calls[0][2] == ""
    assert execution.calls[1][2] == "Starting task: second\nTask Completed: ok..."


def test_orphaned_task_is_skipped_and_blocks_queue(
    orchestrator: Orchestrator,
    storage: InMemoryDashboardStorage,
) -> None:
    agent = storage.create_agent(name="Forge", role="Coder")
    valid = storage.create_task(agent_id=agent.id, description="valid")
    orphan = storage.create_task(agent_id="ghost", description="orphan")
    execution = RecordingExecution()
    runner = _runner(orchestrator, execution)

    async def scenario() -> list[str]:
        return [await runner.tick(), await runner.tick()]

    assert asyncio.run(scenario()) == ["orphaned", "orphaned"]
    assert execution.calls == []
    assert storage.get_task(orphan.id).status == "pending"
    assert storage.get_task(valid.id).status == "pending"
    assert storage.list_logs("ghost") == []
    assert runner.in_flight is False


def test_orphaned_task_fails_fast_when_policy_is_fail(
    orchestrator: Orchestrator,
    storage: InMemoryDashboardStorage,
) -> None:
    orphan = storage.create_task(agent_id="ghost", description="orphan")

    outcome = asyncio.run(
        _runner(orchestrator, RecordingExecution(), orphan_policy="fail").tick()
    )

    assert outcome == "failed"
    assert storage.get_task(orphan.id).status == "failed"
    assert storage.list_logs("ghost")[-1].message == "Task Failed: agent ghost not found"


def test_idle_when_nothing_is_pending(orchestrator: Orchestrator) -> None:
    assert asyncio.run(_runner(orchestrator, RecordingExecution()).tick()) == "idle"


def test_second_tick_observes_guard_while_task_in_flight(
    orchestrator: Orchestrator,
    storage: InMemoryDashboardStorage,
) -> None:
    agent = storage.create_agent(name="Forge", role="Coder")
    storage.create_task(agent_id=agent.id, description="older")
    newest = storage.create_task(agent_id=agent.id, description="slow")
    execution = BlockingExecution()
    runner = _runner(orchestrator, execution)

    async def scenario() -> tuple[str, str, str | None]:
        first = asyncio.create_task(runner.tick())
        while not execution.started.is_set():
            await asyncio.sleep(0.01)
        current = runner.current_task_id
        second = await runner.tick()
        execution.release.set()
        return await first, second, current

    first, second, current = asyncio.run(scenario())

    assert second == "busy"
    assert first == "completed"
    assert current == newest.id
    pending = [item for item in storage.list_tasks() if item.status == "pending"]
    assert len(pending) == 1
    assert runner.in_flight is False


def test_events_are_broadcast_for_logs_and_status(
    orchestrator: Orchestrator,
    storage: InMemoryDashboardStorage,
    subscriber,
) -> None:
    agent = storage.create_agent(name="Forge", role="Coder")
    storage.create_task(agent_id=agent.id, description="write")

    asyncio.run(_runner(orchestrator, RecordingExecution()).tick())

    assert subscriber.types() == ["log_entry", "log_entry", "task_updated"]
    assert subscriber.messages[-1]["task"]["status"] == "completed"


def test_run_forever_drains_queue_and_stops(
    orchestrator: Orchestrator,
    storage: InMemoryDashboardStorage,
) -> None:
    agent = storage.create_agent(name="Forge", role="Coder")
    storage.create_task(agent_id=agent.id, description="one")
    storage.create_task(agent_id=agent.id, description="two")
    runner = _runner(orchestrator, RecordingExecution(), poll_interval_s=0.01)

    async def scenario() -> None:
        runner.start()
        for _ in range(200):
            if all(task.status == "completed" for task in storage.list_tasks()):
                break
            await asyncio.sleep(0.01)
        await runner.stop()

    asyncio.run(scenario())

    assert [task.status for task in storage.list_tasks()] == ["completed", "completed"]
    assert runner.running is False


def test_select_next_task_picks_first_pending(storage: InMemoryDashboardStorage) -> None:
    done = storage.create_task(agent_id="a", description="done")
    storage.update_task(done.id, status="completed")
    pending = storage.create_task(agent_id="a", description="pending")
    newest_done = storage.create_task(agent_id="a", description="newest done")
    storage.update_task(newest_done.id, status="failed")

    selected = select_next_task(storage.list_tasks())

    assert selected is not None
    assert selected.id == pending.id


def test_build_context_keeps_most_recent_messages() -> None:
    messages = [f"m{index}" for index in range(1, 6)]
    assert build_context(messages, max_messages=3, max_chars=1000) == "m3\nm4\nm5"


def test_build_context_drops_oldest_messages_over_char_budget() -> None:
    messages = ["aaaa", "bbbb", "cccc"]
    # "bbbb\ncccc" is 9 characters; adding "aaaa\n" would exceed 10.
    assert build_context(messages, max_messages=10, max_chars=10) == "bbbb\ncccc"


def test_build_context_truncates_single_oversized_message() -> None:
    assert build_context(["0123456789"], max_messages=10, max_chars=4) == "6789"


class FlakyStatusStorage(InMemoryDashboardStorage):
    """Store whose first status write fails, as a dropped database connection would."""

    def __init__(self) -> None:
        super().__init__()
        self.update_failures = 1

    def update_task(self, task_id, *, status, result=None):
        if self.update_failures:
            self.update_failures -= 1
            raise ConnectionError("database went away")
        return super().update_task(task_id, status=status, result=result)


class SlowListStorage(InMemoryDashboardStorage):
    def list_tasks(self):
        time.sleep(0.3)
        return super().list_tasks()


def _flaky_setup() -> tuple[FlakyStatusStorage, Orchestrator]:
    storage = FlakyStatusStorage()
    orchestrator = Orchestrator(
        storage=storage,
        bus=NotificationBus(),
        planner=Planner(mode="deterministic"),
    )
    return storage, orchestrator


def test_lost_status_write_does_not_rerun_completed_task() -> None:
    storage, orchestrator = _flaky_setup()
    agent = storage.create_agent(name="Forge", role="Coder")
    task = storage.create_task(agent_id=agent.id, description="t")
    execution = RecordingExecution()
    runner = _runner(orchestrator, execution)

    async def scenario() -> list[str]:
        return [await runner.tick(), await runner.tick()]

    assert asyncio.run(scenario()) == ["completed", "idle"]
    assert len(execution.calls) == 1
    assert [log.message for log in storage.list_logs(agent.id)] == [
        "Starting task: t",
        "Task Completed: R...",
    ]
    # The store still says pending; only this process knows the task is done.
    assert storage.get_task(task.id).status == "pending"


def test_lost_status_write_does_not_retry_failed_task() -> None:
    storage, orchestrator = _flaky_setup()
    agent = storage.create_agent(name="Forge", role="Coder")
    storage.create_task(agent_id=agent.id, description="t")
    execution = RecordingExecution(error=RuntimeError("boom"))
    runner = _runner(orchestrator, execution)

    async def scenario() -> list[str]:
        return [await runner.tick(), await runner.tick()]

    assert asyncio.run(scenario()) == ["failed", "idle"]
    assert len(execution.calls) == 1
    assert storage.list_logs(agent.id)[-1].message == "Task Failed: boom"
    assert runner.in_flight is False


def test_select_next_task_skips_finished_ids(storage: InMemoryDashboardStorage) -> None:
    older = storage.create_task(agent_id="a", description="older")
    newer = storage.create_task(agent_id="a", description="newer")

    selected = select_next_task(storage.list_tasks(), {newer.id})

    assert selected is not None
    assert selected.id == older.id


def test_slow_store_does_not_block_event_loop() -> None:
    storage = SlowListStorage()
    orchestrator = Orchestrator(
        storage=storage,
        bus=NotificationBus(),
        planner=Planner(mode="deterministic"),
    )
    runner = _runner(orchestrator, RecordingExecution())

    async def scenario() -> float:
        stamps: list[float] = []
        done = asyncio.Event()

        async def heartbeat() -> None:
            while not done.is_set():
                stamps.append(time.monotonic())
                await asyncio.sleep(0.02)

        beats = asyncio.create_task(heartbeat())
        await asyncio.sleep(0)
        assert await runner.tick() == "idle"
        done.set()
        await beats
        return max(later - earlier for earlier, later in zip(stamps, stamps[1:]))

    assert asyncio.run(scenario()) < 0.2
