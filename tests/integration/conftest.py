from __future__ import annotations

import json
import os
import socket
import subprocess
import sys
import time
from collections.abc import Iterator
from pathlib import Path
from urllib import error, request

import pytest


def _pick_free_port() -> int:
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("127.0.0.1", 0))
            return int(sock.getsockname()[1])
    except PermissionError:
        pytest.skip("Socket operations are blocked in this environment.")


def _wait_for_health(base_url: str, timeout_s: float = 20.0) -> None:
    deadline = time.time() + timeout_s
    while time.time() < deadline:
        try:
            with request.urlopen(f"{base_url}/health", timeout=1.0) as response:
                if response.status == 200:
                    return
        except Exception:  # noqa: BLE001
            time.sleep(0.2)
    raise TimeoutError(f"Server did not become healthy within {timeout_s:.1f}s")


def _start_server(env: dict[str, str], port: int, cwd: Path) -> subprocess.Popen[str]:
    cmd = [
        sys.executable,
        "-m",
        "uvicorn",
        "agent_dashboard.api.main:app",
        "--host",
        "127.0.0.1",
        "--port",
        str(port),
    ]
    return subprocess.Popen(  # noqa: S603
        cmd,
        cwd=str(cwd),
        env=env,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        text=True,
    )


def _require_postgres() -> str:
    if os.getenv("RUN_POSTGRES_INTEGRATION_TESTS") != "1":
        pytest.skip(
            "Set RUN_POSTGRES_INTEGRATION_TESTS=1 and AGENT_DASHBOARD_DATABASE_URL "
            "to run integration tests against PostgreSQL."
        )
    database_url = os.getenv("AGENT_DASHBOARD_DATABASE_URL")
    if not database_url:
        pytest.skip("AGENT_DASHBOARD_DATABASE_URL is required for integration tests.")
    return database_url


def _serve(env: dict[str, str]) -> Iterator[str]:
    port = _pick_free_port()
    base_url = f"http://127.0.0.1:{port}"
    server = _start_server(env=env, port=port, cwd=Path.cwd())
    try:
        _wait_for_health(base_url)
        yield base_url
    finally:
        server.terminate()
        try:
            server.wait(timeout=5)
        except subprocess.TimeoutExpired:
            server.kill()
            server.wait(timeout=5)


@pytest.fixture
def api_base_url() -> Iterator[str]:
    env = os.environ.copy()
    env["AGENT_DASHBOARD_DATABASE_URL"] = _require_postgres()
    env["AGENT_DASHBOARD_STORAGE_BACKEND"] = "postgres"
    env["AGENT_DASHBOARD_PLANNER_MODE"] = "deterministic"
    env["AGENT_DASHBOARD_EXECUTOR_MODE"] = "deterministic"
    env["AGENT_DASHBOARD_POLL_INTERVAL_S"] = "0.2"
    yield from _serve(env)


@pytest.fixture
def api_base_url_live_llm() -> Iterator[str]:
    database_url = _require_postgres()
    if os.getenv("RUN_LIVE_LLM_TESTS") != "1":
        pytest.skip("Set RUN_LIVE_LLM_TESTS=1 to run live LLM integration tests.")
    if not os.getenv("OPENAI_API_KEY"):
        pytest.skip("OPENAI_API_KEY is required for live LLM integration tests.")

    env = os.environ.copy()
    env["AGENT_DASHBOARD_DATABASE_URL"] = database_url
    env["AGENT_DASHBOARD_STORAGE_BACKEND"] = "postgres"
    env["AGENT_DASHBOARD_PLANNER_MODE"] = "llm"
    env["AGENT_DASHBOARD_EXECUTOR_MODE"] = "llm"
    # Ticks are driven by the test so only one task hits the model.
    env["AGENT_DASHBOARD_RUNNER_AUTOSTART"] = "false"
    yield from _serve(env)


def http_post_json(
    base_url: str,
    path: str,
    payload: dict[str, object],
) -> tuple[int, object]:
    raw_payload = json.dumps(payload).encode("utf-8")
    req = request.Request(
        url=f"{base_url}{path}",
        method="POST",
        data=raw_payload,
        headers={"Content-Type": "application/json"},
    )
    try:
        with request.urlopen(req, timeout=60.0) as response:
            return response.status, json.loads(response.read().decode("utf-8"))
    except error.HTTPError as exc:
        body = exc.read().decode("utf-8")
        return exc.code, json.loads(body)


def http_get_json(base_url: str, path: str) -> tuple[int, object]:
    req = request.Request(url=f"{base_url}{path}", method="GET")
    try:
        with request.urlopen(req, timeout=20.0) as response:
            return response.status, json.loads(response.read().decode("utf-8"))
    except error.HTTPError as exc:
        body = exc.read().decode("utf-8")
        return exc.code, json.loads(body)


@pytest.fixture
def post_json():
    return http_post_json


@pytest.fixture
def get_json():
    return http_get_json
