"""Tests for the REST API, with the orchestrator injected through a dependency override."""

import json
from typing import (
    Any,
    Callable,
    Dict,
    Iterator,
    List,
)

import pytest
from fakes import (
    ScriptedProvider,
    decision,
    plan_step,
)
from fastapi.testclient import TestClient

from praxis.api.app import (
    app,
    get_orchestrator,
)
from praxis.core.orchestrator import Orchestrator
from praxis.llm.errors import UnknownModelError


@pytest.fixture
def client(orchestrator: Orchestrator) -> Iterator[TestClient]:
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_sessions(client: TestClient) -> None:
    session_id = client.post("/sessions").json()["session_id"]

    assert session_id in client.get("/sessions").json()


def test_agent_returns_final_answer(client: TestClient, provider: ScriptedProvider) -> None:
    provider.push(plan_step(), decision("final_answer"), "Hello from Praxis.")

    response = client.post("/agent", json={"message": "Hi", "session_id": "s1"})

    assert response.status_code == 200
    body = response.json()
    assert body["reply"] == "Hello from Praxis."
    assert body["status"] == "completed"
    assert body["session_id"] == "s1"
    assert body["actions"] == []
    assert body["error"] is None
    assert body["run_id"]


def test_agent_reports_failed_run(client: TestClient, provider: ScriptedProvider) -> None:
    provider.push("not json")

    body = client.post("/agent", json={"message": "Hi", "session_id": "s1"}).json()

    assert body["status"] == "failed"
    assert body["reply"] is None
    assert body["error"]["stage"] == "plan"


def test_agent_rejects_unknown_model(make_orchestrator: Callable[..., Orchestrator]) -> None:
    def factory(model_id: str) -> Any:
        raise UnknownModelError(f"Model '{model_id}' is not registered")

    app.dependency_overrides[get_orchestrator] = lambda: make_orchestrator(
        provider_factory=factory
    )
    try:
        response = TestClient(app).post("/agent", json={"message": "Hi", "model": "bogus"})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 400
    assert "bogus" in response.json()["detail"]


def test_agent_stream(client: TestClient, provider: ScriptedProvider) -> None:
    provider.push(
        plan_step("echo"),
        decision("echo"),
        {"_thoughts": "echo", "text": "ping"},
        "Echoed.",
        plan_step(),
        decision("final_answer"),
        "ping",
    )

    events: List[Dict[str, Any]] = []
    with client.stream("POST", "/agent/stream", json={"message": "Echo", "session_id": "s1"}) as r:
        assert r.status_code == 200
        assert r.headers["content-type"].startswith("text/event-stream")
        for line in r.iter_lines():
            if line.startswith("data: "):
                events.append(json.loads(line[len("data: ") :]))

    assert events[0] == {"type": "session", "session_id": "s1"}
    assert [e["type"] for e in events[1:]] == ["tool_activity", "tool_activity", "chunk", "done"]
    assert events[-2]["text"] == "ping"
    assert events[-1]["status"] == "completed"


def test_agent_stream_reports_startup_errors(
    make_orchestrator: Callable[..., Orchestrator],
) -> None:
    def factory(model_id: str) -> Any:
        raise UnknownModelError("no such model")

    app.dependency_overrides[get_orchestrator] = lambda: make_orchestrator(
        provider_factory=factory
    )
    try:
        with TestClient(app).stream("POST", "/agent/stream", json={"message": "Hi"}) as r:
            lines = [line for line in r.iter_lines() if line.startswith("data: ")]
    finally:
        app.dependency_overrides.clear()

    last = json.loads(lines[-1][len("data: ") :])
    assert last["type"] == "error"
    assert last["error"] == {"type": "UnknownModelError", "message": "no such model"}


def test_approvals_listing_and_unknown_id(client: TestClient) -> None:
    assert client.get("/approvals").json() == []
    assert client.get("/approvals", params={"session_id": "s1"}).json() == []

    response = client.post("/approvals/nope", json={"decision": "approved"})
    assert response.status_code == 404

    response = client.post("/approvals/nope", json={"decision": "perhaps"})
    assert response.status_code == 422


def test_cancel_without_run(client: TestClient) -> None:
    response = client.post("/sessions/s1/cancel")
    assert response.status_code == 409
