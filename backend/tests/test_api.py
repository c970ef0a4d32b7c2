"""
HTTP-level tests for the thread, activity and settings routers.

All tests run fully offline. Dependencies are overridden with an in-memory
ThreadService wired to a scripted gateway and sandbox.
"""
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import json

import pytest
from fastapi.testclient import TestClient

from codecraft.core.config import LlmConfigHolder, get_settings
from codecraft.core.deps import get_activity_store, get_gateway, get_llm_config, get_thread_service
from codecraft.core.errors import PlannerInvariantError
from codecraft.main import app
from codecraft.services.completion_gateway import CompletionGateway

from fakes import ScriptedGateway, make_python_draft, make_service

REQUEST = "Create 2 easy problems in Python with return style. Topics: arrays"


@pytest.fixture
def service():
    return make_service()


@pytest.fixture
def client(service):
    holder = LlmConfigHolder()
    app.dependency_overrides[get_thread_service] = lambda: service
    app.dependency_overrides[get_activity_store] = lambda: service.activities
    app.dependency_overrides[get_llm_config] = lambda: holder
    app.dependency_overrides[get_gateway] = lambda: CompletionGateway(holder, get_settings())
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def _ready_thread(client):
    tid = client.post("/api/threads", json={}).json()["thread_id"]
    r = client.post(f"/api/threads/{tid}/messages", json={"message": REQUEST})
    assert r.status_code == 200
    assert r.json()["state"] == "READY"
    return tid


def _sse_events(body: str) -> list[dict]:
    return [json.loads(line[len("data: "):]) for line in body.splitlines() if line.startswith("data: ")]


# ---------------------------------------------------------------------------
# Threads
# ---------------------------------------------------------------------------


class TestThreads:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_create_thread(self, client):
        r = client.post("/api/threads", json={"learning_mode": "guided"})
        assert r.status_code == 200
        body = r.json()
        assert body["state"] == "DRAFT"
        assert body["learning_mode"] == "guided"
        assert body["initial_prompt"].startswith("How can I help you today?")

    def test_invalid_learning_mode(self, client):
        assert client.post("/api/threads", json={"learning_mode": "chaos"}).status_code == 422

    def test_get_and_list(self, client):
        tid = client.post("/api/threads", json={}).json()["thread_id"]
        r = client.get(f"/api/threads/{tid}")
        assert r.status_code == 200
        assert r.json()["generating"] is False
        listed = client.get("/api/threads").json()["threads"]
        assert [t["id"] for t in listed] == [tid]

    def test_unknown_thread_404(self, client):
        assert client.get("/api/threads/nope").status_code == 404
        assert client.post("/api/threads/nope/messages", json={"message": "hi"}).status_code == 404
        assert client.post("/api/threads/nope/generate").status_code == 404
        assert client.get("/api/threads/nope/progress").status_code == 404

    def test_post_message_turn_result(self, client):
        tid = client.post("/api/threads", json={}).json()["thread_id"]
        body = client.post(f"/api/threads/{tid}/messages", json={"message": "python please"}).json()
        assert body["accepted"] is True
        assert body["state"] == "CLARIFYING"
        assert body["question_key"] == "problem_count"
        assert body["next_action"] == "ask"

    def test_fatal_error_is_a_clean_500(self, service, client, monkeypatch):
        async def broken(thread_id, message):
            raise PlannerInvariantError("activity has no topic tags")

        monkeypatch.setattr(service, "post_message", broken)
        tid = client.post("/api/threads", json={}).json()["thread_id"]
        r = client.post(f"/api/threads/{tid}/messages", json={"message": "hi"})
        assert r.status_code == 500
        assert r.json() == {"detail": "Internal pipeline error", "error_type": "PlannerInvariantError"}

    def test_overlong_message_rejected(self, client):
        tid = client.post("/api/threads", json={}).json()["thread_id"]
        r = client.post(f"/api/threads/{tid}/messages", json={"message": "x" * 8001})
        assert r.status_code == 422


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


class TestGenerate:
    def test_generate_and_stream(self, client):
        tid = _ready_thread(client)
        r = client.post(f"/api/threads/{tid}/generate")
        assert r.status_code == 200
        activity_id = r.json()["activity_id"]
        assert r.json()["problem_count"] == 2

        thread = client.get(f"/api/threads/{tid}").json()
        assert thread["state"] == "SAVED"
        assert thread["activity_id"] == activity_id

        stream = client.get(f"/api/threads/{tid}/progress")
        assert stream.headers["content-type"].startswith("text/event-stream")
        events = _sse_events(stream.text)
        assert events[0]["type"] == "generation_started"
        assert events[0]["totalSlots"] == 2
        assert events[-1]["type"] == "generation_completed"
        assert events[-1]["activityId"] == activity_id
        assert all("def double" not in json.dumps(e) for e in events)

    def test_generate_not_ready_409(self, client):
        tid = client.post("/api/threads", json={}).json()["thread_id"]
        assert client.post(f"/api/threads/{tid}/generate").status_code == 409

    def test_generate_failure_502(self, service, client):
        service.pipeline.gateway.generation_default = "not json"
        tid = _ready_thread(client)
        r = client.post(f"/api/threads/{tid}/generate")
        assert r.status_code == 502
        detail = r.json()["detail"]
        assert detail["slot_index"] == 0
        assert detail["detail"].startswith("Problem 1 failed")
        assert client.get(f"/api/threads/{tid}").json()["state"] == "FAILED"

        events = _sse_events(client.get(f"/api/threads/{tid}/progress").text)
        assert events[-1]["type"] == "generation_failed"


# ---------------------------------------------------------------------------
# Activities
# ---------------------------------------------------------------------------


class TestActivities:
    def _activity_id(self, client):
        tid = _ready_thread(client)
        return client.post(f"/api/threads/{tid}/generate").json()["activity_id"]

    def test_get_activity_has_no_reference(self, client):
        activity_id = self._activity_id(client)
        body = client.get(f"/api/activities/{activity_id}").json()
        assert len(body["problems"]) == 2
        for problem in body["problems"]:
            assert "reference_solution" not in problem
        listed = client.get("/api/activities").json()["activities"]
        assert listed[0]["id"] == activity_id

    def test_patch_then_publish_locks(self, client):
        activity_id = self._activity_id(client)
        r = client.patch(f"/api/activities/{activity_id}", json={"title": "Arrays drill", "time_limit_seconds": 900})
        assert r.status_code == 200
        assert r.json()["title"] == "Arrays drill"
        assert r.json()["time_limit_seconds"] == 900

        r = client.post(f"/api/activities/{activity_id}/publish")
        assert r.json()["status"] == "PUBLISHED"
        assert client.patch(f"/api/activities/{activity_id}", json={"title": "x"}).status_code == 409

    def test_unknown_activity_404(self, client):
        assert client.get("/api/activities/nope").status_code == 404
        assert client.post("/api/activities/nope/publish").status_code == 404


# ---------------------------------------------------------------------------
# LLM settings
# ---------------------------------------------------------------------------


class TestLlmSettings:
    def test_put_then_get(self, client):
        r = client.put("/api/settings/llm", json={"provider": "openai", "api_key": "sk-test", "model": "gpt-x"})
        assert r.status_code == 200
        body = r.json()
        assert body["provider"] == "openai"
        assert body["has_api_key"] is True
        assert "api_key" not in body
        assert body["active_provider"] == "openai"
        assert body["active_model"] == "gpt-x"

        assert client.get("/api/settings/llm").json()["model"] == "gpt-x"

    def test_unknown_provider_rejected(self, client):
        assert client.put("/api/settings/llm", json={"provider": "mystery"}).status_code == 422
