"""Tests for the FastAPI transport."""

import pytest
from conftest import USER_ID, ScriptedLLM, make_harness
from fastapi.testclient import TestClient

from polychat.api.app import create_app, http_status_for
from polychat.api.auth.header import HeaderAuthProvider
from polychat.errors import (
    ContextOverflowError,
    ConversationBusyError,
    DeadlineExceededError,
    InternalError,
    ProviderNotImplementedError,
    ProviderRateLimitError,
    StoreError,
    UnknownModelError,
    UpstreamUnavailableError,
)

HEADERS = {"X-User-Id": USER_ID}


@pytest.fixture
def llm() -> ScriptedLLM:
    return ScriptedLLM()


@pytest.fixture
def client(llm) -> TestClient:
    harness = make_harness(llm, max_attempts=2)
    return TestClient(create_app(harness.controller, HeaderAuthProvider()))


def create_conversation(client: TestClient, **body) -> dict:
    response = client.post("/conversations", json=body, headers=HEADERS)
    assert response.status_code == 201
    return response.json()


class TestStatusMapping:
    """Test the error to HTTP status mapping."""

    @pytest.mark.parametrize(
        "error, status",
        [
            (UnknownModelError("gpt-2"), 404),
            (ConversationBusyError("busy"), 409),
            (ContextOverflowError("too long", required_tokens=10, budget_tokens=2), 422),
            (ProviderNotImplementedError("local"), 501),
            (StoreError("disk full"), 500),
            (DeadlineExceededError("late"), 504),
            (InternalError("boom"), 500),
            (UpstreamUnavailableError("down", attempts=3), 502),
            (ProviderRateLimitError("429"), 502),
        ],
    )
    def test_http_status_for(self, error, status):
        assert http_status_for(error) == status


class TestRoutes:
    """Test the routes end to end against the in-memory store."""

    def test_requires_user_header(self, client):
        """Requests without the identity header are unauthenticated."""
        assert client.get("/conversations").status_code == 401
        assert client.get("/auth/me", headers=HEADERS).json() == {"user_id": USER_ID}

    def test_list_models(self, client):
        response = client.get("/models", headers=HEADERS)
        assert response.status_code == 200
        assert "claude-3.5-sonnet" in {m["id"] for m in response.json()}

    def test_conversation_turn(self, client):
        """Creating a conversation and sending a message returns the persisted reply."""
        conversation = create_conversation(client, model="gpt-4o")

        response = client.post(
            f"/conversations/{conversation['id']}/messages",
            json={"content": "Hello, how are you?"},
            headers=HEADERS,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["state"] == "responded"
        assert body["message"]["role"] == "assistant"
        assert body["usage"]["total_tokens"] == 19

        detail = client.get(f"/conversations/{conversation['id']}", headers=HEADERS).json()
        assert [m["role"] for m in detail["messages"]] == ["user", "assistant"]
        assert detail["title"] == "Hello, how are you?"

        usage = client.get(f"/conversations/{conversation['id']}/usage", headers=HEADERS).json()
        assert usage == {"prompt_tokens": 12, "completion_tokens": 7, "total_tokens": 19}

    def test_error_payload(self, client):
        """Domain errors are returned with their kind and status."""
        response = client.post("/conversations/missing/messages", json={"content": "Hi"}, headers=HEADERS)

        assert response.status_code == 404
        assert response.json()["kind"] == "NotFoundError"
        assert response.json()["failed_state"] == "received"

    def test_foreign_conversation_is_forbidden(self, client):
        conversation = create_conversation(client)
        response = client.get(f"/conversations/{conversation['id']}", headers={"X-User-Id": "intruder"})
        assert response.status_code == 403

    def test_invalid_body_is_input_error(self, client):
        """Body validation failures use the InputError payload."""
        conversation = create_conversation(client)
        response = client.patch(
            f"/conversations/{conversation['id']}/settings", json={"temperature": 5}, headers=HEADERS
        )
        assert response.status_code == 400
        assert response.json()["kind"] == "InputError"

    def test_blank_message_is_input_error(self, client):
        conversation = create_conversation(client)
        response = client.post(
            f"/conversations/{conversation['id']}/messages", json={"content": "  "}, headers=HEADERS
        )
        assert response.status_code == 400

    def test_upstream_exhaustion(self, client, llm):
        """A provider that keeps rate limiting surfaces as a retryable 502."""
        llm.outcomes = [ProviderRateLimitError("429")] * 2
        conversation = create_conversation(client)

        response = client.post(
            f"/conversations/{conversation['id']}/messages", json={"content": "Hi"}, headers=HEADERS
        )

        assert response.status_code == 502
        assert response.json()["kind"] == "UpstreamUnavailableError"
        assert response.json()["retryable"] is True
        assert response.json()["failed_state"] == "generating"

    def test_unexpected_failure_has_payload(self, client, llm):
        """Unexpected exceptions still return a structured error body."""
        llm.outcomes = [RuntimeError("boom")]
        conversation = create_conversation(client)

        response = client.post(
            f"/conversations/{conversation['id']}/messages", json={"content": "Hi"}, headers=HEADERS
        )

        assert response.status_code == 500
        assert response.json()["kind"] == "InternalError"
        assert response.json()["status"] == "server"

    def test_local_model_not_implemented(self, client):
        conversation = create_conversation(client, model="local", max_tokens=100)
        response = client.post(
            f"/conversations/{conversation['id']}/messages", json={"content": "Hi"}, headers=HEADERS
        )
        assert response.status_code == 501
        assert response.json()["kind"] == "NotImplementedError"

    def test_settings_rename_and_delete(self, client):
        conversation = create_conversation(client)
        conversation_url = f"/conversations/{conversation['id']}"

        settings = client.patch(f"{conversation_url}/settings", json={"model": "gemini-pro"}, headers=HEADERS)
        renamed = client.patch(conversation_url, json={"title": "Renamed"}, headers=HEADERS)
        deleted = client.delete(conversation_url, headers=HEADERS)

        assert settings.json()["model"] == "gemini-pro"
        assert renamed.json()["title"] == "Renamed"
        assert deleted.status_code == 204
        assert client.get(conversation_url, headers=HEADERS).status_code == 404
        assert client.get("/conversations", headers=HEADERS).json() == []

    def test_system_prompt_revisions(self, client):
        created = client.post("/system-prompts", json={"name": "pirate", "text": "Arr."}, headers=HEADERS).json()
        revised = client.post(
            f"/system-prompts/{created['id']}/revisions", json={"text": "Arr, matey."}, headers=HEADERS
        )
        built_in = client.post("/system-prompts/default/revisions", json={"text": "No."}, headers=HEADERS)

        assert revised.status_code == 201
        assert revised.json()["version"] == 2
        assert built_in.status_code == 403
        ids = {p["id"] for p in client.get("/system-prompts", headers=HEADERS).json()}
        assert {created["id"], revised.json()["id"], "default"} <= ids
