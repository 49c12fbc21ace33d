"""Integration tests for the /ws event channel."""
import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, Mock
import sys
import os

# Add backend to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'backend'))


@pytest.fixture
def client():
    """Create a test client with a real store and router and a mocked LLM client."""
    # Import after path is set
    from main import app
    from services.context_store import ContextStore
    from services.model_router import ModelRouter
    from services.llm_client import LLMResponse

    # Startup is not run without the context manager, so set the services here
    import main
    main.context_store = ContextStore(system_prompt="You are Jinny.")
    main.model_router = ModelRouter()
    main.llm_client = Mock()
    main.llm_client.generate = AsyncMock(return_value=LLMResponse(
        text="hi there",
        tokens_input=20,
        tokens_output=2,
        latency_ms=12,
        model_used="llama-3.1-70b-versatile"
    ))

    yield TestClient(app)


@pytest.fixture
def store(client):
    import main
    return main.context_store


@pytest.fixture
def llm_client(client):
    import main
    return main.llm_client


class TestWebSocketEndpoint:
    """Test suite for the WebSocket endpoint."""

    def test_session_event_on_connect(self, client):
        with client.websocket_connect("/ws") as ws:
            message = ws.receive_json()

        assert message["event"] == "session"
        assert message["data"]["session_id"].startswith("conn_")

    def test_client_chosen_session_id(self, client):
        with client.websocket_connect("/ws?session_id=user-42") as ws:
            message = ws.receive_json()

        assert message == {"event": "session", "data": {"session_id": "user-42"}}

    def test_transcript_end_to_end(self, client, store):
        """Test transcript in, gpt-response out, and the resulting context."""
        with client.websocket_connect("/ws?session_id=e2e") as ws:
            ws.receive_json()
            ws.send_json({
                "event": "transcript",
                "data": {"final": "hello", "model": "llama-3.1-70b-versatile"}
            })
            reply = ws.receive_json()

        assert reply == {
            "event": "gpt-response",
            "data": {"text": "hi there", "model": "llama-3.1-70b-versatile"}
        }
        turns = store.get("e2e")
        assert [(t.role.value, t.content) for t in turns] == [
            ("system", "You are Jinny."),
            ("user", "hello"),
            ("assistant", "hi there"),
        ]

    def test_reconnect_resumes_context(self, client, store, llm_client):
        """Test that reconnecting with the same session id keeps the conversation."""
        with client.websocket_connect("/ws?session_id=resume") as ws:
            ws.receive_json()
            ws.send_json({"event": "transcript", "data": {"final": "first"}})
            ws.receive_json()

        with client.websocket_connect("/ws?session_id=resume") as ws:
            ws.receive_json()
            ws.send_json({"event": "transcript", "data": {"final": "second"}})
            ws.receive_json()

        sent_turns = llm_client.generate.await_args.args[0]
        assert [t.content for t in sent_turns[1:]] == ["first", "hi there", "second"]
        assert len(store.get("resume")) == 5

    def test_whitespace_transcript_gets_no_reply(self, client, llm_client):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"event": "transcript", "data": {"final": "   "}})
            ws.send_json({"event": "reset-context"})
            message = ws.receive_json()

        # The next message is the reset ack, so nothing was sent for the blank transcript
        assert message["event"] == "context-reset"
        llm_client.generate.assert_not_awaited()

    def test_reset_context(self, client, store):
        with client.websocket_connect("/ws?session_id=reset-me") as ws:
            ws.receive_json()
            ws.send_json({"event": "transcript", "data": {"final": "hello"}})
            ws.receive_json()
            ws.send_json({"event": "reset-context"})
            message = ws.receive_json()

        assert message == {
            "event": "context-reset",
            "data": {"message": "Conversation context has been reset"}
        }
        assert store.get("reset-me") is None

    def test_load_context(self, client, store):
        with client.websocket_connect("/ws?session_id=prefs") as ws:
            ws.receive_json()
            ws.send_json({"event": "load-context", "data": {"name": "Sam"}})
            ws.send_json({"event": "transcript", "data": {"final": "hello"}})
            ws.receive_json()

        assert store.get_preferences("prefs") == {"name": "Sam"}
        assert [t.content for t in store.get("prefs")[1:]] == ["hello", "hi there"]

    def test_provider_error_is_sanitized(self, client, llm_client):
        """Test that provider failures reach the client as a generic error event."""
        from services.llm_client import LLMError, LLMClientError

        llm_client.generate.side_effect = LLMClientError(LLMError(
            code="MALFORMED_RESPONSE",
            message="Invalid response from groq API.",
            details={"original_error": "choices missing"}
        ))

        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"event": "transcript", "data": {"final": "hello"}})
            message = ws.receive_json()

        assert message["event"] == "error"
        assert message["data"]["message"] == "An error occurred while processing your request."
        assert "choices missing" not in message["data"]["details"]

    def test_unknown_model(self, client, store):
        with client.websocket_connect("/ws?session_id=bad-model") as ws:
            ws.receive_json()
            ws.send_json({"event": "transcript", "data": {"final": "hello", "model": "gpt-9"}})
            message = ws.receive_json()

        assert message["event"] == "error"
        assert message["data"]["details"] == "UNKNOWN_MODEL"
        assert [t.role.value for t in store.get("bad-model")] == ["system", "user"]

    def test_malformed_json_keeps_connection_open(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_text("{not json")
            error = ws.receive_json()
            ws.send_json({"event": "transcript", "data": {"final": "hello"}})
            reply = ws.receive_json()

        assert error["event"] == "error"
        assert error["data"]["details"] == "INVALID_PAYLOAD"
        assert reply["event"] == "gpt-response"

    def test_missing_event_name(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"data": {"final": "hello"}})
            message = ws.receive_json()

        assert message["event"] == "error"

    def test_disconnect_schedules_eviction(self, client, store):
        with client.websocket_connect("/ws?session_id=bye") as ws:
            ws.receive_json()
            ws.send_json({"event": "transcript", "data": {"final": "hello"}})
            ws.receive_json()

        # Eviction is deferred, so the context is still there right after closing
        assert store.get("bye") is not None
        assert "bye" in store._pending_evictions

    def test_shared_session_survives_one_socket_closing(self, client, store):
        """Test that eviction is only scheduled once the last socket for an id closes."""
        with client.websocket_connect("/ws?session_id=shared") as second:
            second.receive_json()
            with client.websocket_connect("/ws?session_id=shared") as first:
                first.receive_json()
                first.send_json({"event": "transcript", "data": {"final": "hello"}})
                first.receive_json()

            assert "shared" not in store._pending_evictions
            second.send_json({"event": "transcript", "data": {"final": "again"}})
            second.receive_json()
            assert len(store.get("shared")) == 5

        assert "shared" in store._pending_evictions


class TestHealthEndpoint:
    """Test suite for the health endpoint."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "jinny"
        assert "llama-3.1-70b-versatile" in data["models"]
