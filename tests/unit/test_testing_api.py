"""Unit tests for chat testing and voice API endpoints."""
from unittest.mock import AsyncMock, Mock

from callagent.services.speech.tts import TextToSpeechService


class TestChatAPI:
    """Test the offline chat endpoints."""

    def test_chat_creates_session(self, test_client):
        """Test the first message creates a session with both turns."""
        response = test_client.post("/api/testing/chat", json={"message": "What is your pricing?"})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["session_id"]
        assert data["conversation_length"] == 2
        assert data["model_used"] is None
        assert "pricing" in data["response"]

    def test_chat_continues_session(self, test_client):
        """Test passing the session id continues the conversation."""
        first = test_client.post("/api/testing/chat", json={"message": "Hello"}).json()

        second = test_client.post(
            "/api/testing/chat",
            json={"message": "Tell me about support", "session_id": first["session_id"]},
        ).json()

        assert second["session_id"] == first["session_id"]
        assert second["conversation_length"] == 4

    def test_chat_with_knowledge(self, test_client):
        """Test knowledge grounding shows up in the canned reply."""
        response = test_client.post(
            "/api/testing/chat",
            json={"message": "how much is premium", "knowledge_base_id": "kb-test"},
        )

        data = response.json()
        assert data["knowledge_base_used"] is True
        assert "ninety nine dollars" in data["response"]

    def test_session_listing_and_delete(self, test_client):
        """Test chat sessions can be listed, read and deleted."""
        session_id = test_client.post(
            "/api/testing/chat", json={"message": "Hello"}
        ).json()["session_id"]

        sessions = test_client.get("/api/testing/sessions").json()["sessions"]
        assert [s["id"] for s in sessions] == [session_id]
        assert sessions[0]["message_count"] == 2

        detail = test_client.get(f"/api/testing/sessions/{session_id}").json()["session"]
        assert [t["role"] for t in detail["conversation_history"]] == ["user", "assistant"]

        assert test_client.delete(f"/api/testing/sessions/{session_id}").status_code == 200
        assert test_client.get(f"/api/testing/sessions/{session_id}").status_code == 404

    def test_chat_sessions_not_listed_as_calls(self, test_client):
        """Test chat sessions do not count as active calls."""
        test_client.post("/api/testing/chat", json={"message": "Hello"})

        assert test_client.get("/api/calls/active").json() == []


class TestVoiceAPI:
    """Test speech and generation endpoints."""

    def test_generate_response(self, test_client):
        """Test generating a reply outside of a call."""
        response = test_client.post(
            "/api/voice/generate-response",
            json={
                "message": "Do you offer support?",
                "context": [{"role": "user", "content": "Hi"}],
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert "support" in data["response"]

    def test_synthesize_without_openai(self, test_client):
        """Test TTS is unavailable when no OpenAI key is configured."""
        response = test_client.post("/api/voice/synthesize", json={"text": "Hello"})

        assert response.status_code == 503
        assert response.json()["error"] == "Service Unavailable"

    def test_synthesize(self, test_client):
        """Test TTS returns MP3 audio."""
        mock_client = Mock()
        mock_client.audio.speech.create = AsyncMock(return_value=Mock(content=b"mp3-bytes"))
        test_client.app.state.tts_service = TextToSpeechService(mock_client)

        response = test_client.post(
            "/api/voice/synthesize",
            json={"text": "Hello", "voice_config": {"model": "neural", "speed": 1.25}},
        )

        assert response.status_code == 200
        assert response.headers["content-type"] == "audio/mpeg"
        assert response.content == b"mp3-bytes"
        kwargs = mock_client.audio.speech.create.call_args.kwargs
        assert kwargs["voice"] == "alloy"
        assert kwargs["speed"] == 1.25

    def test_synthesize_rejects_bad_speed(self, test_client):
        """Test voice settings are range checked."""
        response = test_client.post(
            "/api/voice/synthesize", json={"text": "Hello", "voice_config": {"speed": 5}}
        )

        assert response.status_code == 422
