"""Unit tests for the per-call WebSocket conversation stream."""
import base64
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi import WebSocketDisconnect

from callagent.services.agent.constants import REPROMPT_MESSAGE
from callagent.services.speech.stt import SpeechToTextService
from callagent.services.speech.tts import TextToSpeechService


def _initiate(client):
    return client.post(
        "/api/calls/initiate", json={"phone_number": "+15550001111"}
    ).json()["call_id"]


class TestConversationStream:
    """Test the WebSocket conversation channel."""

    def test_connect_greets(self, test_client):
        """Test the first frame confirms the connection."""
        call_id = _initiate(test_client)

        with test_client.websocket_connect(f"/ws/{call_id}") as websocket:
            message = websocket.receive_json()

        assert message["type"] == "connected"
        assert message["callId"] == call_id

    def test_text_message_runs_turn(self, test_client):
        """Test text goes through the turn pipeline and lands in history."""
        call_id = _initiate(test_client)

        with test_client.websocket_connect(f"/ws/{call_id}") as websocket:
            websocket.receive_json()
            websocket.send_json({"type": "text_message", "payload": {"text": "how much is premium"}})
            reply = websocket.receive_json()

        assert reply["type"] == "text_response"
        assert reply["payload"]["action"] == "listen"
        assert "ninety nine dollars" in reply["payload"]["text"]
        assert reply["payload"]["audio"] is None

        session = test_client.app.state.registry.get(call_id)
        assert [t.role for t in session.conversation_history] == ["user", "assistant"]

    def test_empty_text_reprompts(self, test_client):
        """Test an empty text message counts as silence."""
        call_id = _initiate(test_client)

        with test_client.websocket_connect(f"/ws/{call_id}") as websocket:
            websocket.receive_json()
            websocket.send_json({"type": "text_message", "payload": {"text": ""}})
            reply = websocket.receive_json()

        assert reply["payload"]["text"] == REPROMPT_MESSAGE

    def test_text_reply_includes_audio(self, test_client):
        """Test replies carry base64 audio when speech synthesis is configured."""
        mock_client = Mock()
        mock_client.audio.speech.create = AsyncMock(return_value=Mock(content=b"mp3-bytes"))
        test_client.app.state.tts_service = TextToSpeechService(mock_client)
        call_id = _initiate(test_client)

        with test_client.websocket_connect(f"/ws/{call_id}") as websocket:
            websocket.receive_json()
            websocket.send_json({"type": "text_message", "payload": {"text": "Hello"}})
            reply = websocket.receive_json()

        assert base64.b64decode(reply["payload"]["audio"]) == b"mp3-bytes"

    def test_audio_stream_transcribed(self, test_client):
        """Test base64 audio is transcribed and answered."""
        mock_client = Mock()
        mock_client.audio.transcriptions.create = AsyncMock(return_value=Mock(text="I need support"))
        test_client.app.state.stt_service = SpeechToTextService(mock_client)
        call_id = _initiate(test_client)

        with test_client.websocket_connect(f"/ws/{call_id}") as websocket:
            websocket.receive_json()
            websocket.send_json(
                {"type": "audio_stream", "payload": {"audio": base64.b64encode(b"RIFF").decode()}}
            )
            reply = websocket.receive_json()

        assert reply["type"] == "audio_response"
        assert reply["payload"]["transcript"] == "I need support"
        assert "support" in reply["payload"]["text"].lower()
        _, data, _ = mock_client.audio.transcriptions.create.call_args.kwargs["file"]
        assert data == b"RIFF"

    def test_binary_frame_without_stt(self, test_client):
        """Test raw audio is refused when transcription is not configured."""
        call_id = _initiate(test_client)

        with test_client.websocket_connect(f"/ws/{call_id}") as websocket:
            websocket.receive_json()
            websocket.send_bytes(b"RIFF")
            reply = websocket.receive_json()

        assert reply == {"type": "error", "message": "Speech-to-text service is not configured"}

    def test_conversation_state(self, test_client):
        """Test state queries report the registry's view and updates move it forward."""
        call_id = _initiate(test_client)

        with test_client.websocket_connect(f"/ws/{call_id}") as websocket:
            websocket.receive_json()
            websocket.send_json({"type": "conversation_state", "payload": {}})
            current = websocket.receive_json()
            websocket.send_json({"type": "conversation_state", "payload": {"state": "ended"}})
            ended = websocket.receive_json()

        assert current["type"] == "state_acknowledged"
        assert current["payload"]["state"] == "initiated"
        assert current["payload"]["message_count"] == 0
        assert ended["payload"]["state"] == "ended"
        assert test_client.app.state.registry.get(call_id).end_time is not None

    def test_unknown_state_rejected(self, test_client):
        """Test an unknown state is reported without closing the stream."""
        call_id = _initiate(test_client)

        with test_client.websocket_connect(f"/ws/{call_id}") as websocket:
            websocket.receive_json()
            websocket.send_json({"type": "conversation_state", "payload": {"state": "paused"}})
            error = websocket.receive_json()
            websocket.send_json({"type": "conversation_state", "payload": {}})
            current = websocket.receive_json()

        assert error == {"type": "error", "message": "Unknown call state: paused"}
        assert current["type"] == "state_acknowledged"

    @pytest.mark.parametrize(
        "frame, message",
        [
            ("not json", "Invalid message format"),
            ('{"type": "dance"}', "Unknown message type: dance"),
        ],
    )
    def test_bad_frames(self, test_client, frame, message):
        """Test malformed and unknown frames get an error reply."""
        call_id = _initiate(test_client)

        with test_client.websocket_connect(f"/ws/{call_id}") as websocket:
            websocket.receive_json()
            websocket.send_text(frame)
            reply = websocket.receive_json()

        assert reply == {"type": "error", "message": message}

    def test_unknown_call(self, test_client):
        """Test messages for a call that does not exist are refused."""
        with test_client.websocket_connect("/ws/missing") as websocket:
            websocket.receive_json()
            websocket.send_json({"type": "text_message", "payload": {"text": "Hello"}})
            reply = websocket.receive_json()

        assert reply == {"type": "error", "message": "Call not found: missing"}
        assert test_client.app.state.registry.lookup("missing") is None

    def test_requires_api_key(self, unauthenticated_client):
        """Test connections without the API key are closed."""
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with unauthenticated_client.websocket_connect("/ws/any"):
                pass

        assert exc_info.value.code == 1008
