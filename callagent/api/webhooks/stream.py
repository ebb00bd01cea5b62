"""Per-call conversation stream over WebSocket."""
import base64
import binascii
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, WebSocket, status
from pydantic import BaseModel, ValidationError

from callagent.api.auth import verify_api_key
from callagent.core.errors import CallAgentError, InvalidSpec, UpstreamUnavailable
from callagent.services.call_session.models import CallSession, CallStatus
from callagent.services.telephony.twiml import CallInstruction

router = APIRouter()
logger = logging.getLogger(__name__)


class StreamMessage(BaseModel):
    """Client frame on the conversation stream."""
    type: str
    payload: Dict[str, Any] = {}


@router.websocket("/ws/{call_id}")
async def conversation_stream(websocket: WebSocket, call_id: str):
    """
    Bi-directional conversation channel for one call.

    Accepts JSON frames of type ``text_message``, ``audio_stream`` and
    ``conversation_state``, plus raw binary audio frames. Text and audio
    go through the same turn pipeline as the telephony webhooks.
    """
    settings = websocket.app.state.settings
    if not verify_api_key(websocket.headers.get("x-api-key"), settings.api_key):
        logger.warning(f"[STREAM] Rejected connection - CallId: {call_id}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    logger.info(f"[STREAM] Connection established - CallId: {call_id}")
    await websocket.send_json(
        {"type": "connected", "callId": call_id, "message": "WebSocket connected successfully"}
    )

    while True:
        frame = await websocket.receive()
        if frame["type"] == "websocket.disconnect":
            break

        try:
            reply = await _dispatch(websocket, call_id, frame)
        except CallAgentError as e:
            logger.warning(f"[STREAM] Message rejected - CallId: {call_id}, Error: {e.message}")
            reply = {"type": "error", "message": e.message}
        except Exception as e:
            logger.error(
                f"[STREAM] Error handling message - CallId: {call_id}, "
                f"Error: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )
            reply = {"type": "error", "message": "Internal server error"}
        await websocket.send_json(reply)

    logger.info(f"[STREAM] Connection closed - CallId: {call_id}")


async def _dispatch(websocket: WebSocket, call_id: str, frame: Dict[str, Any]) -> Dict[str, Any]:
    if frame.get("bytes") is not None:
        return await _handle_audio(websocket, call_id, frame["bytes"])

    try:
        message = StreamMessage.model_validate_json(frame.get("text") or "")
    except ValidationError as e:
        raise InvalidSpec("Invalid message format") from e

    if message.type == "text_message":
        return await _handle_text(websocket, call_id, str(message.payload.get("text") or ""))
    if message.type == "audio_stream":
        try:
            audio = base64.b64decode(message.payload.get("audio") or "", validate=True)
        except (binascii.Error, TypeError, ValueError) as e:
            raise InvalidSpec("audio_stream payload must carry base64 audio") from e
        return await _handle_audio(websocket, call_id, audio)
    if message.type == "conversation_state":
        return await _handle_state(websocket, call_id, message.payload.get("state"))

    raise InvalidSpec(f"Unknown message type: {message.type}")


async def _handle_text(websocket: WebSocket, call_id: str, text: str) -> Dict[str, Any]:
    state = websocket.app.state
    session = state.registry.get(call_id)
    instruction = await state.controller.handle_input(correlation_id=call_id, speech_text=text)
    return {
        "type": "text_response",
        "payload": await _reply_payload(websocket, session, instruction),
    }


async def _handle_audio(websocket: WebSocket, call_id: str, audio: bytes) -> Dict[str, Any]:
    state = websocket.app.state
    session = state.registry.get(call_id)
    if state.stt_service is None:
        raise UpstreamUnavailable("Speech-to-text service is not configured")
    if not audio:
        raise InvalidSpec("audio_stream payload is empty")

    transcript = await state.stt_service.transcribe_audio(audio)
    logger.info(
        f"[STREAM] Audio transcribed - CallId: {call_id}, Bytes: {len(audio)}, "
        f"Text length: {len(transcript or '')}"
    )
    instruction = await state.controller.handle_input(correlation_id=call_id, speech_text=transcript)
    payload = await _reply_payload(websocket, session, instruction)
    payload["transcript"] = transcript
    return {"type": "audio_response", "payload": payload}


async def _handle_state(websocket: WebSocket, call_id: str, requested: Any) -> Dict[str, Any]:
    state = websocket.app.state
    state.registry.get(call_id)

    if requested is not None:
        try:
            call_status = CallStatus(requested)
        except (ValueError, TypeError) as e:
            raise InvalidSpec(f"Unknown call state: {requested}") from e
        logger.info(f"[STREAM] Conversation state update - CallId: {call_id}, State: {call_status}")
        if call_status == CallStatus.ENDED:
            await state.controller.end_call(call_id)
        else:
            await state.registry.update_status(call_id, call_status)

    stats = state.registry.session_stats(call_id)
    return {
        "type": "state_acknowledged",
        "payload": {
            "state": stats["status"],
            "stage": stats["stage"],
            "message_count": stats["message_count"],
        },
    }


async def _reply_payload(
    websocket: WebSocket, session: CallSession, instruction: CallInstruction
) -> Dict[str, Any]:
    return {
        "text": instruction.say,
        "action": instruction.action.value,
        "audio": await _synthesize(websocket, session, instruction.say),
    }


async def _synthesize(websocket: WebSocket, session: CallSession, text: Optional[str]) -> Optional[str]:
    tts_service = websocket.app.state.tts_service
    if tts_service is None or not text:
        return None
    try:
        audio = await tts_service.synthesize_speech(text, session.voice_config)
    except UpstreamUnavailable as e:
        logger.warning(f"[STREAM] Speech synthesis failed - CallId: {session.call_id}, Error: {e.message}")
        return None
    return base64.b64encode(audio).decode("ascii")
