"""Speech service transcription webhook."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from callagent.core.dependencies import get_controller
from callagent.services.call_session.controller import TurnController

router = APIRouter()
logger = logging.getLogger(__name__)


class TranscriptionCallback(BaseModel):
    """Transcription completion callback."""

    transcript_id: str
    status: str
    text: Optional[str] = None


@router.post("/speech")
async def handle_transcription(
    callback: TranscriptionCallback,
    callId: Optional[str] = Query(None),
    controller: TurnController = Depends(get_controller),
):
    """
    Feed completed transcriptions into the owning call's conversation.

    The callback URL registered with the speech service must carry
    ``?callId=<call id>``; without it every callback lands in a fresh
    placeholder session and the caller's history never accumulates.
    """
    if not callId:
        logger.warning(
            f"[SPEECH] Transcription callback without callId, history will not be kept - "
            f"TranscriptId: {callback.transcript_id}"
        )
    logger.info(
        f"[SPEECH] Transcription callback - TranscriptId: {callback.transcript_id}, "
        f"Status: {callback.status}, Text length: {len(callback.text or '')}, "
        f"CallId: {callId or 'NONE'}"
    )
    try:
        instruction = await controller.handle_transcription(
            callback.transcript_id,
            callback.status,
            callback.text,
            correlation_id=callId,
        )
    except Exception as e:
        logger.error(
            f"[SPEECH] Error handling transcription - TranscriptId: {callback.transcript_id}, "
            f"Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
        return {"received": True}

    if instruction is None:
        return {"received": True}
    return {"received": True, "response": instruction.say, "action": instruction.action.value}
