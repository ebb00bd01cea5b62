"""Twilio voice webhook endpoints."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Form, Query, Request
from fastapi.responses import Response

from callagent.core.dependencies import get_base_url, get_controller
from callagent.services.call_session.controller import TurnController
from callagent.services.telephony.twiml import CallInstruction, InstructionAction, render_twiml

router = APIRouter()
logger = logging.getLogger(__name__)


def twiml_response(instruction: CallInstruction) -> Response:
    """Wrap an instruction as an XML response."""
    return Response(content=render_twiml(instruction), media_type="application/xml")


@router.post("/voice/incoming")
async def handle_incoming_call(
    request: Request,
    CallSid: str = Form(...),
    From: Optional[str] = Form(None),
    To: Optional[str] = Form(None),
    callId: Optional[str] = Query(None),
    controller: TurnController = Depends(get_controller),
):
    """
    Handle a call being answered.

    Twilio posts here for inbound calls and when an outbound call connects.
    """
    logger.info(
        f"[INCOMING CALL] Received call webhook - CallSid: {CallSid}, CallId: {callId or 'NONE'}, "
        f"Client: {request.client.host if request.client else 'unknown'}"
    )
    instruction = await controller.start_call(
        CallSid, correlation_id=callId, base_url=get_base_url(request)
    )
    logger.info(f"[INCOMING CALL] Greeting issued - CallSid: {CallSid}")
    return twiml_response(instruction)


async def _handle_gather(
    request: Request,
    controller: TurnController,
    call_sid: Optional[str],
    call_id: Optional[str],
    digits: Optional[str],
    speech_result: Optional[str],
) -> Response:
    logger.info(
        f"[GATHER] Received input - CallSid: {call_sid}, CallId: {call_id or 'NONE'}, "
        f"SpeechResult length: {len(speech_result) if speech_result else 0}, "
        f"Digits: {'yes' if digits else 'no'}, Method: {request.method}"
    )
    try:
        instruction = await controller.handle_input(
            provider_call_id=call_sid,
            correlation_id=call_id,
            digits=digits,
            speech_text=speech_result,
            base_url=get_base_url(request),
        )
    except Exception as e:
        logger.error(
            f"[GATHER] Error processing input - CallSid: {call_sid}, "
            f"Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
        instruction = CallInstruction(
            say="I apologize for the technical difficulty. Goodbye.",
            action=InstructionAction.HANGUP,
        )

    logger.info(f"[GATHER] Responding - CallSid: {call_sid}, Action: {instruction.action}")
    return twiml_response(instruction)


@router.post("/voice/gather")
async def handle_gather(
    request: Request,
    CallSid: Optional[str] = Form(None),
    Digits: Optional[str] = Form(None),
    SpeechResult: Optional[str] = Form(None),
    callId: Optional[str] = Query(None),
    controller: TurnController = Depends(get_controller),
):
    """
    Handle gathered speech or keypresses from Twilio.

    An empty post (Gather timed out) counts as a silent turn.
    """
    return await _handle_gather(request, controller, CallSid, callId, Digits, SpeechResult)


@router.get("/voice/gather")
async def handle_gather_get(
    request: Request,
    CallSid: Optional[str] = Query(None),
    Digits: Optional[str] = Query(None),
    SpeechResult: Optional[str] = Query(None),
    callId: Optional[str] = Query(None),
    controller: TurnController = Depends(get_controller),
):
    """Twilio sometimes delivers gather results with GET."""
    return await _handle_gather(request, controller, CallSid, callId, Digits, SpeechResult)


@router.post("/voice/status")
async def handle_call_status(
    request: Request,
    CallSid: str = Form(...),
    CallStatus: str = Form(...),
    From: Optional[str] = Form(None),
    To: Optional[str] = Form(None),
    callId: Optional[str] = Query(None),
    controller: TurnController = Depends(get_controller),
):
    """
    Handle call status updates from Twilio.

    Always answers OK so Twilio does not retry.
    """
    logger.info(
        f"[CALL STATUS] Received status update - CallSid: {CallSid}, "
        f"CallStatus: {CallStatus}, CallId: {callId or 'NONE'}"
    )
    try:
        session = await controller.handle_status(CallSid, CallStatus, correlation_id=callId)
        if session is not None:
            logger.info(
                f"[CALL STATUS] Applied - CallSid: {CallSid}, CallId: {session.call_id}, "
                f"Session status: {session.status}"
            )
    except Exception as e:
        logger.error(
            f"[CALL STATUS] Error handling status update - CallSid: {CallSid}, "
            f"CallStatus: {CallStatus}, Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
    return Response(content="OK", media_type="text/plain")
