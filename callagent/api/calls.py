"""Call management API endpoints."""
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from callagent.core.dependencies import (
    get_base_url,
    get_controller,
    get_gateway,
    get_generator,
    get_knowledge_index,
    get_registry,
)
from callagent.core.errors import CallAgentError, InvalidSpec, UpstreamUnavailable
from callagent.core.logging import mask_phone
from callagent.services.agent.generator import ResponseGenerator
from callagent.services.call_session.controller import TurnController
from callagent.services.call_session.models import VoiceConfig
from callagent.services.call_session.registry import SessionRegistry
from callagent.services.knowledge.index import KnowledgeIndex
from callagent.services.telephony.gateway import TwilioGateway

router = APIRouter()
logger = logging.getLogger(__name__)


class InitiateCallRequest(BaseModel):
    """Outbound call request."""
    phone_number: str
    knowledge_base_id: Optional[str] = None
    custom_prompt: Optional[str] = None
    voice_config: Optional[VoiceConfig] = None


class InitiateCallResponse(BaseModel):
    """Outbound call result."""
    success: bool = True
    call_id: str
    provider_call_id: str
    knowledge_base_id: Optional[str] = None
    status: str
    message: str = "Call initiated successfully"


class CallStatusResponse(BaseModel):
    """Call status response model."""
    call_id: str
    provider_call_id: Optional[str] = None
    status: str
    stage: str
    duration_seconds: int
    message_count: int
    start_time: datetime
    end_time: Optional[datetime] = None
    last_activity: datetime
    provider_status: Optional[str] = None
    provider_duration: Optional[str] = None


class ActiveCallResponse(BaseModel):
    """Active call listing entry."""
    call_id: str
    provider_call_id: Optional[str] = None
    phone_number: Optional[str] = None
    knowledge_base_id: Optional[str] = None
    status: str
    stage: str
    message_count: int
    start_time: datetime


@router.post("/api/calls/initiate", response_model=InitiateCallResponse)
async def initiate_call(
    request: Request,
    body: InitiateCallRequest,
    registry: SessionRegistry = Depends(get_registry),
    knowledge_index: KnowledgeIndex = Depends(get_knowledge_index),
    gateway: TwilioGateway = Depends(get_gateway),
):
    """Start an outbound call."""
    knowledge_base_id = body.knowledge_base_id
    if not knowledge_base_id:
        available = knowledge_index.list()
        if available:
            knowledge_base_id = available[0].id
            logger.info(
                f"[CALLS] Auto-selected knowledge base - Id: {knowledge_base_id}, "
                f"Name: {available[0].name}"
            )

    spec = body.model_dump(exclude_none=True)
    spec["knowledge_base_id"] = knowledge_base_id
    session = await registry.create_session(spec)

    logger.info(
        f"[CALLS] Initiating outbound call - CallId: {session.call_id}, "
        f"Phone: {mask_phone(session.phone_number)}, KnowledgeBase: {knowledge_base_id or 'NONE'}"
    )

    base_url = get_base_url(request)
    try:
        provider_call_id = await gateway.place_call(
            to=session.phone_number,
            voice_url=f"{base_url}/webhooks/voice/incoming?callId={session.call_id}",
            status_callback_url=f"{base_url}/webhooks/voice/status?callId={session.call_id}",
        )
    except UpstreamUnavailable:
        await registry.end_session(session.call_id)
        raise

    await registry.attach_provider_id(session.call_id, provider_call_id)
    logger.info(
        f"[CALLS] Call initiated - CallId: {session.call_id}, ProviderCallId: {provider_call_id}"
    )
    return InitiateCallResponse(
        call_id=session.call_id,
        provider_call_id=provider_call_id,
        knowledge_base_id=knowledge_base_id,
        status=session.status.value,
    )


@router.get("/api/calls/active", response_model=List[ActiveCallResponse])
async def list_active_calls(registry: SessionRegistry = Depends(get_registry)):
    """List calls that have not ended."""
    return [
        ActiveCallResponse(
            call_id=s.call_id,
            provider_call_id=s.provider_call_id,
            phone_number=mask_phone(s.phone_number) if s.phone_number else None,
            knowledge_base_id=s.knowledge_base_id,
            status=s.status.value,
            stage=s.stage.value,
            message_count=len(s.conversation_history),
            start_time=s.start_time,
        )
        for s in registry.active_sessions()
    ]


@router.get("/api/calls/{call_id}/status", response_model=CallStatusResponse)
async def get_call_status(
    call_id: str,
    request: Request,
    registry: SessionRegistry = Depends(get_registry),
):
    """Get the status of a call, including recently ended ones."""
    stats = registry.session_stats(call_id)
    gateway = request.app.state.gateway
    if gateway is not None and stats["provider_call_id"]:
        try:
            provider = await gateway.fetch_status(stats["provider_call_id"])
            stats["provider_status"] = provider["status"]
            stats["provider_duration"] = provider["duration"]
        except CallAgentError as e:
            logger.warning(f"[CALLS] Provider status unavailable - CallId: {call_id}, Error: {e.message}")
    return CallStatusResponse(**stats)


@router.post("/api/calls/{call_id}/end")
async def end_call(
    call_id: str,
    request: Request,
    registry: SessionRegistry = Depends(get_registry),
    controller: TurnController = Depends(get_controller),
):
    """Hang up a call and close its session."""
    session = registry.get(call_id)
    if session.provider_call_id:
        try:
            await get_gateway(request).end_call(session.provider_call_id)
        except CallAgentError as e:
            # Still close locally; the provider will report the final status.
            logger.warning(f"[CALLS] Provider hangup failed - CallId: {call_id}, Error: {e.message}")

    await controller.end_call(call_id)
    logger.info(f"[CALLS] Call ended - CallId: {call_id}")
    return {"success": True, "message": "Call ended successfully"}


@router.get("/api/calls/{call_id}/summary")
async def get_call_summary(
    call_id: str,
    registry: SessionRegistry = Depends(get_registry),
    generator: ResponseGenerator = Depends(get_generator),
):
    """Summarize a call's conversation."""
    session = registry.get(call_id)
    if session.channel != "call":
        raise InvalidSpec(f"Not a call session: {call_id}")
    summary = await generator.summarize(list(session.conversation_history))
    return {
        "call_id": call_id,
        "summary": summary,
        "message_count": len(session.conversation_history),
    }
