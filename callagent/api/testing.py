"""Offline chat testing endpoints."""
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from callagent.core.dependencies import get_controller, get_registry
from callagent.core.errors import SessionNotFound
from callagent.services.call_session.controller import TurnController
from callagent.services.call_session.models import Turn
from callagent.services.call_session.registry import SessionRegistry

router = APIRouter()
logger = logging.getLogger(__name__)


class ChatRequest(BaseModel):
    """Chat test request."""
    message: str = Field(min_length=1)
    session_id: Optional[str] = None
    custom_prompt: Optional[str] = Field(default=None, max_length=1000)
    knowledge_base_id: Optional[str] = None


class ChatResponse(BaseModel):
    """Chat test response."""
    success: bool = True
    session_id: str
    response: str
    model_used: Optional[str] = None
    knowledge_base_used: bool = False
    conversation_length: int


class ChatSessionSummary(BaseModel):
    """Chat session listing entry."""
    id: str
    message_count: int
    created_at: datetime
    last_activity: datetime


class ChatSessionDetail(BaseModel):
    """Chat session with its history."""
    id: str
    conversation_history: List[Turn]
    created_at: datetime
    last_activity: datetime


def _get_chat_session(registry: SessionRegistry, session_id: str):
    session = registry.lookup(session_id)
    if session is None or session.channel != "chat":
        raise SessionNotFound(f"Session not found: {session_id}")
    return session


@router.post("/api/testing/chat", response_model=ChatResponse)
async def chat(
    body: ChatRequest,
    registry: SessionRegistry = Depends(get_registry),
    controller: TurnController = Depends(get_controller),
):
    """Exchange one message with the agent without a phone call."""
    session = await registry.create_chat_session(
        session_id=body.session_id,
        knowledge_base_id=body.knowledge_base_id,
        custom_prompt=body.custom_prompt,
    )
    if session.channel != "chat":
        raise SessionNotFound(f"Session not found: {body.session_id}")

    # Per-message overrides win over what the session was created with
    knowledge_base_id = body.knowledge_base_id or session.knowledge_base_id
    custom_prompt = body.custom_prompt or session.custom_prompt

    logger.info(
        f"[TESTING] Processing chat message - SessionId: {session.call_id}, "
        f"Length: {len(body.message)}, KnowledgeBase: {knowledge_base_id or 'NONE'}"
    )
    result = await controller.chat_turn(
        session, body.message, knowledge_base_id=knowledge_base_id, custom_prompt=custom_prompt
    )

    return ChatResponse(
        session_id=session.call_id,
        response=result.content,
        model_used=result.model_used,
        knowledge_base_used=result.knowledge_base_used,
        conversation_length=len(session.conversation_history),
    )


@router.get("/api/testing/sessions")
async def list_sessions(registry: SessionRegistry = Depends(get_registry)):
    """List chat testing sessions."""
    sessions = [
        ChatSessionSummary(
            id=s.call_id,
            message_count=len(s.conversation_history),
            created_at=s.start_time,
            last_activity=s.last_activity,
        )
        for s in registry.chat_sessions()
    ]
    return {"success": True, "sessions": sessions}


@router.get("/api/testing/sessions/{session_id}")
async def get_session(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    """Get a chat session's history."""
    session = _get_chat_session(registry, session_id)
    return {
        "success": True,
        "session": ChatSessionDetail(
            id=session.call_id,
            conversation_history=list(session.conversation_history),
            created_at=session.start_time,
            last_activity=session.last_activity,
        ),
    }


@router.delete("/api/testing/sessions/{session_id}")
async def delete_session(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    """Delete a chat session."""
    _get_chat_session(registry, session_id)
    await registry.delete_session(session_id)
    logger.info(f"[TESTING] Chat session deleted - SessionId: {session_id}")
    return {"success": True, "message": "Session deleted"}
