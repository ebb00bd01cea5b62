"""FastAPI dependencies."""
from typing import Optional

from fastapi import Request

from callagent.core.config import Settings
from callagent.core.errors import UpstreamUnavailable
from callagent.services.agent.generator import ResponseGenerator
from callagent.services.call_session.controller import TurnController
from callagent.services.call_session.registry import SessionRegistry
from callagent.services.knowledge.index import KnowledgeIndex
from callagent.services.speech.stt import SpeechToTextService
from callagent.services.speech.tts import TextToSpeechService
from callagent.services.telephony.gateway import TwilioGateway


def get_settings(request: Request) -> Settings:
    """Get application settings."""
    return request.app.state.settings


def get_registry(request: Request) -> SessionRegistry:
    """Get the session registry."""
    return request.app.state.registry


def get_knowledge_index(request: Request) -> KnowledgeIndex:
    """Get the knowledge index."""
    return request.app.state.knowledge_index


def get_generator(request: Request) -> ResponseGenerator:
    """Get the response generator."""
    return request.app.state.generator


def get_controller(request: Request) -> TurnController:
    """Get the turn controller."""
    return request.app.state.controller


def get_gateway(request: Request) -> TwilioGateway:
    """Get the telephony gateway; 503 when Twilio is not configured."""
    gateway: Optional[TwilioGateway] = request.app.state.gateway
    if gateway is None:
        raise UpstreamUnavailable("Telephony gateway is not configured")
    return gateway


def get_stt_service(request: Request) -> SpeechToTextService:
    """Get the speech-to-text service; 503 when not configured."""
    service: Optional[SpeechToTextService] = request.app.state.stt_service
    if service is None:
        raise UpstreamUnavailable("Speech-to-text service is not configured")
    return service


def get_tts_service(request: Request) -> TextToSpeechService:
    """Get the text-to-speech service; 503 when not configured."""
    service: Optional[TextToSpeechService] = request.app.state.tts_service
    if service is None:
        raise UpstreamUnavailable("Text-to-speech service is not configured")
    return service


def get_base_url(request: Request) -> str:
    """
    Get the base URL for constructing absolute callback URLs.

    Uses BASE_URL if set (e.g. an ngrok or deployment URL), otherwise
    constructs it from the request.
    """
    settings: Settings = request.app.state.settings
    if settings.base_url:
        return settings.base_url.rstrip("/")
    return str(request.base_url).rstrip("/")
