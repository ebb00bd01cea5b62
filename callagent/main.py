"""Main FastAPI application."""
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from fastapi import Depends, FastAPI
from openai import AsyncOpenAI

from callagent.api import calls, health, knowledge, testing, voice
from callagent.api.auth import require_api_key
from callagent.api.webhooks import speech as speech_webhooks
from callagent.api.webhooks import stream as stream_webhooks
from callagent.api.webhooks import voice as voice_webhooks
from callagent.core.config import Settings, settings
from callagent.core.errors import register_exception_handlers
from callagent.core.logging import setup_logging
from callagent.services.agent.backends import build_backends
from callagent.services.agent.generator import ResponseGenerator
from callagent.services.call_session.controller import TurnController
from callagent.services.call_session.registry import SessionRegistry
from callagent.services.knowledge.index import KnowledgeIndex
from callagent.services.knowledge.loader import load_seed_file
from callagent.services.speech.stt import SpeechToTextService
from callagent.services.speech.tts import TextToSpeechService
from callagent.services.telephony.gateway import TwilioGateway

logger = logging.getLogger(__name__)


def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    """Build the application around one set of settings."""
    app_settings = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events."""
        # Startup
        setup_logging(app_settings.log_level)

        knowledge_index = KnowledgeIndex(chunk_size=app_settings.knowledge_chunk_size)
        registry = SessionRegistry(
            history_limit=app_settings.history_limit,
            chat_history_limit=app_settings.chat_history_limit,
            grace_period=timedelta(seconds=app_settings.session_grace_seconds),
            max_age=timedelta(seconds=app_settings.session_max_age_seconds),
            sweep_interval=app_settings.session_sweep_interval_seconds,
        )
        generator = ResponseGenerator(
            knowledge_index,
            backends=build_backends(app_settings),
            model_timeout=app_settings.model_timeout_seconds,
            context_results=app_settings.knowledge_context_results,
        )
        controller = TurnController(
            registry,
            generator,
            greeting_message=app_settings.greeting_message,
            greeting_timeout=app_settings.greeting_listen_timeout,
            followup_timeout=app_settings.followup_listen_timeout,
            max_silent_retries=app_settings.max_silent_retries,
            turn_timeout=app_settings.turn_timeout_seconds,
            busy_timeout=app_settings.turn_busy_timeout_seconds,
            voice=app_settings.twilio_voice,
        )

        openai_client = (
            AsyncOpenAI(api_key=app_settings.openai_api_key)
            if app_settings.openai_api_key
            else None
        )

        app.state.settings = app_settings
        app.state.knowledge_index = knowledge_index
        app.state.registry = registry
        app.state.generator = generator
        app.state.controller = controller
        app.state.gateway = TwilioGateway.from_settings(app_settings)
        app.state.stt_service = SpeechToTextService(openai_client) if openai_client else None
        app.state.tts_service = TextToSpeechService(openai_client) if openai_client else None

        if app_settings.knowledge_seed_file:
            load_seed_file(knowledge_index, app_settings.knowledge_seed_file)

        registry.start()
        logger.info(
            f"[STARTUP] Voice agent ready - Models: {len(generator.backends)}, "
            f"Knowledge bases: {len(knowledge_index)}, "
            f"Telephony: {'on' if app.state.gateway else 'off'}"
        )
        yield
        # Shutdown
        await controller.shutdown()
        await registry.stop()
        logger.info("[SHUTDOWN] Voice agent stopped")

    app = FastAPI(
        title="AI Voice Agent",
        description="AI voice agent for knowledge-grounded phone conversations",
        version="0.1.0",
        lifespan=lifespan,
    )
    register_exception_handlers(app)

    protected = [Depends(require_api_key)]
    app.include_router(health.router, tags=["health"])
    app.include_router(voice_webhooks.router, prefix="/webhooks", tags=["webhooks"])
    app.include_router(speech_webhooks.router, prefix="/webhooks", tags=["webhooks"])
    app.include_router(stream_webhooks.router, tags=["stream"])
    app.include_router(calls.router, tags=["calls"], dependencies=protected)
    app.include_router(knowledge.router, tags=["knowledge"], dependencies=protected)
    app.include_router(testing.router, tags=["testing"], dependencies=protected)
    app.include_router(voice.router, tags=["voice"], dependencies=protected)

    @app.get("/")
    async def root():
        """Service information."""
        return {
            "message": "AI Voice Agent API",
            "version": "0.1.0",
        }

    return app


app = create_app()
