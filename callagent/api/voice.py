"""Speech and response generation API endpoints."""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from pydantic import BaseModel, Field

from callagent.core.dependencies import get_generator, get_stt_service, get_tts_service
from callagent.services.agent.generator import ResponseGenerator
from callagent.services.call_session.models import VoiceConfig
from callagent.services.speech.stt import SpeechToTextService
from callagent.services.speech.tts import TextToSpeechService

router = APIRouter()
logger = logging.getLogger(__name__)


class SynthesizeRequest(BaseModel):
    """Text-to-speech request."""
    text: str = Field(min_length=1)
    voice_config: VoiceConfig = Field(default_factory=VoiceConfig)


class TranscribeRequest(BaseModel):
    """Speech-to-text request."""
    audio_url: str = Field(min_length=1)


class ContextMessage(BaseModel):
    """Prior conversation message."""
    role: str
    content: str


class GenerateRequest(BaseModel):
    """Response generation request."""
    message: str = Field(min_length=1)
    context: List[ContextMessage] = []
    knowledge_base_id: Optional[str] = None
    custom_prompt: Optional[str] = None


@router.post("/api/voice/synthesize")
async def synthesize(
    body: SynthesizeRequest,
    tts_service: TextToSpeechService = Depends(get_tts_service),
):
    """Convert text to speech."""
    audio = await tts_service.synthesize_speech(body.text, body.voice_config)
    return Response(content=audio, media_type="audio/mpeg")


@router.post("/api/voice/transcribe")
async def transcribe(
    body: TranscribeRequest,
    stt_service: SpeechToTextService = Depends(get_stt_service),
):
    """Convert a recording to text."""
    text = await stt_service.transcribe_url(body.audio_url)
    return {"success": True, "transcription": text}


@router.post("/api/voice/generate-response")
async def generate_response(
    body: GenerateRequest,
    generator: ResponseGenerator = Depends(get_generator),
):
    """Generate an agent reply outside of a call."""
    logger.info(
        f"[VOICE API] Generating response - Length: {len(body.message)}, "
        f"KnowledgeBase: {body.knowledge_base_id or 'NONE'}"
    )
    result = await generator.generate(
        message=body.message,
        context=[m.model_dump() for m in body.context],
        knowledge_base_id=body.knowledge_base_id,
        custom_prompt=body.custom_prompt,
    )
    return {
        "success": True,
        "response": result.content,
        "model_used": result.model_used,
        "knowledge_base_used": result.knowledge_base_used,
        "knowledge_result_count": result.knowledge_result_count,
    }
