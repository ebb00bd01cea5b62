"""Text-to-speech service."""
import logging
from typing import Optional

from openai import AsyncOpenAI, OpenAIError

from callagent.core.errors import UpstreamUnavailable
from callagent.services.call_session.models import VoiceConfig

logger = logging.getLogger(__name__)

# "neural" is the default voice model name callers send
VOICE_BY_MODEL = {
    "neural": "alloy",
    "standard": "echo",
}
OPENAI_VOICES = {"alloy", "echo", "fable", "onyx", "nova", "shimmer"}


class TextToSpeechService:
    """Service for converting text to speech."""

    def __init__(self, client: AsyncOpenAI, model: str = "tts-1"):
        self.client = client
        self.model = model

    async def synthesize_speech(self, text: str, voice_config: Optional[VoiceConfig] = None) -> bytes:
        """
        Synthesize speech from text using OpenAI TTS.

        Args:
            text: Text to convert to speech
            voice_config: Requested voice model and speed

        Returns:
            Audio bytes (MP3 format)
        """
        voice_config = voice_config or VoiceConfig()
        voice = voice_config.model if voice_config.model in OPENAI_VOICES else VOICE_BY_MODEL.get(voice_config.model, "alloy")
        logger.info(
            f"[TTS] Synthesizing speech - Length: {len(text)}, Voice: {voice}, Speed: {voice_config.speed}"
        )
        try:
            response = await self.client.audio.speech.create(
                model=self.model,
                voice=voice,
                input=text,
                speed=voice_config.speed,
            )
        except OpenAIError as e:
            raise UpstreamUnavailable(f"TTS synthesis failed: {str(e)}") from e
        return response.content
