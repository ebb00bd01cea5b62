"""Speech-to-text service."""
import logging
from typing import Optional

import httpx
from openai import AsyncOpenAI, OpenAIError

from callagent.core.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)


class SpeechToTextService:
    """Service for converting speech to text."""

    def __init__(self, client: AsyncOpenAI, model: str = "whisper-1", http_client: Optional[httpx.AsyncClient] = None):
        self.client = client
        self.model = model
        self.http_client = http_client

    async def transcribe_audio(self, audio_data: bytes, format: str = "wav") -> str:
        """
        Transcribe audio to text using OpenAI Whisper.

        Args:
            audio_data: Raw audio bytes
            format: Audio format (wav, mp3, etc.)

        Returns:
            Transcribed text
        """
        try:
            transcript = await self.client.audio.transcriptions.create(
                model=self.model,
                file=(f"audio.{format}", audio_data, f"audio/{format}"),
            )
        except OpenAIError as e:
            raise UpstreamUnavailable(f"Transcription failed: {str(e)}") from e
        return transcript.text

    async def transcribe_url(self, audio_url: str) -> str:
        """
        Download a recording and transcribe it.

        Args:
            audio_url: URL of the recording (e.g. a Twilio recording URL)

        Returns:
            Transcribed text
        """
        logger.info(f"[STT] Transcribing audio - Url: {audio_url}")
        try:
            if self.http_client is not None:
                response = await self.http_client.get(audio_url)
            else:
                async with httpx.AsyncClient(timeout=30.0) as client:
                    response = await client.get(audio_url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"Failed to fetch audio: {str(e)}") from e

        # Twilio recording URLs carry no extension and serve WAV
        _, dot, extension = httpx.URL(audio_url).path.rpartition(".")
        audio_format = extension.lower() if dot and extension else "wav"
        return await self.transcribe_audio(response.content, format=audio_format)
