"""Language model backends."""
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import anthropic
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI, OpenAIError

from callagent.core.config import Settings
from callagent.core.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)


class ModelBackend(ABC):
    """One model in the fallback chain."""

    provider: str = ""

    def __init__(self, model: str):
        self.model = model

    @property
    def name(self) -> str:
        return f"{self.provider}:{self.model}"

    @abstractmethod
    async def complete(self, system_prompt: str, messages: List[Dict[str, str]]) -> str:
        """Return the model's reply text. Raises UpstreamUnavailable on failure."""
        pass


class OpenAIChatBackend(ModelBackend):
    """OpenAI chat completions."""

    provider = "openai"

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str,
        max_tokens: int = 500,
        temperature: float = 0.7,
    ):
        super().__init__(model)
        self.client = client
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def complete(self, system_prompt: str, messages: List[Dict[str, str]]) -> str:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "system", "content": system_prompt}, *messages],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except OpenAIError as e:
            raise UpstreamUnavailable(f"{self.name} failed: {str(e)}") from e
        return response.choices[0].message.content or ""


class AnthropicBackend(ModelBackend):
    """Anthropic messages API."""

    provider = "anthropic"

    def __init__(
        self,
        client: AsyncAnthropic,
        model: str,
        max_tokens: int = 500,
        temperature: float = 0.7,
    ):
        super().__init__(model)
        self.client = client
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def complete(self, system_prompt: str, messages: List[Dict[str, str]]) -> str:
        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                system=system_prompt,
                messages=alternate_roles(messages),
            )
        except anthropic.AnthropicError as e:
            raise UpstreamUnavailable(f"{self.name} failed: {str(e)}") from e
        return "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )


def alternate_roles(messages: List[Dict[str, str]]) -> List[Dict[str, str]]:
    """
    Make a history acceptable to the messages API: it must open with a user
    turn and roles must alternate. Consecutive same-role turns are merged.
    """
    result: List[Dict[str, str]] = []
    for message in messages:
        if not result and message["role"] != "user":
            continue
        if result and result[-1]["role"] == message["role"]:
            result[-1] = {
                "role": message["role"],
                "content": f"{result[-1]['content']}\n{message['content']}",
            }
        else:
            result.append({"role": message["role"], "content": message["content"]})
    return result


def build_backends(settings: Settings) -> List[ModelBackend]:
    """Build the configured fallback chain, skipping providers with no API key."""
    openai_client: Optional[AsyncOpenAI] = None
    anthropic_client: Optional[AsyncAnthropic] = None
    backends: List[ModelBackend] = []

    for entry in settings.model_chain:
        provider, _, model = entry.partition(":")
        if not model:
            provider, model = "openai", provider
        provider = provider.strip().lower()
        model = model.strip()

        if provider == "openai":
            if not settings.openai_api_key:
                logger.warning(f"[BACKENDS] Skipping {entry} - OPENAI_API_KEY not set")
                continue
            if openai_client is None:
                openai_client = AsyncOpenAI(api_key=settings.openai_api_key)
            backends.append(
                OpenAIChatBackend(
                    openai_client,
                    model,
                    max_tokens=settings.model_max_tokens,
                    temperature=settings.model_temperature,
                )
            )
        elif provider == "anthropic":
            if not settings.anthropic_api_key:
                logger.warning(f"[BACKENDS] Skipping {entry} - ANTHROPIC_API_KEY not set")
                continue
            if anthropic_client is None:
                anthropic_client = AsyncAnthropic(api_key=settings.anthropic_api_key)
            backends.append(
                AnthropicBackend(
                    anthropic_client,
                    model,
                    max_tokens=settings.model_max_tokens,
                    temperature=settings.model_temperature,
                )
            )
        else:
            logger.warning(f"[BACKENDS] Unknown provider in model chain: {entry}")

    if backends:
        logger.info(f"[BACKENDS] Model chain: {', '.join(b.name for b in backends)}")
    else:
        logger.warning("[BACKENDS] No model backends configured - using fallback responses")
    return backends
