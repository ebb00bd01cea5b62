"""Response generation with model fallback."""
import asyncio
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel

from callagent.services.agent.backends import ModelBackend
from callagent.services.agent.constants import (
    FALLBACK_RESPONSES,
    GREETING_INDICATORS,
    KNOWLEDGE_FALLBACK_TEMPLATE,
    PRICING_INDICATORS,
    PRODUCT_INDICATORS,
    SUMMARY_UNAVAILABLE,
    SUPPORT_INDICATORS,
)
from callagent.services.agent.prompt import (
    SUMMARY_SYSTEM_PROMPT,
    get_summary_prompt,
    get_system_prompt,
)
from callagent.services.knowledge.index import KnowledgeIndex
from callagent.services.knowledge.models import KnowledgeResult

logger = logging.getLogger(__name__)

_GREETING_RE = re.compile(
    r"\b(" + "|".join(re.escape(word) for word in GREETING_INDICATORS) + r")\b"
)


class GenerationResult(BaseModel):
    """Outcome of one generation request."""

    content: str
    model_used: Optional[str] = None
    knowledge_base_used: bool = False
    knowledge_result_count: int = 0


def classify_message(message: str) -> str:
    """Map a caller message to a fallback category."""
    message_lower = (message or "").lower()
    if any(word in message_lower for word in PRICING_INDICATORS):
        return "pricing"
    if any(word in message_lower for word in SUPPORT_INDICATORS):
        return "support"
    if any(word in message_lower for word in PRODUCT_INDICATORS):
        return "product"
    if _GREETING_RE.search(message_lower):
        return "greeting"
    return "default"


def fallback_response(
    message: str, knowledge_results: Optional[Sequence[KnowledgeResult]] = None
) -> str:
    """Deterministic reply used when no model produced one."""
    if knowledge_results:
        content = knowledge_results[0].content.strip()
        if content:
            return KNOWLEDGE_FALLBACK_TEMPLATE.format(content=content)
    return FALLBACK_RESPONSES[classify_message(message)]


def _as_message(item: Any) -> Optional[Dict[str, str]]:
    if isinstance(item, dict):
        role, content = item.get("role"), item.get("content")
    else:
        role, content = getattr(item, "role", None), getattr(item, "content", None)
    if role not in ("user", "assistant") or not content:
        return None
    return {"role": role, "content": str(content)}


class ResponseGenerator:
    """Produces the agent's next utterance. Never raises, never returns empty text."""

    def __init__(
        self,
        knowledge_index: KnowledgeIndex,
        backends: Optional[List[ModelBackend]] = None,
        model_timeout: float = 8.0,
        context_results: int = 3,
    ):
        self.knowledge_index = knowledge_index
        self.backends = list(backends or [])
        self.model_timeout = model_timeout
        self.context_results = context_results

    async def generate(
        self,
        message: str,
        context: Optional[Sequence[Any]] = None,
        knowledge_base_id: Optional[str] = None,
        custom_prompt: Optional[str] = None,
    ) -> GenerationResult:
        """
        Generate a reply to message.

        Args:
            message: What the caller just said
            context: Earlier turns (Turn objects or role/content dicts)
            knowledge_base_id: Knowledge base to ground the answer in
            custom_prompt: Extra operator instructions for this conversation

        Returns:
            GenerationResult with non-empty content
        """
        knowledge_results: List[KnowledgeResult] = []
        try:
            if knowledge_base_id:
                knowledge_results = self.knowledge_index.query(
                    knowledge_base_id, message, self.context_results
                )

            system_prompt = get_system_prompt(
                custom_prompt,
                knowledge_results,
                knowledge_requested=bool(knowledge_base_id),
            )
            messages = [m for m in map(_as_message, context or []) if m]
            messages.append({"role": "user", "content": message})

            logger.info(
                f"[GENERATOR] Generating response - Message length: {len(message)}, "
                f"Context turns: {len(messages) - 1}, "
                f"KnowledgeBase: {knowledge_base_id or 'NONE'}, "
                f"Knowledge results: {len(knowledge_results)}"
            )

            for backend in self.backends:
                content = await self._attempt(backend, system_prompt, messages)
                if content:
                    return GenerationResult(
                        content=content,
                        model_used=backend.name,
                        knowledge_base_used=bool(knowledge_results),
                        knowledge_result_count=len(knowledge_results),
                    )

            if self.backends:
                logger.error("[GENERATOR] All models failed, using fallback response")
            else:
                logger.warning("[GENERATOR] No model backends configured, using fallback response")

        except Exception as e:
            logger.error(
                f"[GENERATOR] Unexpected error - Error: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )

        return GenerationResult(
            content=fallback_response(message, knowledge_results),
            model_used=None,
            knowledge_base_used=bool(knowledge_results),
            knowledge_result_count=len(knowledge_results),
        )

    async def _attempt(
        self, backend: ModelBackend, system_prompt: str, messages: List[Dict[str, str]]
    ) -> Optional[str]:
        logger.info(f"[GENERATOR] Trying model: {backend.name}")
        try:
            content = await asyncio.wait_for(
                backend.complete(system_prompt, messages), timeout=self.model_timeout
            )
        except asyncio.TimeoutError:
            logger.error(f"[GENERATOR] Model {backend.name} timed out after {self.model_timeout}s")
            return None
        except Exception as e:
            logger.error(f"[GENERATOR] Model {backend.name} failed - {type(e).__name__}: {str(e)}")
            return None

        content = (content or "").strip()
        if not content:
            logger.error(f"[GENERATOR] Model {backend.name} returned empty text")
            return None

        logger.info(
            f"[GENERATOR] Response generated - Model: {backend.name}, Length: {len(content)}"
        )
        return content

    async def summarize(self, history: Sequence[Any]) -> str:
        """Summarize a conversation. Falls back to a fixed sentence."""
        messages = [m for m in map(_as_message, history or []) if m]
        if not messages:
            return "No conversation to summarize."

        transcript = "\n".join(f"{m['role']}: {m['content']}" for m in messages)
        prompt = [{"role": "user", "content": get_summary_prompt(transcript)}]
        try:
            for backend in self.backends:
                content = await self._attempt(backend, SUMMARY_SYSTEM_PROMPT, prompt)
                if content:
                    return content
        except Exception as e:
            logger.error(
                f"[GENERATOR] Summary failed - Error: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )
        return SUMMARY_UNAVAILABLE
