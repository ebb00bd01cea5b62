"""Turn-taking controller for live calls."""
import asyncio
import logging
import weakref
from typing import Dict, List, Optional

from callagent.core.errors import CorrelationConflict
from callagent.services.agent.constants import (
    ANSWERED_CALL_STATUSES,
    APOLOGY_MESSAGE,
    CALL_ENDED_MESSAGE,
    FAREWELL_MESSAGE,
    REPROMPT_MESSAGE,
    TERMINAL_CALL_STATUSES,
)
from callagent.services.agent.generator import (
    GenerationResult,
    ResponseGenerator,
    fallback_response,
)
from callagent.services.agent.stages import TurnStage
from callagent.services.call_session.models import CallSession, CallStatus, new_call_id
from callagent.services.call_session.registry import SessionRegistry
from callagent.services.knowledge.models import KnowledgeResult
from callagent.services.telephony.twiml import CallInstruction, InstructionAction

logger = logging.getLogger(__name__)

DEFAULT_GREETING = (
    "Hello! I am your AI assistant. I have access to information about our "
    "products, pricing, and support. How can I help you today?"
)


class TurnController:
    """
    Drives one conversation per call through
    greeting -> listening -> processing -> responding -> listening | ending.

    Every public entry point returns something the provider can act on;
    failures degrade to a spoken apology instead of propagating.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        generator: ResponseGenerator,
        greeting_message: str = DEFAULT_GREETING,
        greeting_timeout: int = 15,
        followup_timeout: int = 10,
        max_silent_retries: int = 1,
        turn_timeout: float = 12.0,
        busy_timeout: float = 2.0,
        voice: str = "Polly.Joanna",
        callback_path: str = "/webhooks/voice/gather",
    ):
        self.registry = registry
        self.generator = generator
        self.greeting_message = greeting_message
        self.greeting_timeout = greeting_timeout
        self.followup_timeout = followup_timeout
        self.max_silent_retries = max_silent_retries
        self.turn_timeout = turn_timeout
        self.busy_timeout = busy_timeout
        self.voice = voice
        self.callback_path = callback_path
        # Locks disappear once no turn holds or waits on them
        self._turn_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )
        self._inflight: Dict[str, asyncio.Task] = {}

    def turn_lock(self, call_id: str) -> asyncio.Lock:
        """Lock serializing turns of one conversation."""
        lock = self._turn_locks.get(call_id)
        if lock is None:
            lock = asyncio.Lock()
            self._turn_locks[call_id] = lock
        return lock

    def callback_url(self, call_id: str, base_url: str = "") -> str:
        """Callback the provider posts the next input to."""
        return f"{base_url.rstrip('/')}{self.callback_path}?callId={call_id}"

    def _listen(self, text: str, call_id: str, timeout: int, base_url: str) -> CallInstruction:
        return CallInstruction(
            say=text,
            action=InstructionAction.LISTEN,
            timeout=timeout,
            callback_url=self.callback_url(call_id, base_url),
            voice=self.voice,
        )

    def _hangup(self, text: Optional[str] = None) -> CallInstruction:
        return CallInstruction(say=text, action=InstructionAction.HANGUP, voice=self.voice)

    async def resolve_session(
        self, provider_call_id: Optional[str], correlation_id: Optional[str] = None
    ) -> CallSession:
        """
        Find the session an event belongs to.

        Tries the echoed correlation id first, then the provider's call id,
        and finally fabricates a placeholder so the call stays trackable.
        """
        session = self.registry.lookup(correlation_id)
        if session is not None:
            if provider_call_id and session.provider_call_id is None:
                try:
                    await self.registry.attach_provider_id(session.call_id, provider_call_id)
                except CorrelationConflict as e:
                    logger.warning(f"[TURN] {e.message} - CallId: {session.call_id}")
            return session

        session = self.registry.lookup_by_provider_id(provider_call_id)
        if session is not None:
            return session

        call_id = correlation_id or new_call_id()
        logger.warning(
            f"[TURN] No session for event, creating placeholder - CallId: {call_id}, "
            f"ProviderCallId: {provider_call_id or 'NONE'}"
        )
        if provider_call_id:
            try:
                return await self.registry.attach_provider_id(call_id, provider_call_id)
            except CorrelationConflict:
                # Another event for this call correlated it first
                session = self.registry.lookup_by_provider_id(provider_call_id)
                if session is not None:
                    return session
        return await self.registry.create_placeholder(call_id)

    async def start_call(
        self,
        provider_call_id: Optional[str],
        correlation_id: Optional[str] = None,
        base_url: str = "",
    ) -> CallInstruction:
        """Greet the caller and start listening."""
        try:
            session = await self.resolve_session(provider_call_id, correlation_id)
            async with self.turn_lock(session.call_id):
                await self.registry.update_status(session.call_id, CallStatus.ACTIVE)
                if session.status == CallStatus.ENDED:
                    return self._hangup()
                session.stage = TurnStage.LISTENING
                session.silent_turns = 0
                logger.info(
                    f"[TURN] Call started - CallId: {session.call_id}, "
                    f"ProviderCallId: {provider_call_id}, "
                    f"KnowledgeBase: {session.knowledge_base_id or 'NONE'}"
                )
                return self._listen(
                    self.greeting_message, session.call_id, self.greeting_timeout, base_url
                )
        except Exception as e:
            logger.error(
                f"[TURN] Error starting call - ProviderCallId: {provider_call_id}, "
                f"Error: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )
            return self._hangup(
                "I apologize, but I'm experiencing technical difficulties. "
                "Please try calling again later. Goodbye."
            )

    async def handle_input(
        self,
        provider_call_id: Optional[str] = None,
        correlation_id: Optional[str] = None,
        digits: Optional[str] = None,
        speech_text: Optional[str] = None,
        base_url: str = "",
    ) -> CallInstruction:
        """Process one caller input event and return the next instruction."""
        try:
            session = await self.resolve_session(provider_call_id, correlation_id)
        except Exception as e:
            logger.error(
                f"[TURN] Session resolution failed - ProviderCallId: {provider_call_id}, "
                f"Error: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )
            return self._hangup("I apologize for the technical difficulty. Goodbye.")

        call_id = session.call_id
        lock = self.turn_lock(call_id)
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self.busy_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"[TURN] Previous turn still running after {self.busy_timeout}s, "
                f"reprompting - CallId: {call_id}"
            )
            return self._listen(REPROMPT_MESSAGE, call_id, self.followup_timeout, base_url)

        try:
            return await self._process_turn(session, digits, speech_text, base_url)
        except Exception as e:
            logger.error(
                f"[TURN] Error processing turn - CallId: {call_id}, "
                f"Error: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )
            session.stage = TurnStage.LISTENING
            return self._listen(APOLOGY_MESSAGE, call_id, self.followup_timeout, base_url)
        finally:
            lock.release()

    async def _process_turn(
        self,
        session: CallSession,
        digits: Optional[str],
        speech_text: Optional[str],
        base_url: str,
    ) -> CallInstruction:
        call_id = session.call_id
        if session.stage == TurnStage.ENDING or session.status == CallStatus.ENDED:
            logger.info(f"[TURN] Input after call ending, hanging up - CallId: {call_id}")
            session.stage = TurnStage.ENDING
            return self._hangup()

        user_input = (speech_text or "").strip()
        if not user_input and digits and digits.strip():
            user_input = f"User pressed: {digits.strip()}"

        if not user_input:
            return self._handle_silence(session, base_url)

        session.silent_turns = 0
        session.stage = TurnStage.PROCESSING
        logger.info(
            f"[TURN] Processing input - CallId: {call_id}, Length: {len(user_input)}, "
            f"History: {len(session.conversation_history)}"
        )

        reply = await self._generate_reply(session, user_input)
        if reply is None:
            session.stage = TurnStage.ENDING
            return self._hangup(CALL_ENDED_MESSAGE)

        await self.registry.append_turn(call_id, "user", user_input)
        await self.registry.append_turn(call_id, "assistant", reply)

        session.stage = TurnStage.RESPONDING
        instruction = self._listen(reply, call_id, self.followup_timeout, base_url)
        session.stage = TurnStage.LISTENING
        return instruction

    async def chat_turn(
        self,
        session: CallSession,
        message: str,
        knowledge_base_id: Optional[str] = None,
        custom_prompt: Optional[str] = None,
    ) -> GenerationResult:
        """
        Run one offline chat exchange.

        Shares the call's turn lock so overlapping messages for one session
        record their user and assistant turns as adjacent pairs.
        """
        async with self.turn_lock(session.call_id):
            result = await self.generator.generate(
                message=message,
                context=list(session.conversation_history),
                knowledge_base_id=knowledge_base_id or session.knowledge_base_id,
                custom_prompt=custom_prompt or session.custom_prompt,
            )
            await self.registry.append_turn(session.call_id, "user", message)
            await self.registry.append_turn(session.call_id, "assistant", result.content)
        return result

    def _handle_silence(self, session: CallSession, base_url: str) -> CallInstruction:
        session.silent_turns += 1
        if session.silent_turns > self.max_silent_retries:
            logger.info(
                f"[TURN] No input after {session.silent_turns} attempts, ending call - "
                f"CallId: {session.call_id}"
            )
            session.stage = TurnStage.ENDING
            return self._hangup(FAREWELL_MESSAGE)

        logger.info(
            f"[TURN] Empty input, reprompting - CallId: {session.call_id}, "
            f"Attempt: {session.silent_turns}"
        )
        session.stage = TurnStage.LISTENING
        return self._listen(REPROMPT_MESSAGE, session.call_id, self.followup_timeout, base_url)

    async def _generate_reply(self, session: CallSession, user_input: str) -> Optional[str]:
        """Run generation for one turn. None means the call ended meanwhile."""
        call_id = session.call_id
        task = asyncio.ensure_future(
            self.generator.generate(
                message=user_input,
                context=list(session.conversation_history),
                knowledge_base_id=session.knowledge_base_id,
                custom_prompt=session.custom_prompt,
            )
        )
        self._inflight[call_id] = task
        try:
            done, _ = await asyncio.wait({task}, timeout=self.turn_timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if self._inflight.get(call_id) is task:
                del self._inflight[call_id]

        if not done:
            task.cancel()
            logger.error(
                f"[TURN] Generation exceeded {self.turn_timeout}s, using fallback - CallId: {call_id}"
            )
            return fallback_response(user_input, self._knowledge_results(session, user_input))
        if task.cancelled():
            logger.info(f"[TURN] Generation cancelled, call ended - CallId: {call_id}")
            return None
        return task.result().content

    def _knowledge_results(self, session: CallSession, user_input: str) -> List[KnowledgeResult]:
        if not session.knowledge_base_id:
            return []
        try:
            return self.generator.knowledge_index.query(
                session.knowledge_base_id, user_input, self.generator.context_results
            )
        except Exception as e:
            logger.error(
                f"[TURN] Knowledge lookup for fallback failed - CallId: {session.call_id}, "
                f"Error: {type(e).__name__}: {str(e)}"
            )
            return []

    def cancel_generation(self, call_id: str) -> bool:
        """Cancel the in-flight generation for a call, if any."""
        task = self._inflight.get(call_id)
        if task is None or task.done():
            return False
        task.cancel()
        logger.info(f"[TURN] In-flight generation cancelled - CallId: {call_id}")
        return True

    async def end_call(self, call_id: str) -> None:
        """End a call locally: stop generation and close the session."""
        self.cancel_generation(call_id)
        await self.registry.end_session(call_id)

    async def handle_status(
        self,
        provider_call_id: Optional[str],
        status: str,
        correlation_id: Optional[str] = None,
    ) -> Optional[CallSession]:
        """Apply a provider call-status event."""
        status = (status or "").lower()

        if status in ANSWERED_CALL_STATUSES:
            session = await self.resolve_session(provider_call_id, correlation_id)
            await self.registry.update_status(session.call_id, CallStatus.ACTIVE)
            return session

        session = self.registry.lookup(correlation_id) or self.registry.lookup_by_provider_id(
            provider_call_id
        )
        if status in TERMINAL_CALL_STATUSES:
            if session is None:
                logger.info(
                    f"[TURN] Terminal status for unknown call - ProviderCallId: {provider_call_id}, "
                    f"Status: {status}"
                )
                return None
            await self.end_call(session.call_id)
            return session

        logger.debug(
            f"[TURN] Status update needs no action - ProviderCallId: {provider_call_id}, Status: {status}"
        )
        return session

    async def handle_transcription(
        self,
        transcript_id: str,
        status: str,
        text: Optional[str],
        correlation_id: Optional[str] = None,
        provider_call_id: Optional[str] = None,
    ) -> Optional[CallInstruction]:
        """Feed a completed transcription into the conversation."""
        if status != "completed" or not (text or "").strip():
            logger.info(
                f"[TURN] Ignoring transcription - TranscriptId: {transcript_id}, Status: {status}"
            )
            return None
        return await self.handle_input(
            provider_call_id=provider_call_id,
            correlation_id=correlation_id,
            speech_text=text,
        )

    async def shutdown(self) -> None:
        """Cancel every in-flight generation."""
        tasks = [task for task in self._inflight.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._inflight.clear()
