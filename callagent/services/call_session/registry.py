"""Call session registry."""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError

from callagent.core.errors import CorrelationConflict, InvalidSpec, SessionNotFound
from callagent.core.logging import mask_phone
from callagent.services.call_session.models import (
    CallSession,
    CallStatus,
    SessionSpec,
    Turn,
    new_call_id,
    utcnow,
)

logger = logging.getLogger(__name__)


class SessionRegistry:
    """
    In-memory registry of call sessions.

    Sessions are keyed by the local call id, with a reverse index from the
    telephony provider's call id. Mutations of one call id are serialized by
    a per-key lock; different calls never contend.
    """

    def __init__(
        self,
        history_limit: int = 50,
        chat_history_limit: int = 20,
        grace_period: timedelta = timedelta(minutes=5),
        max_age: timedelta = timedelta(hours=24),
        sweep_interval: float = 60.0,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.history_limit = history_limit
        self.chat_history_limit = chat_history_limit
        self.grace_period = grace_period
        self.max_age = max_age
        self.sweep_interval = sweep_interval
        self._clock = clock or utcnow
        self._sessions: Dict[str, CallSession] = {}
        self._provider_index: Dict[str, str] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._sweeper: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._sessions)

    def _lock(self, call_id: str) -> asyncio.Lock:
        lock = self._locks.get(call_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[call_id] = lock
        return lock

    async def create_session(
        self, spec: Union[SessionSpec, Mapping[str, Any]]
    ) -> CallSession:
        """Create a new call session in the initiated state."""
        if not isinstance(spec, SessionSpec):
            try:
                spec = SessionSpec.model_validate(dict(spec or {}))
            except ValidationError as e:
                raise InvalidSpec(_describe_validation_error(e)) from e

        call_id = spec.call_id or new_call_id()
        async with self._lock(call_id):
            if call_id in self._sessions:
                raise InvalidSpec(f"Call id already exists: {call_id}")

            now = self._clock()
            session = CallSession(
                call_id=call_id,
                phone_number=spec.phone_number,
                knowledge_base_id=spec.knowledge_base_id,
                custom_prompt=spec.custom_prompt,
                voice_config=spec.voice_config,
                status=CallStatus.INITIATED,
                max_history=self.history_limit,
                start_time=now,
                last_activity=now,
            )
            self._sessions[call_id] = session

        logger.info(
            f"[REGISTRY] Session created - CallId: {call_id}, "
            f"Phone: {mask_phone(spec.phone_number)}, "
            f"KnowledgeBase: {spec.knowledge_base_id or 'NONE'}, "
            f"Total sessions: {len(self._sessions)}"
        )
        return session

    async def create_chat_session(
        self,
        session_id: Optional[str] = None,
        knowledge_base_id: Optional[str] = None,
        custom_prompt: Optional[str] = None,
    ) -> CallSession:
        """Create (or return) an offline chat session used for testing."""
        session_id = session_id or new_call_id()
        async with self._lock(session_id):
            existing = self._sessions.get(session_id)
            if existing is not None:
                return existing

            now = self._clock()
            session = CallSession(
                call_id=session_id,
                knowledge_base_id=knowledge_base_id,
                custom_prompt=custom_prompt,
                channel="chat",
                status=CallStatus.ACTIVE,
                max_history=self.chat_history_limit,
                start_time=now,
                last_activity=now,
            )
            self._sessions[session_id] = session

        logger.info(f"[REGISTRY] Chat session created - SessionId: {session_id}")
        return session

    async def create_placeholder(self, call_id: Optional[str] = None) -> CallSession:
        """Create a minimal active session for a call nothing else knows about."""
        call_id = call_id or new_call_id()
        async with self._lock(call_id):
            return self._ensure_placeholder(call_id)

    def _ensure_placeholder(self, call_id: str) -> CallSession:
        session = self._sessions.get(call_id)
        if session is not None:
            return session

        now = self._clock()
        session = CallSession(
            call_id=call_id,
            placeholder=True,
            status=CallStatus.ACTIVE,
            max_history=self.history_limit,
            start_time=now,
            last_activity=now,
        )
        self._sessions[call_id] = session
        logger.warning(f"[REGISTRY] Placeholder session created - CallId: {call_id}")
        return session

    async def attach_provider_id(self, call_id: str, provider_id: str) -> CallSession:
        """
        Bind the telephony provider's call id to a session.

        Binding the same provider id twice is a no-op. Binding a different
        one, or one that already belongs to another call, raises
        CorrelationConflict. An unknown call id gets a placeholder session.
        """
        async with self._lock(call_id):
            owner = self._provider_index.get(provider_id)
            if owner is not None and owner != call_id:
                raise CorrelationConflict(
                    f"Provider call {provider_id} is already bound to call {owner}"
                )

            session = self._sessions.get(call_id)
            if session is None:
                session = self._ensure_placeholder(call_id)

            if session.provider_call_id == provider_id:
                return session
            if session.provider_call_id is not None:
                raise CorrelationConflict(
                    f"Call {call_id} is already bound to provider call "
                    f"{session.provider_call_id}"
                )

            session.provider_call_id = provider_id
            self._provider_index[provider_id] = call_id

        logger.info(
            f"[REGISTRY] Provider id attached - CallId: {call_id}, "
            f"ProviderCallId: {provider_id}, KnowledgeBase: {session.knowledge_base_id or 'NONE'}"
        )
        return session

    def lookup(self, call_id: Optional[str]) -> Optional[CallSession]:
        """Get a session by local call id."""
        if not call_id:
            return None
        return self._sessions.get(call_id)

    def lookup_by_provider_id(self, provider_id: Optional[str]) -> Optional[CallSession]:
        """Get a session by the provider's call id."""
        if not provider_id:
            return None
        call_id = self._provider_index.get(provider_id)
        if call_id is None:
            logger.debug(f"[REGISTRY] No session for provider id - ProviderCallId: {provider_id}")
            return None
        return self._sessions.get(call_id)

    def get(self, call_id: str) -> CallSession:
        """Get a session or raise SessionNotFound."""
        session = self.lookup(call_id)
        if session is None:
            raise SessionNotFound(f"Call not found: {call_id}")
        return session

    async def append_turn(self, call_id: str, role: str, content: str) -> None:
        """Append a turn to a session's history, keeping only the latest entries."""
        if call_id not in self._sessions:
            logger.warning(
                f"[REGISTRY] Cannot append turn, session not found - CallId: {call_id}, Role: {role}"
            )
            return

        async with self._lock(call_id):
            session = self._sessions.get(call_id)
            if session is None:
                return

            now = self._clock()
            session.conversation_history.append(
                Turn(role=role, content=content, timestamp=now)
            )
            overflow = len(session.conversation_history) - session.max_history
            if overflow > 0:
                del session.conversation_history[:overflow]
            session.last_activity = now

        logger.debug(
            f"[REGISTRY] Turn appended - CallId: {call_id}, Role: {role}, "
            f"Length: {len(content)}, Total turns: {len(session.conversation_history)}"
        )

    async def update_status(self, call_id: str, status: CallStatus) -> None:
        """Move a session forward to a new status."""
        status = CallStatus(status)
        if status == CallStatus.ENDED:
            await self.end_session(call_id)
            return

        if call_id not in self._sessions:
            logger.warning(f"[REGISTRY] Cannot update status, session not found - CallId: {call_id}")
            return

        async with self._lock(call_id):
            session = self._sessions.get(call_id)
            if session is None:
                return
            if status.rank < session.status.rank:
                logger.info(
                    f"[REGISTRY] Ignoring status regression - CallId: {call_id}, "
                    f"{session.status} -> {status}"
                )
                return
            session.status = status
            session.last_activity = self._clock()

        logger.info(f"[REGISTRY] Session status updated - CallId: {call_id}, Status: {status}")

    async def end_session(self, call_id: str) -> None:
        """Mark a session ended. It stays queryable until the grace period passes."""
        if call_id not in self._sessions:
            return

        async with self._lock(call_id):
            session = self._sessions.get(call_id)
            if session is None or session.status == CallStatus.ENDED:
                return
            now = self._clock()
            session.status = CallStatus.ENDED
            session.end_time = now
            session.last_activity = now

        duration = (session.end_time - session.start_time).total_seconds()
        logger.info(
            f"[REGISTRY] Session ended - CallId: {call_id}, Duration: {round(duration)}s, "
            f"Messages: {len(session.conversation_history)}"
        )

    async def delete_session(self, call_id: str) -> bool:
        """Remove a session immediately."""
        if call_id not in self._sessions:
            return False

        async with self._lock(call_id):
            if call_id not in self._sessions:
                return False
            self._purge(call_id)
        logger.info(f"[REGISTRY] Session deleted - CallId: {call_id}")
        return True

    def _purge(self, call_id: str) -> None:
        session = self._sessions.pop(call_id, None)
        if session is not None and session.provider_call_id:
            if self._provider_index.get(session.provider_call_id) == call_id:
                del self._provider_index[session.provider_call_id]
        self._locks.pop(call_id, None)

    async def reap(self) -> int:
        """Purge sessions past max age, and ended sessions past the grace period."""
        now = self._clock()
        expired = []
        for call_id, session in list(self._sessions.items()):
            if now - session.start_time > self.max_age:
                expired.append(call_id)
            elif (
                session.status == CallStatus.ENDED
                and session.end_time is not None
                and now - session.end_time >= self.grace_period
            ):
                expired.append(call_id)

        removed = 0
        for call_id in expired:
            lock = self._locks.get(call_id)
            if lock is not None and lock.locked():
                # Busy right now; the next sweep will catch it.
                continue
            self._purge(call_id)
            removed += 1

        if removed:
            logger.info(
                f"[REGISTRY] Reaped {removed} session(s), {len(self._sessions)} remaining"
            )
        return removed

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                await self.reap()
            except Exception as e:
                logger.error(
                    f"[REGISTRY] Sweep failed - Error: {type(e).__name__}: {str(e)}",
                    exc_info=True,
                )

    def start(self) -> None:
        """Start the periodic sweep."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop())
            logger.info(f"[REGISTRY] Sweep started - Interval: {self.sweep_interval}s")

    async def stop(self) -> None:
        """Cancel the periodic sweep."""
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None
        logger.info("[REGISTRY] Sweep stopped")

    def active_sessions(self) -> List[CallSession]:
        """Call sessions that have not ended."""
        return [
            session
            for session in self._sessions.values()
            if session.channel == "call" and session.status != CallStatus.ENDED
        ]

    def chat_sessions(self) -> List[CallSession]:
        """Offline chat sessions."""
        return [s for s in self._sessions.values() if s.channel == "chat"]

    def session_stats(self, call_id: str) -> Dict[str, Any]:
        """Summary statistics for one session."""
        session = self.get(call_id)
        end = session.end_time or self._clock()
        return {
            "call_id": session.call_id,
            "provider_call_id": session.provider_call_id,
            "status": session.status.value,
            "stage": session.stage.value,
            "duration_seconds": round((end - session.start_time).total_seconds()),
            "message_count": len(session.conversation_history),
            "start_time": session.start_time,
            "end_time": session.end_time,
            "last_activity": session.last_activity,
        }


def _describe_validation_error(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "session"
    return f"{location}: {first.get('msg', 'invalid value')}"
