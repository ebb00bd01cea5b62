"""Call session models."""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from callagent.services.agent.stages import TurnStage

PHONE_NUMBER_PATTERN = r"^\+[1-9]\d{1,14}$"


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_call_id() -> str:
    """Generate a local call id."""
    return str(uuid.uuid4())


class CallStatus(str, Enum):
    """Session status. Only ever moves forward."""

    INITIATED = "initiated"
    ACTIVE = "active"
    ENDED = "ended"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)

    def __str__(self) -> str:
        return self.value


_STATUS_ORDER = [CallStatus.INITIATED, CallStatus.ACTIVE, CallStatus.ENDED]


class VoiceConfig(BaseModel):
    """Voice settings requested for a call."""

    model: str = "neural"
    speed: float = Field(default=1.0, ge=0.5, le=2.0)
    pitch: float = Field(default=0, ge=-20, le=20)


class Turn(BaseModel):
    """One utterance in a conversation."""

    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime = Field(default_factory=utcnow)


class SessionSpec(BaseModel):
    """Input for creating a call session."""

    call_id: Optional[str] = None
    phone_number: str = Field(pattern=PHONE_NUMBER_PATTERN)
    knowledge_base_id: Optional[str] = None
    custom_prompt: Optional[str] = Field(default=None, max_length=1000)
    voice_config: VoiceConfig = Field(default_factory=VoiceConfig)


class CallSession(BaseModel):
    """Live state of one conversation."""

    call_id: str
    provider_call_id: Optional[str] = None
    phone_number: Optional[str] = None
    knowledge_base_id: Optional[str] = None
    custom_prompt: Optional[str] = None
    voice_config: VoiceConfig = Field(default_factory=VoiceConfig)
    channel: Literal["call", "chat"] = "call"
    placeholder: bool = False
    status: CallStatus = CallStatus.INITIATED
    stage: TurnStage = TurnStage.GREETING
    silent_turns: int = 0
    max_history: int = 50
    conversation_history: List[Turn] = []
    start_time: datetime = Field(default_factory=utcnow)
    last_activity: datetime = Field(default_factory=utcnow)
    end_time: Optional[datetime] = None

