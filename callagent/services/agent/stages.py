"""Turn-taking stage enumeration."""
from enum import Enum


class TurnStage(str, Enum):
    """Stages of the turn-taking state machine for one call."""

    GREETING = "greeting"  # Call accepted, opening utterance pending
    LISTENING = "listening"  # Waiting on caller speech or keypress
    PROCESSING = "processing"  # Generating the reply to the last input
    RESPONDING = "responding"  # Reply produced, being handed to the provider
    ENDING = "ending"  # Farewell issued, call is hanging up

    def __str__(self) -> str:
        """Return the string value of the stage."""
        return self.value
