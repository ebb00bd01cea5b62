"""Call instruction documents and their TwiML rendering."""
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class InstructionAction(str, Enum):
    """What the provider should do after speaking."""

    LISTEN = "listen"
    HANGUP = "hangup"

    def __str__(self) -> str:
        return self.value


class CallInstruction(BaseModel):
    """Next step for the telephony provider on a live call."""

    say: Optional[str] = None
    action: InstructionAction
    timeout: Optional[int] = None
    callback_url: Optional[str] = None
    voice: str = "Polly.Joanna"

    @property
    def listens(self) -> bool:
        return self.action == InstructionAction.LISTEN


def escape_xml(text: str) -> str:
    """Escape XML special characters."""
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


def render_twiml(instruction: CallInstruction) -> str:
    """
    Render an instruction as TwiML.

    A listen instruction wraps the utterance in a Gather. When the caller
    stays silent, the trailing Redirect posts back to the same callback with
    no input, which the turn controller counts as an empty turn.

    Args:
        instruction: Instruction to render

    Returns:
        TwiML XML string
    """
    voice = escape_xml(instruction.voice)
    say = ""
    if instruction.say:
        say = f'<Say voice="{voice}">{escape_xml(instruction.say)}</Say>'

    if instruction.listens and instruction.callback_url:
        action_url = escape_xml(instruction.callback_url)
        timeout = instruction.timeout or 10
        return f"""<?xml version="1.0" encoding="UTF-8"?>
<Response>
    <Gather action="{action_url}" method="POST" input="speech dtmf" timeout="{timeout}" speechTimeout="auto" language="en-US">
        {say}
    </Gather>
    <Redirect method="POST">{action_url}</Redirect>
</Response>"""

    return f"""<?xml version="1.0" encoding="UTF-8"?>
<Response>
    {say}
    <Hangup/>
</Response>"""
