"""Unit tests for TwiML rendering."""
from callagent.services.telephony.twiml import (
    CallInstruction,
    InstructionAction,
    escape_xml,
    render_twiml,
)


class TestTwiML:
    """Test instruction rendering."""

    def test_listen_renders_gather_and_redirect(self):
        """Test a listen instruction gathers input and redirects on silence."""
        instruction = CallInstruction(
            say="How can I help?",
            action=InstructionAction.LISTEN,
            timeout=15,
            callback_url="https://agent.example.com/webhooks/voice/gather?callId=abc",
        )

        twiml = render_twiml(instruction)

        assert '<Gather action="https://agent.example.com/webhooks/voice/gather?callId=abc"' in twiml
        assert 'timeout="15"' in twiml
        assert 'input="speech dtmf"' in twiml
        assert '<Say voice="Polly.Joanna">How can I help?</Say>' in twiml
        assert "<Redirect" in twiml
        assert "<Hangup/>" not in twiml

    def test_hangup_renders_say_and_hangup(self):
        """Test a hangup instruction speaks and then ends the call."""
        twiml = render_twiml(CallInstruction(say="Goodbye!", action=InstructionAction.HANGUP))

        assert "<Say" in twiml
        assert "Goodbye!" in twiml
        assert "<Hangup/>" in twiml
        assert "<Gather" not in twiml

    def test_bare_hangup(self):
        """Test a hangup with nothing to say has no Say verb."""
        twiml = render_twiml(CallInstruction(action=InstructionAction.HANGUP))

        assert "<Say" not in twiml
        assert "<Hangup/>" in twiml

    def test_text_is_escaped(self):
        """Test reply text cannot break the XML document."""
        twiml = render_twiml(
            CallInstruction(say='Plans <basic> & "pro"', action=InstructionAction.HANGUP)
        )

        assert "Plans &lt;basic&gt; &amp; &quot;pro&quot;" in twiml

    def test_escape_xml(self):
        """Test all five XML entities are escaped."""
        assert escape_xml("a&b<c>d\"e'f") == "a&amp;b&lt;c&gt;d&quot;e&apos;f"
