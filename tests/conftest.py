"""Shared test fixtures and configuration."""
import asyncio
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing app
os.environ.setdefault("OPENAI_API_KEY", "")
os.environ.setdefault("ANTHROPIC_API_KEY", "")
os.environ.setdefault("TWILIO_ACCOUNT_SID", "")
os.environ.setdefault("TWILIO_AUTH_TOKEN", "")
os.environ.setdefault("TWILIO_PHONE_NUMBER", "")

from callagent.core.config import Settings
from callagent.core.errors import UpstreamUnavailable
from callagent.main import create_app
from callagent.services.agent.backends import ModelBackend
from callagent.services.agent.generator import ResponseGenerator
from callagent.services.call_session.controller import TurnController
from callagent.services.call_session.registry import SessionRegistry
from callagent.services.knowledge.index import KnowledgeIndex

TEST_API_KEY = "test-api-key"
PRICING_CONTENT = "Our premium plan costs ninety nine dollars per month."


class FakeClock:
    """Manually advanced clock for registry timing tests."""

    def __init__(self):
        self.now = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeBackend(ModelBackend):
    """Scripted model backend."""

    provider = "fake"

    def __init__(
        self,
        model: str = "primary",
        reply: Optional[str] = "Model reply.",
        error: Optional[Exception] = None,
        delay: float = 0,
    ):
        super().__init__(model)
        self.reply = reply
        self.error = error
        self.delay = delay
        self.calls: List[Dict] = []

    async def complete(self, system_prompt, messages):
        self.calls.append({"system_prompt": system_prompt, "messages": list(messages)})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply


class FakeGateway:
    """Records telephony calls instead of talking to Twilio."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.placed: List[Dict] = []
        self.ended: List[str] = []

    async def place_call(self, to, voice_url, status_callback_url):
        if self.fail:
            raise UpstreamUnavailable("Twilio call failed: test")
        sid = f"CA{len(self.placed) + 1:032d}"
        self.placed.append(
            {"to": to, "voice_url": voice_url, "status_callback_url": status_callback_url, "sid": sid}
        )
        return sid

    async def end_call(self, call_sid):
        self.ended.append(call_sid)

    async def fetch_status(self, call_sid):
        status = "completed" if call_sid in self.ended else "in-progress"
        return {"status": status, "duration": None, "start_time": None, "end_time": None}


@pytest.fixture
def test_knowledge_path():
    """Return path to test knowledge seed file."""
    return Path(__file__).parent / "fixtures" / "test_knowledge.yaml"


@pytest.fixture
def test_settings(test_knowledge_path):
    """Override settings for testing."""
    return Settings(
        openai_api_key=None,
        anthropic_api_key=None,
        twilio_account_sid=None,
        twilio_auth_token=None,
        twilio_phone_number=None,
        model_chain=[],
        api_key=TEST_API_KEY,
        base_url="https://agent.example.com",
        knowledge_seed_file=str(test_knowledge_path),
        session_sweep_interval_seconds=3600,
    )


@pytest.fixture
def clock():
    """Controllable clock."""
    return FakeClock()


@pytest.fixture
def registry(clock):
    """Session registry on a fake clock."""
    return SessionRegistry(history_limit=50, chat_history_limit=20, clock=clock)


@pytest.fixture
def knowledge_index():
    """Empty knowledge index."""
    return KnowledgeIndex()


@pytest.fixture
def pricing_knowledge_base(knowledge_index):
    """Knowledge base holding a single pricing document."""
    return knowledge_index.ingest(
        name="Product FAQ",
        documents=[{"title": "Pricing", "content": PRICING_CONTENT}],
    )


@pytest.fixture
def make_backend():
    """Factory for scripted model backends."""
    return FakeBackend


@pytest.fixture
def generator(knowledge_index):
    """Response generator with an empty model chain."""
    return ResponseGenerator(knowledge_index, backends=[])


@pytest.fixture
def controller(registry, generator):
    """Turn controller over the test registry and generator."""
    return TurnController(registry, generator, turn_timeout=5.0)


@pytest.fixture
def fake_gateway():
    """Telephony gateway double."""
    return FakeGateway()


@pytest.fixture
def test_client(test_settings, fake_gateway):
    """Create FastAPI test client with a fake telephony gateway."""
    app = create_app(test_settings)
    with TestClient(app, headers={"X-API-Key": TEST_API_KEY}) as client:
        app.state.gateway = fake_gateway
        yield client


@pytest.fixture
def unauthenticated_client(test_settings):
    """Test client that sends no API key."""
    app = create_app(test_settings)
    with TestClient(app) as client:
        yield client
