import asyncio
from types import SimpleNamespace
from typing import Any, Dict, List

import httpx
import pytest

from intervuo.config.settings import Settings
from intervuo.context import AppContext
from intervuo.core.engine import AnalysisEngine
from intervuo.core.models import AnalysisResult, InterviewConfig, SessionHandle
from intervuo.core.session_controller import InterviewSessionController
from intervuo.core.use_case import InterviewUseCase
from intervuo.core.voice_agent import VoiceAgentClient
from intervuo.storages.interview_storage import MemoryInterviewStorage
from intervuo.system.auth import AuthenticatedUser
from intervuo.system.exceptions import UnauthorizedException

VALID_ANALYSIS = (
    '{"summary": "Solid interview.", '
    '"analysis": {"strengths": ["Clear answers"], "areas_for_improvement": ["More depth"]}, '
    '"scores": {"clarity": 8, "completeness": 7, "relevance": 9, "confidence": 6, '
    '"structure": null, "problem_solving": 7}}'
)


class FakeTransport:
    """In-memory stand-in for the live-call client."""

    def __init__(self, join_error: Exception | None = None, leave_error: Exception | None = None,
                 leave_delay: float = 0.0, emit_on_leave: bool = True):
        self.status: Any = "disconnected"
        self.transcripts: List[Any] = []
        self.join_error = join_error
        self.leave_error = leave_error
        self.leave_delay = leave_delay
        self.emit_on_leave = emit_on_leave
        self.joined_url: str | None = None
        self.leave_calls = 0
        self._listeners: Dict[str, list] = {"status": [], "transcripts": []}

    def add_event_listener(self, event: str, handler) -> None:
        self._listeners[event].append(handler)

    async def join(self, url: str) -> None:
        self.joined_url = url
        if self.join_error:
            raise self.join_error

    async def leave_call(self) -> None:
        self.leave_calls += 1
        if self.leave_delay:
            await asyncio.sleep(self.leave_delay)
        if self.leave_error:
            raise self.leave_error
        if self.emit_on_leave:
            self.emit_status("disconnected")

    def emit_status(self, status: Any) -> None:
        self.status = status
        for handler in list(self._listeners["status"]):
            handler()

    def emit_transcripts(self, entries: List[Any]) -> None:
        self.transcripts = list(entries)
        for handler in list(self._listeners["transcripts"]):
            handler()


class FakeRelay:
    def __init__(self, result: AnalysisResult | None = None, error: Exception | None = None,
                 delay: float = 0.0):
        self.result = result or AnalysisResult(summary="ok")
        self.error = error
        self.delay = delay
        self.calls: List[tuple] = []

    async def analyze(self, transcript, context, session_id):
        self.calls.append((list(transcript), context, session_id))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.result


class FakeMistral:
    def __init__(self, content: str | None = VALID_ANALYSIS, error: Exception | None = None):
        self.content = content
        self.error = error
        self.requests: List[dict] = []
        self.chat = SimpleNamespace(complete=self._complete)

    def _complete(self, **kwargs):
        self.requests.append(kwargs)
        if self.error:
            raise self.error
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=self.content))],
            usage=SimpleNamespace(prompt_tokens=120, completion_tokens=40),
        )


class FakeVerifier:
    users = {
        "token-alice": AuthenticatedUser(uid="alice", email="alice@example.com", name="Alice"),
        "token-bob": AuthenticatedUser(uid="bob", email="bob@example.com", name=None),
    }

    def verify(self, token: str) -> AuthenticatedUser:
        if token not in self.users:
            raise UnauthorizedException("Invalid or expired ID token")
        return self.users[token]


def entry(speaker: str, text: str, final: bool = True) -> dict:
    return {"speaker": speaker, "text": text, "isFinal": final}


@pytest.fixture
def interview_config() -> InterviewConfig:
    return InterviewConfig(
        company="Acme",
        role="Backend Engineer",
        level="Mid-Level",
        interviewType="technical",
        preferredLanguage="Python",
    )


@pytest.fixture
def handle() -> SessionHandle:
    return SessionHandle(callId="c1", joinUrl="https://x/join")


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def relay() -> FakeRelay:
    return FakeRelay()


@pytest.fixture
async def controller(transport, relay, interview_config):
    ctrl = InterviewSessionController(
        lambda: transport,
        relay,
        context=interview_config,
        interview_id="interview-1",
        analysis_timeout=1.0,
        close_timeout=0.2,
    )
    yield ctrl
    await ctrl.close()


@pytest.fixture
def fake_mistral() -> FakeMistral:
    return FakeMistral()


@pytest.fixture
def voice_requests() -> List[httpx.Request]:
    return []


@pytest.fixture
def voice_response() -> Dict[str, Any]:
    return {"status_code": 201, "json": {"callId": "call-123", "joinUrl": "wss://voice.test/join/call-123"}}


@pytest.fixture
def voice_agent(voice_requests, voice_response) -> VoiceAgentClient:
    def handler(request: httpx.Request) -> httpx.Response:
        voice_requests.append(request)
        return httpx.Response(voice_response["status_code"], json=voice_response["json"])

    return VoiceAgentClient(
        api_key="voice-key",
        api_url="https://voice.test/api/calls",
        model="fixie-ai/ultravox",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


@pytest.fixture
def storage() -> MemoryInterviewStorage:
    return MemoryInterviewStorage()


@pytest.fixture
def engine(fake_mistral) -> AnalysisEngine:
    return AnalysisEngine(client=fake_mistral, model="mistral-test")


@pytest.fixture
def use_case(voice_agent, engine, storage) -> InterviewUseCase:
    return InterviewUseCase(voice_agent, engine, storage)


@pytest.fixture
def app_context(use_case, storage) -> AppContext:
    return AppContext(
        settings=Settings(ULTRAVOX_API_KEY="voice-key", MISTRAL_API_KEY="mistral-key"),
        verifier=FakeVerifier(),
        storage=storage,
        use_case=use_case,
    )
