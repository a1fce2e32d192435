import asyncio

import pytest

from intervuo.config.settings import Settings
from intervuo.core.models import ActivityState, SessionHandle, SessionState, Speaker
from intervuo.core.relay_client import HttpAnalysisRelay
from intervuo.core.session_controller import (
    CONNECTION_FAILED_MESSAGE,
    HandoffOutcome,
    InterviewSessionController,
    Termination,
)
from intervuo.system.exceptions import (
    AnalysisFailed,
    ConnectionFailure,
    HandleAlreadyConsumed,
    NoSessionIdentifier,
    SessionError,
)

from tests.conftest import FakeRelay, FakeTransport, entry


async def start_active(controller, transport, handle, status="idle"):
    await controller.join(handle)
    transport.emit_status(status)
    await controller.drain()


async def wait_for_relay(relay):
    for _ in range(200):
        if relay.calls:
            return
        await asyncio.sleep(0)
    raise AssertionError("relay was never called")


async def test_join_moves_to_connecting(controller, transport, handle):
    await controller.join(handle)

    assert controller.state == SessionState.CONNECTING
    assert controller.has_transport
    assert transport.joined_url == "https://x/join"


async def test_first_activity_status_makes_session_active(controller, transport, handle):
    await controller.join(handle)
    transport.emit_status("connecting")
    transport.emit_status("listening")
    await controller.drain()

    assert controller.state == SessionState.ACTIVE
    assert controller.activity == ActivityState.LISTENING


async def test_activity_follows_status_while_active(controller, transport, handle):
    await start_active(controller, transport, handle)
    transport.emit_status("speaking")
    await controller.drain()

    assert controller.activity == ActivityState.SPEAKING
    transport.emit_status("connecting")
    await controller.drain()
    assert controller.state == SessionState.ACTIVE


async def test_disconnect_while_connecting_is_connection_failure(controller, transport, relay, handle):
    await controller.join(handle)
    transport.emit_status("connecting")
    transport.emit_status("disconnected")
    await controller.drain()

    assert controller.state == SessionState.DISCONNECTED
    assert controller.termination == Termination.CONNECTION_FAILURE
    assert controller.error == CONNECTION_FAILED_MESSAGE
    assert not controller.has_transport
    assert transport.leave_calls == 1
    assert relay.calls == []
    assert controller.result is None


async def test_unexpected_disconnect_hands_off_final_transcript(controller, transport, relay, handle, interview_config):
    await start_active(controller, transport, handle)
    transport.emit_transcripts([
        entry("agent", "Tell me about yourself."),
        entry("user", "I build backend systems."),
    ])
    transport.emit_status("disconnected")
    await controller.drain()

    assert controller.termination == Termination.UNEXPECTED_DISCONNECT
    assert controller.state == SessionState.DISCONNECTED
    assert len(relay.calls) == 1
    transcript, context, session_id = relay.calls[0]
    assert [e.speaker for e in transcript] == [Speaker.AGENT, Speaker.CANDIDATE]
    assert context == interview_config
    assert session_id == "interview-1"
    assert controller.result.outcome == HandoffOutcome.ANALYZED
    assert controller.result.unexpected is True


async def test_end_interview_excludes_non_final_entries(controller, transport, relay, handle):
    await start_active(controller, transport, handle)
    transport.emit_transcripts([
        entry("agent", "First question?"),
        entry("user", "Partial ans", final=False),
        entry("user", "Complete answer."),
    ])
    await controller.drain()

    result = await controller.end_interview()

    assert result.outcome == HandoffOutcome.ANALYZED
    sent = relay.calls[0][0]
    assert [e.text for e in sent] == ["First question?", "Complete answer."]
    assert all(e.is_final for e in sent)
    assert controller.termination == Termination.USER_ENDED
    assert controller.state == SessionState.DISCONNECTED
    assert not controller.has_transport


async def test_end_interview_with_empty_transcript_skips_analysis(controller, transport, relay, handle):
    await start_active(controller, transport, handle)

    result = await controller.end_interview()

    assert result.outcome == HandoffOutcome.EMPTY_TRANSCRIPT
    assert relay.calls == []
    assert controller.state == SessionState.DISCONNECTED
    assert transport.leave_calls == 1


async def test_concurrent_end_requests_analyze_once(transport, interview_config, handle):
    relay = FakeRelay(delay=0.05)
    async with InterviewSessionController(lambda: transport, relay, interview_config, "interview-1") as controller:
        await start_active(controller, transport, handle)
        transport.emit_transcripts([entry("agent", "Hi"), entry("user", "Hello")])
        await controller.drain()

        first, second = await asyncio.gather(controller.end_interview(), controller.end_interview())

    assert len(relay.calls) == 1
    assert first.outcome == HandoffOutcome.ANALYZED
    assert second.outcome == HandoffOutcome.ALREADY_ANALYZING
    assert transport.leave_calls == 1


async def test_repeated_end_returns_cached_result(controller, transport, relay, handle):
    await start_active(controller, transport, handle)
    transport.emit_transcripts([entry("user", "Answer")])
    await controller.drain()

    first = await controller.end_interview()
    second = await controller.end_interview()

    assert first is second
    assert len(relay.calls) == 1
    assert transport.leave_calls == 1


async def test_analysis_timeout_keeps_transcript(transport, interview_config, handle):
    relay = FakeRelay(delay=5)
    controller = InterviewSessionController(
        lambda: transport, relay, interview_config, "interview-1", analysis_timeout=0.05
    )
    await start_active(controller, transport, handle)
    transport.emit_transcripts([entry("agent" if i % 2 else "user", f"line {i}") for i in range(5)])
    await controller.drain()

    result = await controller.end_interview()
    await controller.close()

    assert result.outcome == HandoffOutcome.ANALYSIS_FAILED
    assert len(result.transcript) == 5
    assert len(controller.final_transcript) == 5
    assert "timed out" in controller.error
    assert controller.state == SessionState.DISCONNECTED
    assert not controller.has_transport


async def test_relay_failure_reports_error(transport, interview_config, handle):
    relay = FakeRelay(error=AnalysisFailed("backend returned 500"))
    async with InterviewSessionController(lambda: transport, relay, interview_config, "interview-1") as controller:
        await start_active(controller, transport, handle)
        transport.emit_transcripts([entry("user", "Answer")])
        await controller.drain()
        result = await controller.end_interview()

    assert result.outcome == HandoffOutcome.ANALYSIS_FAILED
    assert "backend returned 500" in result.error
    assert result.transcript[0].text == "Answer"


async def test_missing_interview_id_skips_relay(transport, relay, interview_config, handle):
    async with InterviewSessionController(lambda: transport, relay, interview_config, None) as controller:
        await start_active(controller, transport, handle)
        transport.emit_transcripts([entry("user", "Answer")])
        await controller.drain()
        result = await controller.end_interview()

    assert result.outcome == HandoffOutcome.NO_SESSION_IDENTIFIER
    assert relay.calls == []
    assert "interview identifier" in controller.error


async def test_double_disconnect_is_noop(controller, transport, relay, handle):
    await start_active(controller, transport, handle)
    transport.emit_transcripts([entry("user", "Answer")])
    transport.emit_status("disconnected")
    transport.emit_status("disconnected")
    await controller.drain()

    assert len(relay.calls) == 1
    assert transport.leave_calls == 1


async def test_transcripts_read_at_teardown(controller, transport, relay, handle):
    await start_active(controller, transport, handle)
    # updated without a transcripts event
    transport.transcripts = [entry("agent", "Last question"), entry("user", "Last answer")]
    transport.emit_status("disconnected")
    await controller.drain()

    assert [e.text for e in relay.calls[0][0]] == ["Last question", "Last answer"]


async def test_transcripts_emitted_behind_disconnect_reach_relay(controller, transport, relay, handle):
    await start_active(controller, transport, handle)
    transport.emit_status("disconnected")
    transport.emit_transcripts([entry("agent", "Q1"), entry("user", "A1")])
    await controller.drain()

    assert controller.termination == Termination.UNEXPECTED_DISCONNECT
    assert [e.text for e in relay.calls[0][0]] == ["Q1", "A1"]


async def test_transport_disconnecting_is_display_only(controller, transport, relay, handle):
    await start_active(controller, transport, handle, status="speaking")
    transport.emit_status("disconnecting")
    await controller.drain()

    assert controller.state == SessionState.ACTIVE
    assert controller.display_status() == "Disconnecting..."
    assert controller.has_transport
    assert relay.calls == []

    transport.emit_status("listening")
    await controller.drain()

    assert controller.state == SessionState.ACTIVE
    assert controller.display_status() == "Connected (listening)"


async def test_late_events_after_teardown_are_ignored(controller, transport, handle):
    await start_active(controller, transport, handle)
    transport.emit_transcripts([entry("user", "Answer")])
    await controller.drain()
    await controller.end_interview()

    transport.emit_transcripts([entry("user", "Answer"), entry("agent", "Too late")])
    transport.emit_status("speaking")
    await controller.drain()

    assert controller.state == SessionState.DISCONNECTED
    assert controller.activity is None
    assert [e.text for e in controller.transcript] == ["Answer"]


async def test_events_from_previous_transport_are_ignored(relay, interview_config):
    transports = [FakeTransport(), FakeTransport()]
    factory = iter(transports)
    async with InterviewSessionController(lambda: next(factory), relay, interview_config, "id") as controller:
        await controller.join(SessionHandle(callId="c1", joinUrl="https://x/one"))
        transports[0].emit_status("disconnected")
        await controller.drain()
        assert controller.termination == Termination.CONNECTION_FAILURE

        await controller.join(SessionHandle(callId="c2", joinUrl="https://x/two"))
        transports[0].emit_status("idle")
        await controller.drain()

        assert controller.state == SessionState.CONNECTING
        assert controller.termination is None


async def test_handle_can_be_retried_after_connection_failure(relay, interview_config, handle):
    transports = [FakeTransport(), FakeTransport()]
    factory = iter(transports)
    async with InterviewSessionController(lambda: next(factory), relay, interview_config, "id") as controller:
        await controller.join(handle)
        transports[0].emit_status("disconnected")
        await controller.drain()

        await controller.join(handle)
        transports[1].emit_status("idle")
        await controller.drain()

        assert controller.state == SessionState.ACTIVE
        assert controller.error is None


async def test_spent_handle_is_rejected(controller, transport, handle):
    await start_active(controller, transport, handle)
    await controller.end_interview()

    with pytest.raises(HandleAlreadyConsumed):
        await controller.join(handle)


async def test_join_rejected_unless_disconnected(controller, transport, handle):
    await controller.join(handle)

    with pytest.raises(SessionError):
        await controller.join(SessionHandle(callId="c2", joinUrl="https://x/two"))
    with pytest.raises(SessionError):
        await controller.join(None)


async def test_join_rejected_while_analyzing(transport, interview_config, handle):
    relay = FakeRelay(delay=0.1)
    async with InterviewSessionController(lambda: transport, relay, interview_config, "id") as controller:
        await start_active(controller, transport, handle)
        transport.emit_transcripts([entry("user", "Answer")])
        await controller.drain()
        task = asyncio.create_task(controller.end_interview())
        await wait_for_relay(relay)

        assert controller.is_analyzing
        with pytest.raises(SessionError):
            await controller.join(SessionHandle(callId="c2", joinUrl="https://x/two"))
        await task


async def test_join_failure_releases_transport(relay, interview_config, handle):
    transport = FakeTransport(join_error=ConnectionError("refused"))
    async with InterviewSessionController(lambda: transport, relay, interview_config, "id") as controller:
        await controller.join(handle)
        await controller.drain()

        assert controller.state == SessionState.DISCONNECTED
        assert controller.termination == Termination.CONNECTION_FAILURE
        assert "refused" in controller.error
        assert transport.leave_calls == 1
        assert not controller.has_transport
    assert relay.calls == []


async def test_transport_factory_failure(relay, interview_config, handle):
    def broken_factory():
        raise RuntimeError("no audio device")

    async with InterviewSessionController(broken_factory, relay, interview_config, "id") as controller:
        await controller.join(handle)

        assert controller.state == SessionState.DISCONNECTED
        assert controller.termination == Termination.CONNECTION_FAILURE
        assert "no audio device" in controller.error


async def test_leave_call_errors_do_not_block_teardown(relay, interview_config, handle):
    transport = FakeTransport(leave_error=RuntimeError("socket closed"))
    async with InterviewSessionController(lambda: transport, relay, interview_config, "id") as controller:
        await start_active(controller, transport, handle)
        transport.emit_transcripts([entry("user", "Answer")])
        await controller.drain()
        result = await controller.end_interview()

    assert result.outcome == HandoffOutcome.ANALYZED
    assert controller.state == SessionState.DISCONNECTED


async def test_hanging_leave_call_is_bounded(relay, interview_config, handle):
    transport = FakeTransport(leave_delay=5)
    async with InterviewSessionController(
        lambda: transport, relay, interview_config, "id", close_timeout=0.05
    ) as controller:
        await start_active(controller, transport, handle)
        transport.emit_transcripts([entry("user", "Answer")])
        await controller.drain()
        result = await asyncio.wait_for(controller.end_interview(), timeout=2)

    assert result.outcome == HandoffOutcome.ANALYZED
    assert not controller.has_transport


async def test_blank_and_malformed_entries_are_dropped(controller, transport, handle):
    await start_active(controller, transport, handle)
    transport.emit_transcripts([
        entry("agent", "   "),
        {"speaker": "narrator", "text": "??", "isFinal": True},
        entry("user", "Real answer"),
    ])
    await controller.drain()

    assert [e.text for e in controller.transcript] == ["Real answer"]


async def test_unknown_status_is_ignored(controller, transport, handle):
    await start_active(controller, transport, handle)
    transport.emit_status("buffering")
    transport.emit_status(None)
    await controller.drain()

    assert controller.state == SessionState.ACTIVE
    assert controller.activity == ActivityState.IDLE


@pytest.mark.parametrize(
    "statuses, termination",
    [
        (["connecting", "disconnected"], Termination.CONNECTION_FAILURE),
        (["connecting", "idle", "disconnected"], Termination.UNEXPECTED_DISCONNECT),
        (["idle", "speaking", "disconnecting", "disconnected"], Termination.UNEXPECTED_DISCONNECT),
        (["connecting", "connecting", "listening", "thinking", "disconnected"], Termination.UNEXPECTED_DISCONNECT),
    ],
)
async def test_every_status_sequence_ends_disconnected(controller, transport, handle, statuses, termination):
    await controller.join(handle)
    for status in statuses:
        transport.emit_status(status)
    await controller.drain()

    assert controller.state == SessionState.DISCONNECTED
    assert controller.termination == termination
    assert not controller.has_transport
    assert controller.activity is None


async def test_display_status(transport, interview_config, handle):
    relay = FakeRelay(delay=0.1)
    async with InterviewSessionController(lambda: transport, relay, interview_config, "id") as controller:
        assert controller.display_status() == "Disconnected"
        await controller.join(handle)
        assert controller.display_status() == "Connecting..."
        transport.emit_status("speaking")
        await controller.drain()
        assert controller.display_status() == "Connected (speaking)"

        transport.emit_transcripts([entry("user", "Answer")])
        await controller.drain()
        task = asyncio.create_task(controller.end_interview())
        await wait_for_relay(relay)
        assert controller.display_status() == "Analyzing..."
        await task

        assert controller.display_status() == "Disconnected"


async def test_failure_carries_error_kind(transport, interview_config, handle):
    async with InterviewSessionController(lambda: transport, FakeRelay(), interview_config, None) as controller:
        await controller.join(handle)
        transport.emit_status("disconnected")
        await controller.drain()
        assert isinstance(controller.failure, ConnectionFailure)

    retry = FakeTransport()
    async with InterviewSessionController(lambda: retry, FakeRelay(), interview_config, None) as controller:
        await start_active(controller, retry, SessionHandle(callId="c2", joinUrl="https://x/two"))
        retry.emit_transcripts([entry("user", "Answer")])
        await controller.drain()
        await controller.end_interview()
        assert isinstance(controller.failure, NoSessionIdentifier)


def test_from_settings_wires_http_relay(interview_config):
    settings = Settings(
        BACKEND_URL="https://backend.test/",
        ANALYSIS_TIMEOUT_SECONDS=12,
        TRANSPORT_CLOSE_TIMEOUT_SECONDS=3,
        LOG_DIR="",
    )

    controller = InterviewSessionController.from_settings(
        settings, FakeTransport, "id-token", interview_config, "interview-1"
    )

    assert isinstance(controller.relay, HttpAnalysisRelay)
    assert controller.relay.base_url == "https://backend.test"
    assert controller.relay.timeout == 12
    assert controller.analysis_timeout == 12
    assert controller.close_timeout == 3
    assert controller.state == SessionState.DISCONNECTED


async def test_in_process_relay_stores_analysis(transport, use_case, storage, interview_config, handle):
    async with InterviewSessionController(lambda: transport, use_case, interview_config, "interview-7") as controller:
        await start_active(controller, transport, handle)
        transport.emit_transcripts([entry("agent", "Question?"), entry("user", "Answer.")])
        transport.emit_status("disconnected")
        await controller.drain()

    assert controller.result.outcome == HandoffOutcome.ANALYZED
    record = storage.get("interview-7")
    assert record["status"] == "completed"
    assert record["company"] == "Acme"
    assert len(record["transcript"]) == 2


async def test_unexpected_relay_error_still_finishes(transport, interview_config, handle):
    relay = FakeRelay(error=RuntimeError("relay crashed"))
    async with InterviewSessionController(lambda: transport, relay, interview_config, "id") as controller:
        await start_active(controller, transport, handle)
        transport.emit_transcripts([entry("user", "Answer")])
        transport.emit_status("disconnected")
        await controller.drain()

        assert controller.result.outcome == HandoffOutcome.ANALYSIS_FAILED
        assert not controller.is_analyzing
        assert "relay crashed" in controller.error
