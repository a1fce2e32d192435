"""Lifecycle of one live interview call.

Transport callbacks only enqueue validated messages; a single pump task applies
them to the state machine in arrival order, so the status and transcript
streams interleave deterministically:

    disconnected --join()--> connecting --idle|listening|thinking|speaking--> active
    connecting --disconnected--> disconnected            (connection failure, no analysis)
    active --end_interview()--> disconnecting --> disconnected   (analysis handoff)
    active --disconnected--> disconnected                (unexpected drop, analysis handoff)

The finalized transcript (final entries only) is handed to the analysis relay
at most once per session.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Protocol, Sequence, Set, Tuple

from intervuo.config.settings import Settings
from intervuo.core.models import (
    ActivityState,
    AnalysisResult,
    InterviewConfig,
    SessionHandle,
    SessionState,
    TranscriptEntry,
    TransportStatus,
)
from intervuo.core.relay_client import HttpAnalysisRelay
from intervuo.core.transport import (
    STATUS_EVENT,
    TRANSCRIPTS_EVENT,
    SessionTransport,
    StatusMessage,
    TranscriptMessage,
    TransportFactory,
    parse_status,
    parse_transcripts,
)
from intervuo.system.exceptions import (
    AnalysisFailed,
    ConnectionFailure,
    HandleAlreadyConsumed,
    NoSessionIdentifier,
    SessionError,
)
from intervuo.utils.logger import EventLog

logger = logging.getLogger(__name__)

CONNECTION_FAILED_MESSAGE = "Connection failed. Server unavailable, invalid link, or network issues."
_STOP = object()


class AnalysisRelay(Protocol):
    async def analyze(
        self,
        transcript: Sequence[TranscriptEntry],
        context: InterviewConfig | None,
        session_id: str,
    ) -> AnalysisResult: ...


class Termination(str, Enum):
    USER_ENDED = "user_ended"
    UNEXPECTED_DISCONNECT = "unexpected_disconnect"
    CONNECTION_FAILURE = "connection_failure"


class HandoffOutcome(str, Enum):
    ANALYZED = "analyzed"
    EMPTY_TRANSCRIPT = "empty_transcript"
    ANALYSIS_FAILED = "analysis_failed"
    NO_SESSION_IDENTIFIER = "no_session_identifier"
    ALREADY_ANALYZING = "already_analyzing"


@dataclass(frozen=True)
class HandoffResult:
    outcome: HandoffOutcome
    transcript: Tuple[TranscriptEntry, ...] = ()
    analysis: AnalysisResult | None = None
    error: str | None = None
    unexpected: bool = False


class InterviewSessionController:
    def __init__(
        self,
        transport_factory: TransportFactory,
        relay: AnalysisRelay,
        context: InterviewConfig | None = None,
        interview_id: str | None = None,
        *,
        analysis_timeout: float = 60.0,
        close_timeout: float = 5.0,
        event_log: EventLog | None = None,
    ):
        self.transport_factory = transport_factory
        self.relay = relay
        self.context = context
        self.interview_id = interview_id
        self.analysis_timeout = analysis_timeout
        self.close_timeout = close_timeout
        self.event_log = event_log or EventLog("session")

        self.state = SessionState.DISCONNECTED
        self.activity: ActivityState | None = None
        self.termination: Termination | None = None
        self.error: str | None = None
        self.failure: Exception | None = None
        self.result: HandoffResult | None = None

        self._transport: SessionTransport | None = None
        self._handle: SessionHandle | None = None
        self._generation = 0
        self._was_active = False
        self._finalizing = False
        self._transport_closing = False
        self._buffer: List[TranscriptEntry] = []
        self._final_transcript: Tuple[TranscriptEntry, ...] | None = None
        self._spent_calls: Set[str] = set()
        self._queue: asyncio.Queue | None = None
        self._pump_task: asyncio.Task | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport_factory: TransportFactory,
        token: str | Callable[[], str],
        context: InterviewConfig | None = None,
        interview_id: str | None = None,
    ) -> "InterviewSessionController":
        """Controller that hands transcripts to the backend at ``BACKEND_URL``."""
        relay = HttpAnalysisRelay(
            settings.BACKEND_URL,
            token,
            timeout=settings.ANALYSIS_TIMEOUT_SECONDS,
        )
        return cls(
            transport_factory,
            relay,
            context,
            interview_id,
            analysis_timeout=settings.ANALYSIS_TIMEOUT_SECONDS,
            close_timeout=settings.TRANSPORT_CLOSE_TIMEOUT_SECONDS,
            event_log=EventLog("session", settings.LOG_DIR),
        )

    @property
    def transcript(self) -> Tuple[TranscriptEntry, ...]:
        return tuple(self._buffer)

    @property
    def final_transcript(self) -> Tuple[TranscriptEntry, ...]:
        if self._final_transcript is not None:
            return self._final_transcript
        return tuple(entry for entry in self._buffer if entry.is_final)

    @property
    def is_analyzing(self) -> bool:
        return self._finalizing and self.result is None

    @property
    def has_transport(self) -> bool:
        return self._transport is not None

    def display_status(self) -> str:
        if self.is_analyzing:
            return "Analyzing..."
        if self.state == SessionState.CONNECTING:
            return "Connecting..."
        if self.state == SessionState.ACTIVE and self._transport_closing:
            return "Disconnecting..."
        if self.state == SessionState.ACTIVE:
            activity = self.activity.value if self.activity else "idle"
            return f"Connected ({activity})"
        if self.state == SessionState.DISCONNECTING:
            return "Disconnecting..."
        return "Disconnected"

    async def join(self, handle: SessionHandle) -> None:
        if handle is None:
            raise SessionError("A session handle is required to join")
        if self.is_analyzing:
            raise SessionError("Cannot join while the previous session is being analyzed")
        if self.state != SessionState.DISCONNECTED:
            raise SessionError(f"Cannot join while {self.state.value}")
        if handle.call_id in self._spent_calls:
            raise HandleAlreadyConsumed(handle.call_id)

        self._reset_session(handle)
        self._ensure_pump()
        self._transition(SessionState.CONNECTING, f"join {handle.call_id}")

        generation = self._generation
        try:
            transport = self.transport_factory()
            self._transport = transport
            transport.add_event_listener(STATUS_EVENT, self._status_listener(transport, generation))
            transport.add_event_listener(TRANSCRIPTS_EVENT, self._transcripts_listener(transport, generation))
            await transport.join(handle.join_url)
        except Exception as e:
            self.event_log.log("Transport", f"Join failed: {e}")
            if generation == self._generation and not self._was_active:
                await self._fail_connection(f"Failed to join: {e}")
            return

        self.event_log.log("Transport", "Join call returned, waiting for status updates")

    async def end_interview(self) -> HandoffResult:
        if self.result is not None:
            return self.result
        if self._finalizing:
            self.event_log.log("Controller", "End requested while already analyzing")
            return HandoffResult(
                outcome=HandoffOutcome.ALREADY_ANALYZING,
                transcript=self.final_transcript,
            )
        return await self._finalize(unexpected=False)

    async def drain(self) -> None:
        """Waits until every queued transport message has been applied."""
        if self._queue is not None:
            await self._queue.join()

    async def close(self) -> None:
        await self._release_transport()
        if self.state != SessionState.DISCONNECTED and not self._finalizing:
            self._transition(SessionState.DISCONNECTED, "controller closed")
            self.activity = None
        if self._pump_task is not None:
            self._queue.put_nowait(_STOP)
            await self._pump_task
            self._pump_task = None
            self._queue = None

    async def __aenter__(self) -> "InterviewSessionController":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _reset_session(self, handle: SessionHandle) -> None:
        self._generation += 1
        self._handle = handle
        self._was_active = False
        self._finalizing = False
        self._transport_closing = False
        self._buffer = []
        self._final_transcript = None
        self.activity = None
        self.termination = None
        self.error = None
        self.failure = None
        self.result = None
        self.event_log.reset(handle.call_id)

    def _transition(self, to_state: SessionState, reason: str = "") -> None:
        if self.state == to_state:
            return
        self.event_log.log_state_transition(self.state.value, to_state.value, reason)
        self.state = to_state

    def _ensure_pump(self) -> None:
        if self._pump_task is None:
            self._queue = asyncio.Queue()
            self._pump_task = asyncio.create_task(self._pump())

    def _post(self, generation: int, message) -> None:
        if self._queue is not None:
            self._queue.put_nowait((generation, message))

    def _status_listener(self, transport: SessionTransport, generation: int):
        def on_status(*_args) -> None:
            status = parse_status(transport.status)
            if status is not None:
                self._post(generation, StatusMessage(status))
        return on_status

    def _transcripts_listener(self, transport: SessionTransport, generation: int):
        def on_transcripts(*_args) -> None:
            entries = parse_transcripts(transport.transcripts)
            self._post(generation, TranscriptMessage(tuple(entries)))
        return on_transcripts

    async def _pump(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if item is _STOP:
                    return
                generation, message = item
                if generation != self._generation or self._transport is None:
                    logger.debug(f"Ignoring late transport message {message!r}")
                    continue
                if isinstance(message, StatusMessage):
                    await self._apply_status(message.status)
                elif isinstance(message, TranscriptMessage):
                    self._buffer = list(message.entries)
            except Exception as e:
                logger.error(f"Error applying transport message: {e}", exc_info=True)
                self.error = f"Session error: {e}"
            finally:
                self._queue.task_done()

    async def _apply_status(self, status: TransportStatus) -> None:
        if status == TransportStatus.DISCONNECTED:
            await self._on_disconnected()
            return

        if status == TransportStatus.CONNECTING:
            if self.state == SessionState.ACTIVE:
                self.event_log.log("Transport", "Ignoring 'connecting' while active")
            return

        if status == TransportStatus.DISCONNECTING:
            # display only; teardown starts on "disconnected" or end_interview
            if self.state == SessionState.ACTIVE and not self._transport_closing:
                self._transport_closing = True
                self.event_log.log("Transport", "Transport reports disconnecting")
            return

        if self.state == SessionState.CONNECTING:
            self._was_active = True
            self._spent_calls.add(self._handle.call_id)
            self.error = None
            self._transition(SessionState.ACTIVE, f"transport {status.value}")
        if self.state == SessionState.ACTIVE:
            self.activity = status.activity
            self._transport_closing = False

    async def _on_disconnected(self) -> None:
        if self._finalizing:
            self.event_log.log("Controller", "Disconnected while finalizing; nothing to do")
            return
        if self._was_active:
            self.event_log.log("Controller", "Disconnected unexpectedly after being joined, proceeding to analysis")
            await self._finalize(unexpected=True)
            return
        if self.state == SessionState.CONNECTING:
            self.event_log.log("Controller", "Connection attempt failed before becoming active")
            await self._fail_connection(CONNECTION_FAILED_MESSAGE)

    async def _fail_connection(self, message: str) -> None:
        self.error = message
        self.failure = ConnectionFailure(message)
        self.termination = Termination.CONNECTION_FAILURE
        await self._release_transport()
        self.activity = None
        self._transition(SessionState.DISCONNECTED, "connection failure")

    async def _release_transport(self) -> None:
        transport, self._transport = self._transport, None
        if transport is None:
            return
        try:
            await asyncio.wait_for(transport.leave_call(), timeout=self.close_timeout)
        except Exception as e:
            self.event_log.log("Transport", f"Error during leave_call: {e!r}")

    def _refresh_from_transport(self) -> None:
        if self._transport is None:
            return
        try:
            latest = parse_transcripts(self._transport.transcripts)
        except Exception as e:
            self.event_log.log("Transport", f"Could not read transcripts at teardown: {e!r}")
            return
        if latest:
            self._buffer = latest

    async def _finalize(self, unexpected: bool) -> HandoffResult:
        self._finalizing = True
        self.termination = Termination.UNEXPECTED_DISCONNECT if unexpected else Termination.USER_ENDED

        self._refresh_from_transport()
        final = tuple(entry for entry in self._buffer if entry.is_final)
        self._final_transcript = final

        if not unexpected and self.state != SessionState.DISCONNECTED:
            self._transition(SessionState.DISCONNECTING, "end requested")
        await self._release_transport()
        self.activity = None
        self._transition(SessionState.DISCONNECTED, self.termination.value)

        self.result = await self._hand_off(final, unexpected)
        return self.result

    async def _hand_off(self, final: Tuple[TranscriptEntry, ...], unexpected: bool) -> HandoffResult:
        if not final:
            self.event_log.log("Controller", "No transcript recorded, skipping analysis")
            return HandoffResult(HandoffOutcome.EMPTY_TRANSCRIPT, unexpected=unexpected)

        if not self.interview_id:
            self.error = "Cannot save results without an interview identifier."
            self.failure = NoSessionIdentifier(self.error)
            self.event_log.log("Controller", self.error)
            return HandoffResult(
                HandoffOutcome.NO_SESSION_IDENTIFIER,
                transcript=final,
                error=self.error,
                unexpected=unexpected,
            )

        self.event_log.log("Relay", f"Submitting {len(final)} transcript entries for analysis")
        try:
            analysis = await asyncio.wait_for(
                self.relay.analyze(list(final), self.context, self.interview_id),
                timeout=self.analysis_timeout,
            )
        except asyncio.TimeoutError:
            error = f"Analysis timed out after {self.analysis_timeout:g}s"
        except AnalysisFailed as e:
            error = str(e) or "Analysis failed"
        except Exception as e:
            logger.error(f"Analysis relay raised {e!r}", exc_info=True)
            error = str(e) or e.__class__.__name__
        else:
            self.event_log.log("Relay", "Analysis received")
            return HandoffResult(
                HandoffOutcome.ANALYZED,
                transcript=final,
                analysis=analysis,
                unexpected=unexpected,
            )

        self.error = f"Failed to get interview analysis: {error}. You can still view the transcript."
        self.failure = AnalysisFailed(error)
        self.event_log.log("Relay", self.error)
        return HandoffResult(
            HandoffOutcome.ANALYSIS_FAILED,
            transcript=final,
            error=self.error,
            unexpected=unexpected,
        )
