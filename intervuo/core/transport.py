"""Boundary between the live-call client and the session controller.

The real-time client is supplied from outside; only the small surface in
``SessionTransport`` is relied on. Raw values it reports are validated here,
before anything reaches the state machine.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Protocol, Sequence

from pydantic import ValidationError

from intervuo.core.models import TranscriptEntry, TransportStatus

logger = logging.getLogger(__name__)

STATUS_EVENT = "status"
TRANSCRIPTS_EVENT = "transcripts"

Listener = Callable[[], None]


class SessionTransport(Protocol):
    @property
    def status(self) -> Any: ...

    @property
    def transcripts(self) -> Sequence[Any]: ...

    def add_event_listener(self, event: str, handler: Listener) -> None: ...

    async def join(self, url: str) -> None: ...

    async def leave_call(self) -> None: ...


TransportFactory = Callable[[], SessionTransport]


@dataclass(frozen=True)
class StatusMessage:
    status: TransportStatus


@dataclass(frozen=True)
class TranscriptMessage:
    entries: tuple


def parse_status(raw: Any) -> TransportStatus | None:
    if isinstance(raw, TransportStatus):
        return raw
    value = getattr(raw, "value", raw)
    if not isinstance(value, str):
        logger.warning(f"Ignoring non-string transport status: {raw!r}")
        return None
    try:
        return TransportStatus(value.strip().lower())
    except ValueError:
        logger.warning(f"Ignoring unrecognized transport status: {value!r}")
        return None


def _entry_fields(raw: Any) -> dict:
    if isinstance(raw, dict):
        return raw
    fields = {}
    for name in ("speaker", "text", "isFinal", "is_final"):
        if hasattr(raw, name):
            fields[name] = getattr(raw, name)
    return fields


def parse_transcripts(raw: Sequence[Any] | None) -> List[TranscriptEntry]:
    """Maps a transport transcript list to entries, dropping blank placeholders."""
    entries: List[TranscriptEntry] = []
    for item in raw or []:
        if isinstance(item, TranscriptEntry):
            entry = item
        else:
            try:
                entry = TranscriptEntry.model_validate(_entry_fields(item))
            except ValidationError as e:
                logger.warning(f"Dropping malformed transcript entry {item!r}: {e.error_count()} error(s)")
                continue
        if not entry.text or not entry.text.strip():
            continue
        entries.append(entry)
    return entries
