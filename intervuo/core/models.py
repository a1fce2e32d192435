import math
from enum import Enum
from typing import Any, Dict, List, TypedDict

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from intervuo.system.exceptions import AnalysisFailed
from intervuo.utils.logger import EventLog


class InterviewLevel(str, Enum):
    INTERNSHIP = "Internship"
    ENTRY = "Entry-Level"
    MID = "Mid-Level"
    SENIOR = "Senior-Level"


class InterviewType(str, Enum):
    TECHNICAL = "technical"
    BEHAVIORAL = "behavioral"
    SYSTEM_DESIGN = "system-design"
    CODING = "coding"


class NotificationPreference(str, Enum):
    EMAIL = "email"
    SMS = "sms"


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    ACTIVE = "active"
    DISCONNECTING = "disconnecting"


class ActivityState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    THINKING = "thinking"
    SPEAKING = "speaking"


class TransportStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    IDLE = "idle"
    LISTENING = "listening"
    THINKING = "thinking"
    SPEAKING = "speaking"
    DISCONNECTING = "disconnecting"

    @property
    def activity(self) -> ActivityState | None:
        try:
            return ActivityState(self.value)
        except ValueError:
            return None


class Speaker(str, Enum):
    AGENT = "agent"
    CANDIDATE = "candidate"


class InterviewConfig(BaseModel):
    """What the candidate asked to be interviewed on.

    Field names follow the stored record (``company``, ``interviewType`` ...);
    the short keys posted by the dashboard form (``co``, ``lvl``, ``iType``,
    ``lang``, ``notifyPref``) are accepted as well.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    company: str = Field(validation_alias=AliasChoices("company", "co"))
    role: str
    level: InterviewLevel = Field(validation_alias=AliasChoices("level", "lvl"))
    interview_type: InterviewType = Field(
        alias="interviewType",
        validation_alias=AliasChoices("interviewType", "interview_type", "iType"),
    )
    preferred_language: str | None = Field(
        default=None,
        alias="preferredLanguage",
        validation_alias=AliasChoices("preferredLanguage", "preferred_language", "lang"),
    )
    notification_preference: NotificationPreference = Field(
        default=NotificationPreference.EMAIL,
        alias="notificationPreference",
        validation_alias=AliasChoices("notificationPreference", "notification_preference", "notifyPref"),
    )

    @field_validator("company", "role")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("preferred_language")
    @classmethod
    def _empty_language_is_none(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip()

    def to_details(self) -> Dict[str, Any]:
        return {
            "company": self.company,
            "role": self.role,
            "level": self.level.value,
            "interviewType": self.interview_type.value,
            "preferredLanguage": self.preferred_language,
        }


class SessionHandle(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    call_id: str = Field(alias="callId", validation_alias=AliasChoices("callId", "call_id"))
    join_url: str = Field(alias="joinUrl", validation_alias=AliasChoices("joinUrl", "join_url"))

    @field_validator("call_id", "join_url")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be blank")
        return value


class TranscriptEntry(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    speaker: Speaker
    text: str
    is_final: bool = Field(
        default=False,
        alias="isFinal",
        validation_alias=AliasChoices("isFinal", "is_final"),
    )

    @field_validator("speaker", mode="before")
    @classmethod
    def _map_speaker(cls, value: Any) -> Any:
        if isinstance(value, Enum):
            value = value.value
        if isinstance(value, str) and value.lower() == "user":
            return Speaker.CANDIDATE
        return value

    def to_wire(self) -> Dict[str, Any]:
        return {"speaker": self.speaker.value, "text": self.text, "isFinal": self.is_final}


ANALYSIS_KEYS = ("summary", "analysis", "scores")


def _coerce_score(value: Any) -> int | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        return None
    score = int(round(value))
    if 1 <= score <= 10:
        return score
    return None


def _as_strings(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item]


class AnalysisResult(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    summary: str = ""
    strengths: List[str] = []
    areas_for_improvement: List[str] = Field(default=[], alias="areasForImprovement")
    scores: Dict[str, int | None] = {}

    @field_validator("scores", mode="before")
    @classmethod
    def _normalize_scores(cls, value: Any) -> Dict[str, int | None]:
        if not isinstance(value, dict):
            return {}
        return {str(metric): _coerce_score(score) for metric, score in value.items()}

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "AnalysisResult":
        """Builds a result from the LLM wire shape.

        ``{"summary", "analysis": {"strengths", "areas_for_improvement"}, "scores"}``

        Raises ``AnalysisFailed`` when the object is not an analysis at all
        (an error or refusal object, a wrongly typed section).
        """
        if not isinstance(payload, dict) or not any(key in payload for key in ANALYSIS_KEYS):
            raise AnalysisFailed(f"Response is not an analysis: {str(payload)[:200]}")
        summary = payload.get("summary", "")
        if not isinstance(summary, str):
            raise AnalysisFailed("Analysis summary must be a string")
        scores = payload.get("scores")
        if scores is not None and not isinstance(scores, dict):
            raise AnalysisFailed("Analysis scores must be an object")
        analysis = payload.get("analysis")
        if analysis is None:
            analysis = {}
        elif not isinstance(analysis, dict):
            raise AnalysisFailed("Analysis section must be an object")
        return cls(
            summary=summary,
            strengths=_as_strings(analysis.get("strengths")),
            areas_for_improvement=_as_strings(analysis.get("areas_for_improvement")),
            scores=scores or {},
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "analysis": {
                "strengths": list(self.strengths),
                "areas_for_improvement": list(self.areas_for_improvement),
            },
            "scores": dict(self.scores),
        }


class AnalysisState(TypedDict, total=False):
    session_id: str
    event_log: EventLog
    transcript: List[TranscriptEntry]
    context: InterviewConfig | None
    prompt: str
    raw_response: str
    parsed: Dict[str, Any] | None
    result: AnalysisResult | None
