import logging
from datetime import datetime, timezone
from typing import List, Sequence, Tuple

from intervuo.core.engine import AnalysisEngine
from intervuo.core.models import AnalysisResult, InterviewConfig, SessionHandle, TranscriptEntry
from intervuo.core.prompts import build_system_prompt
from intervuo.core.voice_agent import VoiceAgentClient
from intervuo.storages.interview_storage import InterviewRecord, InterviewStorage
from intervuo.system.auth import AuthenticatedUser
from intervuo.system.exceptions import (
    NotFoundException,
    ServiceNotConfiguredException,
    UpstreamFailureException,
    VoiceAgentError,
)

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class InterviewUseCase:
    def __init__(self, voice_agent: VoiceAgentClient, engine: AnalysisEngine, storage: InterviewStorage):
        self.voice_agent = voice_agent
        self.engine = engine
        self.storage = storage

    async def start_interview(
        self, user: AuthenticatedUser, config: InterviewConfig
    ) -> Tuple[str, SessionHandle]:
        if not self.voice_agent.configured:
            raise ServiceNotConfiguredException("Voice agent API key not configured on server")

        timestamp = _now()
        interview_id = self.storage.create({
            **config.to_details(),
            "notificationPreference": config.notification_preference.value,
            "userId": user.uid,
            "userEmail": user.email,
            "userName": user.name or "Anon",
            "status": "scheduling",
            "createdAt": timestamp,
            "updatedAt": timestamp,
        })

        try:
            handle = await self.voice_agent.create_call(build_system_prompt(config), config)
        except VoiceAgentError as e:
            logger.error(f"Error creating voice agent call for interview {interview_id}: {e}")
            self.storage.save(interview_id, {"status": "failed", "error": str(e), "updatedAt": _now()})
            raise UpstreamFailureException(f"Failed to start interview: {e}") from e

        self.storage.save(interview_id, {
            "ultravoxCallId": handle.call_id,
            "joinUrl": handle.join_url,
            "status": "ready",
            "updatedAt": _now(),
        })
        logger.info(f"Interview {interview_id} ready with call {handle.call_id}")
        return interview_id, handle

    async def analyze(
        self,
        transcript: Sequence[TranscriptEntry],
        context: InterviewConfig | None,
        session_id: str,
    ) -> AnalysisResult:
        return await self._analyze_and_store(transcript, context, session_id)

    async def _analyze_and_store(
        self,
        transcript: Sequence[TranscriptEntry],
        context: InterviewConfig | None,
        session_id: str,
        owner: AuthenticatedUser | None = None,
    ) -> AnalysisResult:
        if not self.engine.configured:
            raise ServiceNotConfiguredException("LLM API key not configured on server.")

        result = await self.engine.analyze(transcript, context, session_id)

        timestamp = _now()
        fields: InterviewRecord = {
            **result.to_payload(),
            "transcript": [entry.to_wire() for entry in transcript],
            "status": "completed",
            "analyzedAt": timestamp,
            "updatedAt": timestamp,
        }
        if context is not None:
            fields.update(context.to_details())
        if not self.storage.exists(session_id):
            fields["createdAt"] = timestamp
            if owner is not None:
                fields["userId"] = owner.uid
        self.storage.save(session_id, fields)
        logger.info(f"Stored analysis for interview {session_id}")
        return result

    async def analyze_transcript(
        self,
        user: AuthenticatedUser,
        transcript: Sequence[TranscriptEntry],
        context: InterviewConfig | None,
        interview_id: str,
    ) -> AnalysisResult:
        record = self.storage.get(interview_id)
        if record is not None and record.get("userId") not in (None, user.uid):
            raise NotFoundException("Interview not found")
        return await self._analyze_and_store(transcript, context, interview_id, owner=user)

    def get_interview(self, user: AuthenticatedUser, interview_id: str) -> InterviewRecord:
        record = self.storage.get(interview_id)
        if record is None or record.get("userId") != user.uid:
            raise NotFoundException("Interview not found")
        return record

    def list_interviews(self, user: AuthenticatedUser) -> List[InterviewRecord]:
        return self.storage.list_for_user(user.uid)
