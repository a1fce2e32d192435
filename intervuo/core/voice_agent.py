import logging
from typing import Any, Dict

import httpx

from intervuo.core.models import InterviewConfig, SessionHandle
from intervuo.core.prompts import INACTIVITY_MESSAGES, TIME_EXCEEDED_MESSAGE, build_greeting
from intervuo.system.exceptions import VoiceAgentError

logger = logging.getLogger(__name__)


class VoiceAgentClient:
    """Creates calls on the hosted voice-agent service."""

    def __init__(
        self,
        api_key: str,
        api_url: str,
        model: str,
        temperature: float = 0.7,
        language_hint: str = "en-US",
        join_timeout: str = "30s",
        max_duration: str = "1800s",
        request_timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.api_url = api_url
        self.model = model
        self.temperature = temperature
        self.language_hint = language_hint
        self.join_timeout = join_timeout
        self.max_duration = max_duration
        self.request_timeout = request_timeout
        self.client = client

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def build_call_config(self, system_prompt: str, config: InterviewConfig) -> Dict[str, Any]:
        return {
            "systemPrompt": system_prompt,
            "temperature": self.temperature,
            "model": self.model,
            "languageHint": self.language_hint,
            "joinTimeout": self.join_timeout,
            "maxDuration": self.max_duration,
            "timeExceededMessage": TIME_EXCEEDED_MESSAGE,
            "inactivityMessages": INACTIVITY_MESSAGES,
            "firstSpeaker": "FIRST_SPEAKER_AGENT",
            "firstSpeakerSettings": {
                "agent": {
                    "uninterruptible": True,
                    "text": build_greeting(config),
                }
            },
            "medium": {"webRtc": {}},
            "recordingEnabled": True,
        }

    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        headers = {
            "Content-Type": "application/json",
            "X-API-Key": self.api_key,
        }
        if self.client is not None:
            return await self.client.post(self.api_url, json=payload, headers=headers, timeout=self.request_timeout)
        async with httpx.AsyncClient(timeout=self.request_timeout) as client:
            return await client.post(self.api_url, json=payload, headers=headers)

    async def create_call(self, system_prompt: str, config: InterviewConfig) -> SessionHandle:
        payload = self.build_call_config(system_prompt, config)
        try:
            resp = await self._post(payload)
        except httpx.HTTPError as e:
            raise VoiceAgentError(f"Voice agent request failed: {e!r}") from e

        if not resp.is_success:
            logger.error(f"Voice agent API error response: {resp.text[:500]}")
            raise VoiceAgentError(
                f"Voice agent API error: {resp.status_code} - {resp.text[:500]}",
                status_code=resp.status_code,
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise VoiceAgentError("Voice agent returned a non-JSON response") from e

        if not isinstance(data, dict):
            raise VoiceAgentError("Voice agent returned an unexpected payload")
        call_id = data.get("callId") or data.get("id")
        join_url = data.get("joinUrl")
        if not call_id or not join_url:
            raise VoiceAgentError("Voice agent did not return call ID or join URL")

        logger.info(f"Voice agent call created: {call_id}")
        return SessionHandle(callId=str(call_id), joinUrl=join_url)
