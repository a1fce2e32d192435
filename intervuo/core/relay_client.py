import logging
from typing import Any, Callable, Sequence

import httpx

from intervuo.core.models import AnalysisResult, InterviewConfig, TranscriptEntry
from intervuo.system.exceptions import AnalysisFailed

logger = logging.getLogger(__name__)

ANALYZE_PATH = "/api/analyze-transcript"


class HttpAnalysisRelay:
    """Sends a finalized transcript to the backend's analysis endpoint.

    ``token`` is either a bearer token or a callable returning a fresh one
    (ID tokens expire, so callers usually pass a refresher).
    """

    def __init__(
        self,
        base_url: str,
        token: str | Callable[[], str],
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.client = client

    def _headers(self) -> dict:
        token = self.token() if callable(self.token) else self.token
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    async def _post(self, payload: dict) -> httpx.Response:
        url = f"{self.base_url}{ANALYZE_PATH}"
        if self.client is not None:
            return await self.client.post(url, json=payload, headers=self._headers(), timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(url, json=payload, headers=self._headers())

    async def analyze(
        self,
        transcript: Sequence[TranscriptEntry],
        context: InterviewConfig | None,
        session_id: str,
    ) -> AnalysisResult:
        payload = {
            "transcript": [entry.to_wire() for entry in transcript],
            "interviewDetails": context.to_details() if context else None,
            "interviewId": session_id,
        }
        logger.info(f"Posting {len(transcript)} transcript entries for interview {session_id}")
        try:
            resp = await self._post(payload)
        except httpx.HTTPError as e:
            raise AnalysisFailed(f"Analysis request failed: {e!r}") from e

        if resp.status_code != 200:
            raise AnalysisFailed(_error_message(resp))

        try:
            data: Any = resp.json()
        except ValueError as e:
            raise AnalysisFailed("Analysis response was not JSON") from e
        if not isinstance(data, dict):
            raise AnalysisFailed("Analysis response was not a JSON object")
        return AnalysisResult.from_payload(data)


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        detail = body.get("detail") or body.get("error")
        if detail:
            return str(detail)
    return f"Analysis failed: {resp.status_code}"
