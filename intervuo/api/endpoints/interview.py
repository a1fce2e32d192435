import logging

from fastapi import APIRouter, Depends

from intervuo.api.deps import get_current_user, get_use_case
from intervuo.api.schemas import (
    AnalysisResponse,
    AnalyzeTranscriptRequest,
    InterviewListResponse,
    StartInterviewResponse,
)
from intervuo.core.models import InterviewConfig
from intervuo.core.use_case import InterviewUseCase
from intervuo.system.auth import AuthenticatedUser
from intervuo.system.exceptions import AnalysisFailed, BadRequestException, UpstreamFailureException

logger = logging.getLogger(__name__)
interview_router = APIRouter()


@interview_router.post("/start-interview", response_model=StartInterviewResponse)
async def start_interview(
    config: InterviewConfig,
    user: AuthenticatedUser = Depends(get_current_user),
    use_case: InterviewUseCase = Depends(get_use_case),
):
    logger.info(f"start-interview called by {user.uid}: {config.company} / {config.role}")
    interview_id, handle = await use_case.start_interview(user, config)
    return StartInterviewResponse(
        call_id=handle.call_id,
        join_url=handle.join_url,
        interview_id=interview_id,
    )


@interview_router.post("/analyze-transcript", response_model=AnalysisResponse)
async def analyze_transcript(
    request: AnalyzeTranscriptRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    use_case: InterviewUseCase = Depends(get_use_case),
):
    logger.info(f"analyze-transcript called by {user.uid} for interview {request.interview_id}")
    transcript = [entry for entry in request.transcript or [] if entry.text.strip()]
    if not transcript:
        raise BadRequestException("Valid transcript data is required.")
    if not request.interview_id or not request.interview_id.strip():
        raise BadRequestException("An interview identifier is required.")

    try:
        result = await use_case.analyze_transcript(
            user, transcript, request.interview_details, request.interview_id
        )
    except AnalysisFailed as e:
        logger.error(f"Error analyzing transcript for interview {request.interview_id}: {e}")
        raise UpstreamFailureException(f"Failed to analyze transcript: {e}") from e

    return AnalysisResponse.from_result(result)


@interview_router.get("/interviews", response_model=InterviewListResponse)
async def list_interviews(
    user: AuthenticatedUser = Depends(get_current_user),
    use_case: InterviewUseCase = Depends(get_use_case),
):
    return InterviewListResponse(interviews=use_case.list_interviews(user))


@interview_router.get("/interviews/{interview_id}")
async def get_interview(
    interview_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    use_case: InterviewUseCase = Depends(get_use_case),
):
    return use_case.get_interview(user, interview_id)
