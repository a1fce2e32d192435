from intervuo.api.schemas.interview import (
    AnalysisBreakdown,
    AnalysisResponse,
    AnalyzeTranscriptRequest,
    InterviewListResponse,
    StartInterviewResponse
)

__all__ = [
    "AnalysisBreakdown",
    "AnalysisResponse",
    "AnalyzeTranscriptRequest",
    "InterviewListResponse",
    "StartInterviewResponse"
]
