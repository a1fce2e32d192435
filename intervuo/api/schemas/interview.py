from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field

from intervuo.core.models import AnalysisResult, InterviewConfig, TranscriptEntry


class StartInterviewResponse(BaseModel):
    call_id: str = Field(serialization_alias="callId")
    join_url: str = Field(serialization_alias="joinUrl")
    interview_id: str = Field(serialization_alias="interviewId")


class AnalyzeTranscriptRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    transcript: List[TranscriptEntry] | None = None
    interview_details: InterviewConfig | None = Field(default=None, alias="interviewDetails")
    interview_id: str | None = Field(default=None, alias="interviewId")


class AnalysisBreakdown(BaseModel):
    strengths: List[str] = []
    areas_for_improvement: List[str] = []


class AnalysisResponse(BaseModel):
    summary: str
    analysis: AnalysisBreakdown
    scores: Dict[str, int | None] = {}

    @classmethod
    def from_result(cls, result: AnalysisResult) -> "AnalysisResponse":
        return cls.model_validate(result.to_payload())


class InterviewListResponse(BaseModel):
    interviews: List[Dict[str, Any]]
