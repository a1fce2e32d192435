from typing import Sequence

from intervuo.core.models import InterviewConfig, InterviewType, Speaker, TranscriptEntry

INTERVIEW_PROCESS = (
    "\n\nInterview Process:\n"
    "1. Brief introduction and role overview.\n"
    "2. Ask relevant questions based on the interview type.\n"
    "3. Listen actively to the candidate's responses, asking clarifying follow-up questions if needed.\n"
    "4. Conclude the interview gracefully.\n"
    "5. Provide constructive feedback (this part is for internal use/later analysis, "
    "do not say this to the candidate during the interview flow)."
)

TIME_EXCEEDED_MESSAGE = (
    "Our time for this mock interview session is up. Thank you for your participation."
)

INACTIVITY_MESSAGES = [
    {"duration": "30s", "message": "Are you still there? Just checking in."},
    {"duration": "15s", "message": "Is there anything else you'd like to add, or shall we conclude?"},
    {
        "duration": "10s",
        "message": "Okay, it seems we're done. Thank you for your time. Goodbye.",
        "endBehavior": "END_BEHAVIOR_HANG_UP_SOFT",
    },
]

ANALYST_SYSTEM_PROMPT = (
    "You are an expert interview analyst. Analyze the provided transcript and return ONLY "
    "a valid JSON object with the requested summary, analysis, and scores, based strictly "
    "on the transcript content."
)

ANALYSIS_PROMPT_TEMPLATE = """Analyze the following interview transcript for a {level} {role} ({interview_type} type).
The candidate is applying to {company}.

Transcript:
---
{transcript}
---

Based **only** on the provided transcript, please provide:
1.  A concise summary of the interview conversation (2-4 sentences).
2.  An analysis of the candidate's performance, identifying key strengths and areas for improvement. Be specific and provide examples from the transcript where possible.
3.  Assign scores (1-10, where 1 is poor and 10 is excellent) for the following metrics based *solely* on the candidate's responses in the transcript:
    * **Clarity:** How clear and easy to understand were the candidate's responses?
    * **Completeness:** Did the candidate fully answer the questions asked?
    * **Relevance:** Were the candidate's answers relevant to the questions?
    * **Confidence:** How confident did the candidate appear through their language? (Infer based on phrasing, hesitation is not captured in text)
    * **Structure:** (Especially for behavioral/system design) Were the answers well-structured (e.g., using STAR method for behavioral, logical steps for design)? Use null if not applicable.
    * **Problem-Solving:** (Especially for technical/coding/system design) How effectively did the candidate approach problems or technical questions? Use null if not applicable.

Format the entire output as a single JSON object with the following structure:
{{
  "summary": "...",
  "analysis": {{
    "strengths": ["...", "..."],
    "areas_for_improvement": ["...", "..."]
  }},
  "scores": {{
    "clarity": <score_integer>,
    "completeness": <score_integer>,
    "relevance": <score_integer>,
    "confidence": <score_integer>,
    "structure": <score_integer_or_null_if_NA>,
    "problem_solving": <score_integer_or_null_if_NA>
  }}
}}
Ensure the output is valid JSON. Do not include any text outside the JSON object."""


def build_system_prompt(config: InterviewConfig) -> str:
    prompt = (
        f"You are an AI interviewer representing {config.company} "
        f"for a {config.level.value} {config.role} position. "
    )
    language = config.preferred_language

    if config.interview_type == InterviewType.TECHNICAL:
        prompt += "This is a technical interview. "
        if language:
            prompt += f"Preferred language: {language}. "
        prompt += "Ask relevant technical questions focusing on algorithms, data structures, and problem-solving."
    elif config.interview_type == InterviewType.BEHAVIORAL:
        prompt += (
            "This is a behavioral interview. Ask questions to assess teamwork, problem-solving, "
            "leadership, and communication skills using the STAR method format where applicable."
        )
    elif config.interview_type == InterviewType.SYSTEM_DESIGN:
        prompt += "This is a system design interview. Present a high-level design challenge related to scalable systems."
    elif config.interview_type == InterviewType.CODING:
        prompt += "This is a coding interview. "
        if language:
            prompt += f"Preferred language: {language}. "
        prompt += (
            "Present a moderately difficult coding problem suitable for the role and level. "
            "Evaluate the candidate's approach, efficiency, and code clarity."
        )

    return prompt + INTERVIEW_PROCESS


def build_greeting(config: InterviewConfig) -> str:
    return (
        f"Hello! I'm conducting this mock interview on behalf of {config.company} "
        f"for the {config.level.value} {config.role} role. Today, we'll focus on a "
        f"{config.interview_type.value} interview format. Are you ready to begin?"
    )


def format_transcript(entries: Sequence[TranscriptEntry]) -> str:
    return "\n".join(
        f"{'Interviewer' if entry.speaker == Speaker.AGENT else 'Candidate'}: {entry.text}"
        for entry in entries
    )


def build_analysis_prompt(entries: Sequence[TranscriptEntry], context: InterviewConfig | None) -> str:
    if context is None:
        level, role, interview_type, company = "", "position", "general", "the company"
    else:
        level = context.level.value
        role = context.role
        interview_type = context.interview_type.value
        company = context.company
    return ANALYSIS_PROMPT_TEMPLATE.format(
        level=level,
        role=role,
        interview_type=interview_type,
        company=company,
        transcript=format_transcript(entries),
    )
