import asyncio
import json
import re
import time
from pathlib import Path
from typing import Any, Dict, Sequence

from langgraph.graph import END, StateGraph
from mistralai import Mistral

from intervuo.core.models import AnalysisResult, AnalysisState, InterviewConfig, TranscriptEntry
from intervuo.core.prompts import ANALYST_SYSTEM_PROMPT, build_analysis_prompt
from intervuo.system.exceptions import AnalysisFailed
from intervuo.utils.logger import EventLog


def _parse_object(json_str: str) -> Dict[str, Any] | None:
    try:
        parsed = json.loads(json_str)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def extract_json_object(content: str) -> Dict[str, Any]:
    """Recovers a JSON object from model output.

    Strict parsing first; otherwise the largest ``{...}`` span (first opening
    brace to last closing brace), then the same span with trailing commas and
    ``//`` comments removed. Raises ``AnalysisFailed`` when nothing parses.
    """
    parsed = _parse_object(content.strip())
    if parsed is not None:
        return parsed

    start_idx = content.find("{")
    end_idx = content.rfind("}")
    if start_idx == -1 or end_idx <= start_idx:
        raise AnalysisFailed(f"Response was not valid JSON. Raw response: {content[:500]}")

    json_str = content[start_idx:end_idx + 1]
    parsed = _parse_object(json_str)
    if parsed is not None:
        return parsed

    cleaned = re.sub(r'//.*?$', '', json_str, flags=re.MULTILINE)
    cleaned = re.sub(r',\s*}', '}', cleaned)
    cleaned = re.sub(r',\s*]', ']', cleaned)
    parsed = _parse_object(cleaned)
    if parsed is not None:
        return parsed

    raise AnalysisFailed(f"Failed to parse analysis result. Raw response: {content[:500]}")


class AnalysisEngine:
    def __init__(
        self,
        client: Mistral | None,
        model: str,
        temperature: float = 0.3,
        max_tokens: int = 1500,
        log_dir: str | Path | None = None,
    ):
        self.client = client
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.log_dir = log_dir
        self.graph = self._build_graph()

    @property
    def configured(self) -> bool:
        return self.client is not None

    async def analyze(
        self,
        transcript: Sequence[TranscriptEntry],
        context: InterviewConfig | None,
        session_id: str,
    ) -> AnalysisResult:
        if not self.configured:
            raise AnalysisFailed("LLM client is not configured")
        event_log = EventLog("analysis", self.log_dir)
        event_log.reset(session_id)
        state: AnalysisState = {
            "session_id": session_id,
            "event_log": event_log,
            "transcript": list(transcript),
            "context": context,
            "parsed": None,
            "result": None,
        }
        result = await self.graph.ainvoke(state)
        return result["result"]

    def _call_llm(self, prompt: str, event_log: EventLog) -> str:
        start_time = time.time()
        try:
            response = self.client.chat.complete(
                model=self.model,
                messages=[
                    {"role": "system", "content": ANALYST_SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                response_format={"type": "json_object"},
            )
        except Exception as e:
            raise AnalysisFailed(f"LLM request failed: {e}") from e

        latency = (time.time() - start_time) * 1000
        event_log.log_latency(latency)

        usage = getattr(response, "usage", None)
        if usage is not None:
            event_log.log_tokens(usage.prompt_tokens or 0, usage.completion_tokens or 0)

        choices = getattr(response, "choices", None) or []
        content = choices[0].message.content if choices else None
        if not isinstance(content, str) or not content.strip():
            raise AnalysisFailed("LLM returned an empty response.")
        return content

    def prepare_node(self, state: AnalysisState) -> Dict[str, Any]:
        transcript = state["transcript"]
        state["event_log"].log("Analyst", f"Preparing analysis of {len(transcript)} transcript entries")
        return {"prompt": build_analysis_prompt(transcript, state.get("context"))}

    async def analyst_node(self, state: AnalysisState) -> Dict[str, Any]:
        event_log = state["event_log"]
        event_log.log("Analyst", f"Sending transcript to {self.model}")
        content = await asyncio.to_thread(self._call_llm, state["prompt"], event_log)
        parsed = _parse_object(content.strip())
        if parsed is None:
            event_log.log("Analyst", "Strict JSON parse failed", {"raw": content[:200]})
        return {"raw_response": content, "parsed": parsed}

    def repair_node(self, state: AnalysisState) -> Dict[str, Any]:
        event_log = state["event_log"]
        event_log.log("Repair", "Extracting JSON object from raw response")
        parsed = extract_json_object(state["raw_response"])
        event_log.log("Repair", "Successfully extracted and parsed JSON")
        return {"parsed": parsed}

    def finalizer_node(self, state: AnalysisState) -> Dict[str, Any]:
        result = AnalysisResult.from_payload(state["parsed"])
        state["event_log"].log("Analyst", "Analysis ready", {"scores": result.scores})
        return {"result": result}

    def should_repair(self, state: AnalysisState) -> str:
        if state.get("parsed") is None:
            return "repair"
        return "finalizer"

    def _build_graph(self):
        workflow = StateGraph(AnalysisState)
        workflow.add_node("prepare", self.prepare_node)
        workflow.add_node("analyst", self.analyst_node)
        workflow.add_node("repair", self.repair_node)
        workflow.add_node("finalizer", self.finalizer_node)
        workflow.set_entry_point("prepare")

        workflow.add_edge("prepare", "analyst")
        workflow.add_conditional_edges(
            "analyst",
            self.should_repair,
            {"repair": "repair", "finalizer": "finalizer"}
        )
        workflow.add_edge("repair", "finalizer")
        workflow.add_edge("finalizer", END)
        return workflow.compile()
