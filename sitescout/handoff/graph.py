"""Hand-off agent as a LangGraph StateGraph.

Graph: build_prompt → request_analysis → map_response ─┬→ END
                                  │                     │
                                  └──────→ fallback ←───┘

Any failure of the deep-reasoning stage routes to ``fallback``, which
computes a deterministic analysis from the snapshot alone. ``analyze()``
never raises.
"""

from __future__ import annotations

import asyncio
import logging
import time

from langgraph.graph import StateGraph, END

from sitescout.config import HandoffConfig, get_settings
from sitescout.errors import HandoffFailed
from sitescout.handoff.judge import GeminiJudge, Judge
from sitescout.handoff.prompts import JUDGE_SYSTEM_PROMPT, SINGLE_FINDING_PROMPT
from sitescout.handoff.state import HandoffState
from sitescout.handoff.tools import (
    EVIDENCE_QUALITIES, REMEDIATION_PRIORITIES, build_handoff_prompt,
    fallback_finding, generate_fallback_analysis, map_analysis_response,
    map_key_finding, parse_analysis_response,
)
from sitescout.schemas import AnalyzedFinding, ComplianceAnalysis, SessionSnapshot, TaggedHazard

logger = logging.getLogger(__name__)


# ── Node functions ────────────────────────────────────────

def build_prompt_node(state: HandoffState) -> dict:
    tail = state.get("config", {}).get("transcript_tail", 50)
    return {"prompt": build_handoff_prompt(state["snapshot"], tail)}


async def request_analysis_node(state: HandoffState) -> dict:
    """Send the evidence bundle to the judge model."""
    judge: Judge | None = state.get("judge")
    if judge is None:
        return {"error": "no deep-reasoning backend configured"}

    snapshot = state["snapshot"]
    logger.info(
        "Hand-off: site=%s duration=%dm hazards=%d transcript=%d",
        snapshot.site_name, snapshot.duration_seconds // 60,
        len(snapshot.hazards), len(snapshot.transcript),
    )
    started = time.perf_counter()
    try:
        raw = await judge.complete_json(
            state["prompt"], JUDGE_SYSTEM_PROMPT,
            state.get("config", {}).get("max_output_tokens"),
        )
    except HandoffFailed as e:
        logger.error("Hand-off request failed: %s", e)
        return {"error": str(e)}
    logger.info("Hand-off analysis received in %.0fms", (time.perf_counter() - started) * 1000)
    return {"raw_response": raw}


def map_response_node(state: HandoffState) -> dict:
    try:
        data = parse_analysis_response(state["raw_response"])
        return {"analysis": map_analysis_response(data, state["snapshot"])}
    except (HandoffFailed, ValueError) as e:
        # ValueError covers pydantic validation of the mapped analysis.
        logger.error("Hand-off response unusable: %s", e)
        return {"error": str(e)}


def fallback_node(state: HandoffState) -> dict:
    logger.warning("Using fallback analysis (%s)", state.get("error", "unknown error"))
    return {"analysis": generate_fallback_analysis(state["snapshot"])}


def _after_request(state: HandoffState) -> str:
    return "fallback" if state.get("error") else "map_response"


def _after_map(state: HandoffState) -> str:
    return "fallback" if state.get("error") or "analysis" not in state else END


# ── Build graph ───────────────────────────────────────────

def build_handoff_graph():
    graph = StateGraph(HandoffState)

    graph.add_node("build_prompt", build_prompt_node)
    graph.add_node("request_analysis", request_analysis_node)
    graph.add_node("map_response", map_response_node)
    graph.add_node("fallback", fallback_node)

    graph.set_entry_point("build_prompt")
    graph.add_edge("build_prompt", "request_analysis")
    graph.add_conditional_edges("request_analysis", _after_request, {
        "map_response": "map_response",
        "fallback": "fallback",
    })
    graph.add_conditional_edges("map_response", _after_map, {
        "fallback": "fallback",
        END: END,
    })
    graph.add_edge("fallback", END)

    return graph.compile()


# ── Public API ────────────────────────────────────────────

class HandoffAnalyzer:
    """Hands a finished session's snapshot to the deep-reasoning stage.

    ``judge=None`` disables the remote stage entirely (every analysis is the
    fallback variant).
    """

    _DEFAULT = object()

    def __init__(self, judge: Judge | None | object = _DEFAULT, config: HandoffConfig | None = None):
        self.config = config or get_settings().handoff
        if judge is HandoffAnalyzer._DEFAULT:
            judge = GeminiJudge(config=self.config)
        self.judge = judge
        self._graph = build_handoff_graph()

    async def analyze(self, snapshot: SessionSnapshot) -> ComplianceAnalysis:
        """Never raises: any failure yields the fallback analysis."""
        state: HandoffState = {
            "snapshot": snapshot,
            "judge": self.judge,
            "config": {
                "transcript_tail": self.config.transcript_tail,
                "max_output_tokens": self.config.max_output_tokens,
            },
        }
        try:
            if self.config.timeout_s:
                result = await asyncio.wait_for(self._graph.ainvoke(state), self.config.timeout_s)
            else:
                result = await self._graph.ainvoke(state)
            return result["analysis"]
        except asyncio.TimeoutError:
            logger.error("Hand-off timed out after %.0fs", self.config.timeout_s)
        except Exception:
            logger.exception("Hand-off graph failed")
        return generate_fallback_analysis(snapshot)

    async def analyze_single_finding(self, hazard: TaggedHazard) -> AnalyzedFinding:
        """Per-hazard analysis with the same never-fail contract."""
        if self.judge is None:
            return fallback_finding(hazard)
        prompt = SINGLE_FINDING_PROMPT.format(
            category=hazard.category,
            severity=hazard.severity,
            title=hazard.title,
            description=hazard.description or "N/A",
            location=hazard.location_hint or "N/A",
        )
        try:
            raw = await self.judge.complete_json(prompt, JUDGE_SYSTEM_PROMPT, 1024)
            data = parse_analysis_response(raw)
            finding = map_key_finding(data, hazard)
        except (HandoffFailed, ValueError) as e:
            logger.error("Single finding analysis failed: %s", e)
            return fallback_finding(hazard)
        if not finding.relevant_standard:
            finding = finding.model_copy(update={"relevant_standard": "HSWA 1974"})
        return finding


__all__ = [
    "EVIDENCE_QUALITIES", "REMEDIATION_PRIORITIES",
    "HandoffAnalyzer", "build_handoff_graph",
]
