"""Tests for the hand-off graph, its fallback analysis and the judge client."""

import asyncio
import json

import httpx
import pytest

from sitescout.config import HandoffConfig
from sitescout.errors import HandoffFailed
from sitescout.handoff.graph import HandoffAnalyzer, build_handoff_graph
from sitescout.handoff.judge import GeminiJudge, Judge
from sitescout.handoff.tools import (
    build_handoff_prompt,
    fallback_finding,
    format_hazard,
    generate_fallback_analysis,
    parse_analysis_response,
)
from sitescout.schemas import FollowUp


class ScriptedJudge(Judge):
    def __init__(self, reply=None, error=None, delay=0.0):
        self.reply = reply
        self.error = error
        self.delay = delay
        self.prompts = []

    async def complete_json(self, prompt, system_prompt, max_output_tokens=None):
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply


REMOTE_REPLY = {
    "executiveSummary": "Two hazards with regulatory exposure.",
    "overallRiskLevel": "HIGH",
    "riskScore": 72.4,
    "keyFindings": [
        {"hazardIndex": 1, "complianceImpact": "Breach of fire safety duties",
         "relevantStandard": "RRO 2005", "remediationPriority": "urgent",
         "evidenceQuality": "strong"},
        {"hazardIndex": 9, "title": "Unmatched finding"},
    ],
    "recommendations": [
        {"priority": 2, "action": "Retrain staff", "timeline": "1 month"},
        {"priority": 1, "action": "Clear the exit", "timeline": "Immediate"},
    ],
    "regulatoryReferences": [{"regulation": "RRO 2005", "section": "Article 14"}],
    "nextSteps": ["Brief the site manager"],
}


def _analyzer(judge, **config):
    return HandoffAnalyzer(judge=judge, config=HandoffConfig(**config))


# ── Fallback analysis ─────────────────────────────────────

def test_fallback_with_critical_hazard(make_snapshot):
    snap = make_snapshot(["medium", "critical"])
    analysis = generate_fallback_analysis(snap)

    assert analysis.origin == "fallback"
    assert analysis.overall_risk_level == "critical"
    assert analysis.risk_score == 90  # 20 + 25 + 8 = 53, floored at the critical minimum
    assert len(analysis.recommendations) == 2
    first, second = analysis.recommendations
    assert (first.priority, first.action, first.timeline) == (1, "Address: Hazard 2", "Immediate")
    assert (second.priority, second.timeline) == (2, "1 week")
    assert analysis.legal_warnings
    assert len(analysis.regulatory_references) == 2
    assert len(analysis.next_steps) == 4
    assert "unavailable" in analysis.executive_summary


def test_fallback_high_level_floor(make_snapshot):
    analysis = generate_fallback_analysis(make_snapshot(["high", "low"]))
    assert analysis.overall_risk_level == "high"
    assert analysis.risk_score == 70
    assert analysis.legal_warnings == ()


def test_fallback_score_is_capped(make_snapshot):
    analysis = generate_fallback_analysis(make_snapshot(["critical"] * 5))
    assert analysis.risk_score == 100


def test_fallback_uncapped_weighted_score(make_snapshot):
    analysis = generate_fallback_analysis(make_snapshot(["medium"] * 4))
    assert analysis.overall_risk_level == "medium"
    assert analysis.risk_score == 52


def test_fallback_without_hazards(make_snapshot):
    analysis = generate_fallback_analysis(make_snapshot([]))
    assert analysis.overall_risk_level == "low"
    assert analysis.risk_score == 20
    assert analysis.recommendations == ()
    assert analysis.key_findings == ()
    assert "No critical issues" in analysis.executive_summary


def test_fallback_finding_by_severity(make_hazard):
    finding = fallback_finding(make_hazard(1, "low", image="aW1n"))
    assert finding.hazard_id == "hazard_s1_1"
    assert finding.remediation_priority == "scheduled"
    assert finding.estimated_remediation_time == "1 month"
    assert finding.evidence_quality == "strong"
    assert fallback_finding(make_hazard(2, "critical")).remediation_priority == "immediate"


# ── Prompt + parsing ──────────────────────────────────────

def test_prompt_embeds_hazards_and_transcript(make_snapshot, make_hazard):
    hazard = make_hazard(1, "critical", confirmation="Yes, exposed conductors",
                         location_hint="plant room")
    snap = make_snapshot(hazards=(hazard,))
    prompt = build_handoff_prompt(snap, transcript_tail=1)

    assert "Riverside Depot" in prompt
    assert "HAZARD #1" in prompt
    assert "CRITICAL" in prompt
    assert "Yes, exposed conductors" in prompt
    assert "plant room" in prompt
    # Only the last transcript entry is included.
    assert "Yes, that cable is loose." in prompt
    assert "Checking the loading bay now." not in prompt


def test_unanswered_follow_up_renders_no_response(make_hazard):
    hazard = make_hazard(1, "high", follow_ups=(
        FollowUp(question="How long has it been blocked?"),
    ))
    block = format_hazard(1, hazard)
    assert "How long has it been blocked?" in block
    assert 'A: "No response"' in block
    assert "HIGH" in block


def test_parse_response_accepts_code_fence():
    fenced = "Here you go:\n```json\n{\"riskScore\": 10}\n```"
    assert parse_analysis_response(fenced) == {"riskScore": 10}
    assert parse_analysis_response('{"a": 1}') == {"a": 1}


@pytest.mark.parametrize("raw", ["not json", "[1, 2]", ""])
def test_parse_response_rejects_garbage(raw):
    with pytest.raises(HandoffFailed):
        parse_analysis_response(raw)


# ── Graph ─────────────────────────────────────────────────

def test_build_handoff_graph_returns_callable():
    graph = build_handoff_graph()
    assert hasattr(graph, "ainvoke")


async def test_remote_analysis_is_mapped(make_snapshot):
    judge = ScriptedJudge(reply="```json\n" + json.dumps(REMOTE_REPLY) + "\n```")
    snap = make_snapshot(["critical", "low"])
    analysis = await _analyzer(judge).analyze(snap)

    assert analysis.origin == "remote"
    assert analysis.overall_risk_level == "high"
    assert analysis.risk_score == 72
    aligned, unmatched = analysis.key_findings
    assert aligned.hazard_id == "hazard_s1_1"
    assert aligned.severity == "critical"
    assert aligned.remediation_priority == "urgent"
    assert aligned.evidence_quality == "strong"
    assert unmatched.hazard_id is None
    assert unmatched.title == "Unmatched finding"
    assert unmatched.estimated_remediation_time == "1 week"
    assert [r.action for r in analysis.recommendations] == ["Clear the exit", "Retrain staff"]
    assert analysis.next_steps == ("Brief the site manager",)
    assert "Hazard 1" in judge.prompts[0]


async def test_remote_defaults_for_missing_fields(make_snapshot):
    analysis = await _analyzer(ScriptedJudge(reply="{}")).analyze(make_snapshot(["low"]))
    assert analysis.origin == "remote"
    assert analysis.executive_summary == "Analysis complete."
    assert analysis.overall_risk_level == "medium"
    assert analysis.risk_score == 50


async def test_unparseable_reply_falls_back(make_snapshot):
    analysis = await _analyzer(ScriptedJudge(reply="I am not JSON")).analyze(make_snapshot(["high"]))
    assert analysis.origin == "fallback"
    assert analysis.overall_risk_level == "high"


async def test_judge_failure_falls_back(make_snapshot):
    judge = ScriptedJudge(error=HandoffFailed("API error: 503"))
    analysis = await _analyzer(judge).analyze(make_snapshot(["critical"]))
    assert analysis.origin == "fallback"
    assert analysis.overall_risk_level == "critical"


async def test_unexpected_judge_error_falls_back(make_snapshot):
    judge = ScriptedJudge(error=RuntimeError("boom"))
    analysis = await _analyzer(judge).analyze(make_snapshot(["medium"]))
    assert analysis.origin == "fallback"


async def test_timeout_falls_back(make_snapshot):
    judge = ScriptedJudge(reply=json.dumps(REMOTE_REPLY), delay=1.0)
    analysis = await _analyzer(judge, timeout_s=0.05).analyze(make_snapshot(["high"]))
    assert analysis.origin == "fallback"


async def test_no_judge_always_falls_back(make_snapshot):
    analysis = await _analyzer(None).analyze(make_snapshot(["low"]))
    assert analysis.origin == "fallback"
    assert analysis.overall_risk_level == "low"


async def test_single_finding_remote_and_fallback(make_hazard):
    hazard = make_hazard(1, "high")
    judge = ScriptedJudge(reply=json.dumps({"complianceImpact": "Fire exit obstructed",
                                            "remediationPriority": "immediate"}))
    finding = await _analyzer(judge).analyze_single_finding(hazard)
    assert finding.hazard_id == hazard.id
    assert finding.remediation_priority == "immediate"
    assert finding.relevant_standard == "HSWA 1974"

    failed = await _analyzer(ScriptedJudge(error=HandoffFailed("down"))).analyze_single_finding(hazard)
    assert failed.remediation_priority == "urgent"
    assert failed.estimated_remediation_time == "Within 24 hours"


# ── Judge client ──────────────────────────────────────────

async def test_gemini_judge_requests_json():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": '{"ok": true}'}]}}]})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    judge = GeminiJudge(api_key="k", config=HandoffConfig(), client=client)
    assert await judge.complete_json("prompt", "system") == '{"ok": true}'
    config = bodies[0]["generationConfig"]
    assert config["responseMimeType"] == "application/json"
    assert config["temperature"] == 0.2
    assert config["maxOutputTokens"] == 8192


async def test_gemini_judge_http_error():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500, text="no")))
    judge = GeminiJudge(api_key="k", config=HandoffConfig(), client=client)
    with pytest.raises(HandoffFailed):
        await judge.complete_json("prompt", "system")
