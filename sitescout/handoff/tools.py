"""Hand-off tools: prompt assembly, response mapping and the local fallback analysis."""

from __future__ import annotations

import json
import logging
from typing import Any

from sitescout.errors import HandoffFailed
from sitescout.handoff.prompts import HAZARD_BLOCK, HANDOFF_PROMPT
from sitescout.schemas import (
    SEVERITIES, AnalyzedFinding, ComplianceAnalysis, Recommendation,
    RegulatoryReference, SessionSnapshot, TaggedHazard,
)

logger = logging.getLogger(__name__)

RISK_LEVELS = ("low", "medium", "high", "critical")
REMEDIATION_PRIORITIES = ("immediate", "urgent", "soon", "scheduled")
EVIDENCE_QUALITIES = ("strong", "adequate", "weak")

SEVERITY_WEIGHTS = {"critical": 25, "high": 15, "medium": 8, "low": 3}
BASE_RISK_SCORE = 20
MIN_SCORE_FOR_LEVEL = {"critical": 90, "high": 70, "medium": 40, "low": 0}
SEVERITY_TIMELINE = {
    "critical": "Immediate",
    "high": "Within 24 hours",
    "medium": "1 week",
    "low": "1 month",
}
SEVERITY_PRIORITY = {"critical": "immediate", "high": "urgent", "medium": "soon", "low": "scheduled"}

FALLBACK_REFERENCES = (
    RegulatoryReference(
        regulation="Health and Safety at Work Act 1974",
        section="Section 2",
        relevance="General duties of employers to employees",
        penalties="Up to £20,000 (Magistrates) or unlimited (Crown Court)",
    ),
    RegulatoryReference(
        regulation="Management of Health and Safety at Work Regulations 1999",
        section="Regulation 3",
        relevance="Risk assessment requirements",
        penalties="Up to £20,000 fine per breach",
    ),
)

FALLBACK_NEXT_STEPS = (
    "Review all findings with site management immediately",
    "Prioritize and assign remediation tasks",
    "Document corrective actions taken",
    "Schedule follow-up inspection within 30 days",
)


def _offset(seconds: int) -> str:
    return f"{seconds // 60}:{seconds % 60:02d}"


# ── Prompt ────────────────────────────────────────────────

def format_hazard(index: int, h: TaggedHazard) -> str:
    if h.follow_ups:
        qa = "\n\n".join(
            f'Q: "{fu.question}"\nA: "{fu.answer or "No response"}"' for fu in h.follow_ups
        )
        follow_ups = f"Follow-up Evidence Gathered:\n{qa}"
    else:
        follow_ups = "No follow-up questions were asked."
    return HAZARD_BLOCK.format(
        index=index,
        title=h.title,
        severity=h.severity.upper(),
        category=h.category,
        offset=_offset(h.timestamp_seconds),
        location=h.location_hint or "Not specified",
        observation=h.observation,
        confirmation=h.confirmation or "None recorded",
        description=h.description,
        follow_ups=follow_ups,
        image="High-resolution snapshot available" if h.image else "No snapshot captured",
        confidence=f"{h.confidence * 100:.0f}",
    )


def format_transcript(snapshot: SessionSnapshot, tail: int) -> str:
    if not snapshot.transcript:
        return "No transcript available."
    lines = []
    for t in snapshot.transcript[-tail:]:
        mins = int((t.timestamp - snapshot.start_time).total_seconds() // 60)
        speaker = "AI SCOUT" if t.speaker == "engine" else "OPERATOR"
        lines.append(f"[{mins}min] {speaker}: {t.text}")
    return "\n".join(lines)


def build_handoff_prompt(snapshot: SessionSnapshot, transcript_tail: int = 50) -> str:
    """Embed every hazard (with its evidence) and the transcript tail in one user turn."""
    summary = snapshot.summary
    if snapshot.hazards:
        hazards = "\n---\n".join(format_hazard(i, h) for i, h in enumerate(snapshot.hazards, start=1))
    else:
        hazards = "No hazards were tagged during this patrol."
    return HANDOFF_PROMPT.format(
        site_name=snapshot.site_name,
        site_address=snapshot.site_address or "Not specified",
        patrol_date=snapshot.start_time.strftime("%A %d %B %Y"),
        start_time=snapshot.start_time.strftime("%H:%M:%S"),
        minutes=snapshot.duration_seconds // 60,
        seconds=snapshot.duration_seconds % 60,
        areas=", ".join(summary.areas_inspected) or "Not tracked",
        total=summary.total_hazards,
        critical=summary.critical_count,
        high=summary.high_count,
        medium=summary.medium_count,
        low=summary.low_count,
        hazards=hazards,
        tail=transcript_tail,
        transcript=format_transcript(snapshot, transcript_tail),
    )


# ── Remote response ───────────────────────────────────────

def parse_analysis_response(response: str) -> dict:
    """Parse the judge's JSON, tolerating a Markdown code fence. Raises HandoffFailed."""
    text = (response or "").strip()
    try:
        if "```json" in text:
            text = text.split("```json")[1].split("```")[0]
        elif "```" in text:
            text = text.split("```")[1].split("```")[0]
        data = json.loads(text)
    except (json.JSONDecodeError, IndexError) as e:
        raise HandoffFailed(f"unparseable analysis: {e}") from e
    if not isinstance(data, dict):
        raise HandoffFailed(f"analysis must be a JSON object, got {type(data).__name__}")
    return data


def _choice(value: Any, allowed: tuple[str, ...], default: str) -> str:
    if isinstance(value, str) and value.lower() in allowed:
        return value.lower()
    return default


def _str_list(value: Any) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(str(v) for v in value if isinstance(v, (str, int, float)) and str(v).strip())


def _score(value: Any, default: int = 50) -> int:
    try:
        score = int(round(float(value)))
    except (TypeError, ValueError):
        return default
    return max(0, min(100, score))


def _priority(value: Any, default: int) -> int:
    try:
        priority = int(value)
    except (TypeError, ValueError):
        return default
    return priority if priority > 0 else default


def _hazard_at(snapshot: SessionSnapshot, index: Any) -> TaggedHazard | None:
    if isinstance(index, bool) or not isinstance(index, (int, float)):
        return None
    i = int(index) - 1
    if 0 <= i < len(snapshot.hazards):
        return snapshot.hazards[i]
    return None


def map_key_finding(kf: dict, hazard: TaggedHazard | None) -> AnalyzedFinding:
    return AnalyzedFinding(
        hazard_id=hazard.id if hazard else None,
        title=hazard.title if hazard else str(kf.get("title", "")),
        severity=hazard.severity if hazard else None,
        compliance_impact=str(kf.get("complianceImpact") or ""),
        relevant_standard=str(kf.get("relevantStandard") or ""),
        specific_section=str(kf.get("specificSection") or ""),
        remediation_priority=_choice(kf.get("remediationPriority"), REMEDIATION_PRIORITIES, "soon"),
        estimated_remediation_time=str(kf.get("estimatedRemediationTime") or "1 week"),
        potential_consequences=str(kf.get("potentialConsequences") or ""),
        legal_exposure=str(kf.get("legalExposure") or ""),
        evidence_quality=_choice(kf.get("evidenceQuality"), EVIDENCE_QUALITIES, "adequate"),
    )


def map_analysis_response(data: dict, snapshot: SessionSnapshot) -> ComplianceAnalysis:
    """Map the judge's camelCase JSON onto ComplianceAnalysis, linking back to hazards."""
    findings = []
    for kf in data.get("keyFindings") or []:
        if not isinstance(kf, dict):
            continue
        hazard = _hazard_at(snapshot, kf.get("hazardIndex"))
        if hazard is None:
            logger.warning("Judge finding did not align with a tagged hazard: %r", kf.get("hazardIndex"))
        findings.append(map_key_finding(kf, hazard))

    recommendations = []
    for i, rec in enumerate(r for r in data.get("recommendations") or [] if isinstance(r, dict)):
        recommendations.append(Recommendation(
            priority=_priority(rec.get("priority"), default=i + 1),
            action=str(rec.get("action") or ""),
            responsibility=str(rec.get("responsibility") or ""),
            timeline=str(rec.get("timeline") or ""),
            standard=str(rec.get("standard") or ""),
            legal_basis=str(rec.get("legalBasis") or ""),
        ))

    references = tuple(
        RegulatoryReference(
            regulation=str(ref.get("regulation") or ""),
            section=str(ref.get("section") or ""),
            relevance=str(ref.get("relevance") or ""),
            penalties=str(ref.get("penalties") or ""),
        )
        for ref in data.get("regulatoryReferences") or []
        if isinstance(ref, dict)
    )

    return ComplianceAnalysis(
        executive_summary=str(data.get("executiveSummary") or "Analysis complete."),
        overall_risk_level=_choice(data.get("overallRiskLevel"), RISK_LEVELS, "medium"),
        risk_score=_score(data.get("riskScore")),
        key_findings=tuple(findings),
        recommendations=tuple(sorted(recommendations, key=lambda r: r.priority)),
        regulatory_references=references,
        next_steps=_str_list(data.get("nextSteps")),
        legal_warnings=_str_list(data.get("legalWarnings")),
        origin="remote",
    )


# ── Fallback ──────────────────────────────────────────────

def fallback_risk_level(snapshot: SessionSnapshot) -> str:
    """Risk level of the highest severity present; low when nothing was tagged."""
    present = {h.severity for h in snapshot.hazards}
    for severity in SEVERITIES:
        if severity in present:
            return severity
    return "low"


def fallback_risk_score(snapshot: SessionSnapshot, level: str) -> int:
    summary = snapshot.summary
    weighted = (
        BASE_RISK_SCORE
        + SEVERITY_WEIGHTS["critical"] * summary.critical_count
        + SEVERITY_WEIGHTS["high"] * summary.high_count
        + SEVERITY_WEIGHTS["medium"] * summary.medium_count
        + SEVERITY_WEIGHTS["low"] * summary.low_count
    )
    return min(100, max(weighted, MIN_SCORE_FOR_LEVEL[level]))


def fallback_finding(h: TaggedHazard) -> AnalyzedFinding:
    return AnalyzedFinding(
        hazard_id=h.id,
        title=h.title,
        severity=h.severity,
        compliance_impact=f"{h.category} issue requiring attention",
        relevant_standard="Health and Safety at Work Act 1974",
        specific_section="Section 2 - General duties of employers",
        remediation_priority=SEVERITY_PRIORITY[h.severity],
        estimated_remediation_time=SEVERITY_TIMELINE[h.severity],
        potential_consequences="Risk of injury, regulatory action, or prosecution",
        legal_exposure=(
            "High - Potential HSE prosecution" if h.severity == "critical"
            else "Moderate - Improvement notice likely"
        ),
        evidence_quality="strong" if h.image else "adequate",
    )


def generate_fallback_analysis(snapshot: SessionSnapshot) -> ComplianceAnalysis:
    """Deterministic analysis computed from the snapshot alone."""
    summary = snapshot.summary
    level = fallback_risk_level(snapshot)

    if summary.critical_count:
        urgency = "IMMEDIATE ACTION REQUIRED for critical safety issues."
    elif summary.high_count:
        urgency = "Prompt attention required for high-priority items."
    else:
        urgency = "No critical issues identified."

    rank = {s: i for i, s in enumerate(SEVERITIES)}
    ordered = sorted(snapshot.hazards, key=lambda h: (rank[h.severity], h.seq))
    recommendations = tuple(
        Recommendation(
            priority=i,
            action=f"Address: {h.title}",
            responsibility="Site Manager",
            timeline=SEVERITY_TIMELINE[h.severity],
            standard="HSWA 1974",
            legal_basis="Employer duty of care",
        )
        for i, h in enumerate(ordered, start=1)
    )

    return ComplianceAnalysis(
        executive_summary=(
            f"Site inspection of {snapshot.site_name} identified "
            f"{summary.total_hazards} hazard(s). {urgency} "
            "Automated compliance cross-referencing was unavailable; this analysis was "
            "generated from the tagged hazards only and should be reviewed by a qualified inspector."
        ),
        overall_risk_level=level,
        risk_score=fallback_risk_score(snapshot, level),
        key_findings=tuple(fallback_finding(h) for h in snapshot.hazards),
        recommendations=recommendations,
        regulatory_references=FALLBACK_REFERENCES,
        next_steps=FALLBACK_NEXT_STEPS,
        legal_warnings=(
            ("Critical hazards detected - immediate action required to avoid "
             "potential HSE enforcement action",)
            if summary.critical_count else ()
        ),
        origin="fallback",
    )
