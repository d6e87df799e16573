"""Compliance analysis produced by the hand-off stage."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

from sitescout.schemas.hazard import Severity

RiskLevel = Literal["low", "medium", "high", "critical"]
RemediationPriority = Literal["immediate", "urgent", "soon", "scheduled"]
EvidenceQuality = Literal["strong", "adequate", "weak"]
AnalysisOrigin = Literal["remote", "fallback"]


class AnalyzedFinding(BaseModel):
    hazard_id: str | None  # None when the remote stage could not align a hazard
    title: str = ""
    severity: Severity | None = None
    compliance_impact: str = ""
    relevant_standard: str = ""
    specific_section: str = ""
    remediation_priority: RemediationPriority = "soon"
    estimated_remediation_time: str = "1 week"
    potential_consequences: str = ""
    legal_exposure: str = ""
    evidence_quality: EvidenceQuality = "adequate"

    model_config = {"frozen": True}


class Recommendation(BaseModel):
    priority: int
    action: str
    responsibility: str = ""
    timeline: str = ""
    standard: str = ""
    legal_basis: str = ""

    model_config = {"frozen": True}


class RegulatoryReference(BaseModel):
    regulation: str
    section: str = ""
    relevance: str = ""
    penalties: str = ""

    model_config = {"frozen": True}


class ComplianceAnalysis(BaseModel):
    executive_summary: str
    overall_risk_level: RiskLevel
    risk_score: int = Field(ge=0, le=100)
    key_findings: tuple[AnalyzedFinding, ...] = ()
    recommendations: tuple[Recommendation, ...] = ()
    regulatory_references: tuple[RegulatoryReference, ...] = ()
    next_steps: tuple[str, ...] = ()
    legal_warnings: tuple[str, ...] = ()
    origin: AnalysisOrigin
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"frozen": True}
