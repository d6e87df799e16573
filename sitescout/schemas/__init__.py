"""Pydantic schemas for hazards, session evidence and compliance analysis."""

from sitescout.schemas.hazard import (
    CATEGORIES, SEVERITIES, Category, Severity, FollowUp, HazardEvent, TaggedHazard,
)
from sitescout.schemas.session import (
    FindingRead, InspectionCreate, InspectionRead, KeyFrame, QuestionCreate,
    SessionSnapshot, SessionStatus, SessionSummary, Speaker, TranscriptEntry,
)
from sitescout.schemas.analysis import (
    AnalysisOrigin, AnalyzedFinding, ComplianceAnalysis, Recommendation,
    RegulatoryReference, RiskLevel,
)
from sitescout.schemas.ws_messages import ClientMessage, WSMessage

__all__ = [
    "CATEGORIES", "SEVERITIES", "Category", "Severity",
    "FollowUp", "HazardEvent", "TaggedHazard",
    "FindingRead", "InspectionCreate", "InspectionRead", "KeyFrame", "QuestionCreate",
    "SessionSnapshot", "SessionStatus", "SessionSummary", "Speaker", "TranscriptEntry",
    "AnalysisOrigin", "AnalyzedFinding", "ComplianceAnalysis", "Recommendation",
    "RegulatoryReference", "RiskLevel",
    "ClientMessage", "WSMessage",
]
