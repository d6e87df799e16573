"""LangGraph TypedDict state for the hand-off graph."""

from __future__ import annotations

from typing import TypedDict, Any

from sitescout.schemas import ComplianceAnalysis, SessionSnapshot


class HandoffState(TypedDict, total=False):
    snapshot: SessionSnapshot
    judge: Any  # Judge | None; None forces the fallback
    config: dict
    prompt: str
    raw_response: str
    error: str
    analysis: ComplianceAnalysis
