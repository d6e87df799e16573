"""Hazard events emitted by the vision engines and the records the collector keeps."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

Category = Literal["safety", "security", "compliance", "maintenance"]
Severity = Literal["critical", "high", "medium", "low"]

CATEGORIES: tuple[str, ...] = ("safety", "security", "compliance", "maintenance")
# Highest first; the fallback analysis relies on this order.
SEVERITIES: tuple[str, ...] = ("critical", "high", "medium", "low")


class HazardEvent(BaseModel):
    """A `report_finding` tool call decoded from either engine.

    Optional fields stay None when the model omitted them; the collector
    applies its own defaults when tagging.
    """

    category: Category | None = None
    severity: Severity | None = None
    title: str | None = None
    description: str | None = None
    location_hint: str | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    timestamp_seconds: float = 0.0


class FollowUp(BaseModel):
    question: str
    answer: str | None = None

    model_config = {"frozen": True}


class TaggedHazard(BaseModel):
    id: str
    seq: int
    timestamp: datetime
    timestamp_seconds: int
    category: Category = "safety"
    severity: Severity = "medium"
    title: str = "Unspecified Hazard"
    description: str = ""
    location_hint: str | None = None
    observation: str = ""  # what the engine said when tagging
    confirmation: str | None = None  # what the operator said back
    follow_ups: tuple[FollowUp, ...] = ()
    image: str | None = None  # base64 JPEG snapshot
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)

    model_config = {"frozen": True}
