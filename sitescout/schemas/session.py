"""Session evidence schemas: transcript, key frames and the hand-off snapshot."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, computed_field

from sitescout.schemas.hazard import TaggedHazard

Speaker = Literal["engine", "operator"]
SessionStatus = Literal["active", "completed", "cancelled"]


class TranscriptEntry(BaseModel):
    timestamp: datetime
    speaker: Speaker
    text: str

    model_config = {"frozen": True}


class KeyFrame(BaseModel):
    timestamp: datetime
    timestamp_seconds: int
    image: str
    description: str

    model_config = {"frozen": True}


class SessionSummary(BaseModel):
    total_hazards: int
    critical_count: int
    high_count: int
    medium_count: int
    low_count: int
    areas_inspected: tuple[str, ...] = ()

    model_config = {"frozen": True}


class SessionSnapshot(BaseModel):
    """Immutable hand-off bundle.

    The severity counts in ``summary`` are derived from ``hazards`` on every
    access, so they always partition the hazard list.
    """

    session_id: str
    site_name: str
    site_address: str | None = None
    start_time: datetime
    end_time: datetime
    duration_seconds: int
    hazards: tuple[TaggedHazard, ...] = ()
    transcript: tuple[TranscriptEntry, ...] = ()
    key_frames: tuple[KeyFrame, ...] = ()
    areas_inspected: tuple[str, ...] = ()

    model_config = {"frozen": True}

    @computed_field
    @property
    def summary(self) -> SessionSummary:
        counts = {"critical": 0, "high": 0, "medium": 0, "low": 0}
        for hazard in self.hazards:
            counts[hazard.severity] += 1
        return SessionSummary(
            total_hazards=len(self.hazards),
            critical_count=counts["critical"],
            high_count=counts["high"],
            medium_count=counts["medium"],
            low_count=counts["low"],
            areas_inspected=self.areas_inspected,
        )


class InspectionCreate(BaseModel):
    site_name: str = Field(min_length=1)
    site_address: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    engine: Literal["streaming", "polling"] | None = None


class InspectionRead(BaseModel):
    id: str
    site_name: str
    site_address: str | None = None
    started_at: datetime
    ended_at: datetime | None = None
    duration_seconds: int | None = None
    status: SessionStatus
    findings_count: int = 0
    risk_level: str | None = None
    analysis_origin: str | None = None

    model_config = {"from_attributes": True}


class FindingRead(BaseModel):
    id: str
    session_id: str
    timestamp_seconds: int
    category: str
    severity: str
    title: str
    description: str | None = None
    location_hint: str | None = None
    ai_confidence: float | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class QuestionCreate(BaseModel):
    text: str = Field(min_length=1)
