"""Session evidence collector.

Aggregates everything the live engine produces during one walk (tagged
hazards, transcript and key frames) and bundles it into an immutable
``SessionSnapshot`` for the hand-off stage. No network access; every
operation runs on the single event timeline driven by engine callbacks.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from sitescout.schemas import (
    FollowUp, HazardEvent, KeyFrame, SessionSnapshot, SessionSummary,
    TaggedHazard, TranscriptEntry,
)

logger = logging.getLogger(__name__)

AREA_KEYWORDS: tuple[str, ...] = (
    "entrance", "exit", "stairwell", "corridor", "lobby", "reception",
    "parking", "loading bay", "storage", "office", "bathroom", "kitchen",
    "break room", "server room", "electrical", "rooftop", "basement",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionCollector:
    def __init__(
        self,
        session_id: str,
        site_name: str,
        site_address: str | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.session_id = session_id
        self.site_name = site_name
        self.site_address = site_address
        self._clock = clock
        self.start_time = clock()
        self._hazards: list[TaggedHazard] = []
        self._transcript: list[TranscriptEntry] = []
        self._key_frames: list[KeyFrame] = []
        self._areas: dict[str, None] = {}  # insertion-ordered set
        self._seq = 0
        logger.info("SessionCollector started for %s", site_name)

    def _elapsed_seconds(self) -> int:
        return max(0, int((self._clock() - self.start_time).total_seconds()))

    # ── Hazards ──────────────────────────────────────────

    def tag_hazard(
        self,
        data: HazardEvent,
        observation: str,
        image: str | None = None,
    ) -> TaggedHazard:
        """Record a hazard signalled by the engine and return the stored record."""
        self._seq += 1
        hazard = TaggedHazard(
            id=f"hazard_{self.session_id}_{self._seq}",
            seq=self._seq,
            timestamp=self._clock(),
            timestamp_seconds=self._elapsed_seconds(),
            category=data.category or "safety",
            severity=data.severity or "medium",
            title=data.title or "Unspecified Hazard",
            description=data.description or "",
            location_hint=data.location_hint or None,
            observation=observation,
            image=image,
            confidence=data.confidence if data.confidence is not None else 0.8,
        )
        self._hazards.append(hazard)
        logger.info("Tagged hazard #%d [%s] %s", hazard.seq, hazard.severity, hazard.title)
        return hazard

    def add_confirmation(self, text: str) -> None:
        """Attach the operator's confirmation to the most recent hazard."""
        if not self._hazards:
            return
        last = self._hazards[-1]
        self._hazards[-1] = last.model_copy(update={"confirmation": text})
        logger.debug("Confirmation added to %s", last.title)

    def add_follow_up(self, question: str, answer: str | None = None) -> None:
        """Append a follow-up question (and optional answer) to the most recent hazard."""
        if not self._hazards:
            return
        last = self._hazards[-1]
        follow_ups = last.follow_ups + (FollowUp(question=question, answer=answer),)
        self._hazards[-1] = last.model_copy(update={"follow_ups": follow_ups})

    @property
    def last_hazard(self) -> TaggedHazard | None:
        return self._hazards[-1] if self._hazards else None

    @property
    def hazards(self) -> tuple[TaggedHazard, ...]:
        return tuple(self._hazards)

    @property
    def hazard_count(self) -> int:
        return len(self._hazards)

    # ── Transcript + key frames ──────────────────────────

    def add_transcript(self, speaker: str, text: str) -> None:
        self._transcript.append(
            TranscriptEntry(timestamp=self._clock(), speaker=speaker, text=text)
        )
        lower = text.lower()
        for area in AREA_KEYWORDS:
            if area in lower:
                self._areas.setdefault(area, None)

    def save_key_frame(self, image: str, description: str) -> None:
        self._key_frames.append(KeyFrame(
            timestamp=self._clock(),
            timestamp_seconds=self._elapsed_seconds(),
            image=image,
            description=description,
        ))
        logger.debug("Saved key frame - %s", description)

    @property
    def areas_inspected(self) -> tuple[str, ...]:
        return tuple(self._areas)

    # ── Snapshot ─────────────────────────────────────────

    def snapshot(self) -> SessionSnapshot:
        """Bundle the evidence gathered so far.

        ``end_time`` is "now", so each call yields a different end time and
        duration. Take exactly one snapshot at session end and keep it.
        """
        return SessionSnapshot(
            session_id=self.session_id,
            site_name=self.site_name,
            site_address=self.site_address,
            start_time=self.start_time,
            end_time=self._clock(),
            duration_seconds=self._elapsed_seconds(),
            hazards=tuple(self._hazards),
            transcript=tuple(self._transcript),
            key_frames=tuple(self._key_frames),
            areas_inspected=self.areas_inspected,
        )

    def summary(self) -> SessionSummary:
        return self.snapshot().summary

    def reset(self) -> None:
        """Clear all evidence and restart the clock for a new patrol."""
        self._hazards.clear()
        self._transcript.clear()
        self._key_frames.clear()
        self._areas.clear()
        self._seq = 0
        self.start_time = self._clock()
        logger.info("SessionCollector reset")
