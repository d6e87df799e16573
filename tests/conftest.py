"""Shared builders for hazards and snapshots."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from sitescout.engines.base import VisionAnalysisEngine
from sitescout.schemas import SessionSnapshot, TaggedHazard, TranscriptEntry

T0 = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)


def build_hazard(seq: int, severity: str = "medium", **overrides) -> TaggedHazard:
    fields = dict(
        id=f"hazard_s1_{seq}",
        seq=seq,
        timestamp=T0 + timedelta(seconds=30 * seq),
        timestamp_seconds=30 * seq,
        severity=severity,
        title=f"Hazard {seq}",
        description=f"Description of hazard {seq}",
        observation=f"I can see hazard {seq}",
    )
    fields.update(overrides)
    return TaggedHazard(**fields)


def build_snapshot(severities=(), **overrides) -> SessionSnapshot:
    hazards = tuple(build_hazard(i, sev) for i, sev in enumerate(severities, start=1))
    fields = dict(
        session_id="s1",
        site_name="Riverside Depot",
        site_address="1 Quay Street",
        start_time=T0,
        end_time=T0 + timedelta(minutes=12, seconds=5),
        duration_seconds=725,
        hazards=hazards,
        transcript=(
            TranscriptEntry(timestamp=T0 + timedelta(seconds=20), speaker="engine",
                            text="Checking the loading bay now."),
            TranscriptEntry(timestamp=T0 + timedelta(minutes=3), speaker="operator",
                            text="Yes, that cable is loose."),
        ),
        areas_inspected=("loading bay",),
    )
    fields.update(overrides)
    return SessionSnapshot(**fields)


@pytest.fixture
def make_hazard():
    return build_hazard


@pytest.fixture
def make_snapshot():
    return build_snapshot


# ── Fake engine ───────────────────────────────────────────

class FakeEngine(VisionAnalysisEngine):
    """Records submissions; tests drive the observer directly."""

    def __init__(self, observer, kind="polling", start_error=None):
        self.observer = observer
        self.kind = kind
        self.start_error = start_error
        self.frames: list[str] = []
        self.audio: list[str] = []
        self.questions: list[tuple[str, str | None]] = []
        self.hold: asyncio.Event | None = None
        self.started = False
        self.stop_calls = 0

    @property
    def is_ready(self) -> bool:
        return self.started and not self.stop_calls

    async def start(self) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.started = True

    async def stop(self) -> None:
        self.stop_calls += 1

    async def submit_frame(self, image_b64: str) -> bool:
        self.frames.append(image_b64)
        if self.hold is not None:
            await self.hold.wait()
        return True

    async def submit_audio(self, chunk_b64: str) -> bool:
        self.audio.append(chunk_b64)
        return True

    async def ask(self, text: str, image_b64: str | None = None) -> str | None:
        self.questions.append((text, image_b64))
        answer = f"Answer to: {text}"
        self.observer.on_text(answer)
        return answer


@pytest.fixture
def fake_engines():
    """Engine factory compatible with create_engine; created engines are kept in .engines."""

    class Factory:
        def __init__(self):
            self.engines: list[FakeEngine] = []
            self.start_error = None

        def __call__(self, kind, observer, settings=None, **kwargs):
            engine = FakeEngine(observer, kind or "polling", self.start_error)
            self.engines.append(engine)
            return engine

    return Factory()


async def _eventually(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def eventually():
    """Await a predicate becoming true, polling the event loop."""
    return _eventually
