"""Inspection runner: owns one live session end to end.

Wires the selected engine's events into a SessionCollector, drives the
fixed-rate capture loop, and at the end takes the single snapshot that is
handed to the HandoffAnalyzer.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from sitescout.config import Settings, get_settings
from sitescout.engines import CallbackObserver, VisionAnalysisEngine, create_engine
from sitescout.handoff.graph import HandoffAnalyzer
from sitescout.schemas import ComplianceAnalysis, HazardEvent, SessionSnapshot, TaggedHazard
from sitescout.services.frame_source import FrameSource, LatestFrameSource
from sitescout.services.session_collector import SessionCollector

logger = logging.getLogger(__name__)

EventSink = Callable[[str, dict[str, Any]], Awaitable[None]]


def hazard_event_data(hazard: TaggedHazard) -> dict[str, Any]:
    """Client-facing hazard payload (frame image omitted)."""
    return hazard.model_dump(mode="json", exclude={"image"})


class InspectionRunner:
    def __init__(
        self,
        session_id: str,
        site_name: str,
        site_address: str | None = None,
        engine_kind: str | None = None,
        frame_source: FrameSource | None = None,
        analyzer: HandoffAnalyzer | None = None,
        settings: Settings | None = None,
        event_sink: EventSink | None = None,
        engine_factory: Callable[..., VisionAnalysisEngine] = create_engine,
        **engine_kwargs,
    ):
        self.settings = settings or get_settings()
        self.session_id = session_id
        self.collector = SessionCollector(session_id, site_name, site_address)
        self.frame_source = frame_source or LatestFrameSource()
        self.analyzer = analyzer or HandoffAnalyzer(config=self.settings.handoff)
        self.event_sink = event_sink

        observer = CallbackObserver(
            text=self._on_text,
            finding=self._on_finding,
            connection=self._on_connection_change,
            error=self._on_error,
        )
        self.engine = engine_factory(engine_kind, observer, self.settings, **engine_kwargs)

        self._last_narration = ""
        self._last_frame: str | None = None
        self._loop_task: asyncio.Task | None = None
        self._tick: asyncio.Task | None = None
        self._pending: set[asyncio.Task] = set()
        self._running = False
        self._stopped = False
        self.ticks_skipped = 0
        self.snapshot: SessionSnapshot | None = None
        self.analysis: ComplianceAnalysis | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def last_frame(self) -> str | None:
        return self._last_frame

    # ── Engine events ─────────────────────────────────────

    def _on_text(self, text: str) -> None:
        self._last_narration = text
        self.collector.add_transcript("engine", text)
        self._emit("narration", {"text": text})

    def _on_finding(self, finding: HazardEvent) -> None:
        image = self.frame_source.snapshot() or self._last_frame
        hazard = self.collector.tag_hazard(finding, observation=self._last_narration, image=image)
        if image:
            self.collector.save_key_frame(image, hazard.title)
        self._emit("hazard", hazard_event_data(hazard))

    def _on_connection_change(self, connected: bool) -> None:
        self._emit("connection", {"connected": connected, "engine": self.engine.kind})

    def _on_error(self, error: Exception) -> None:
        logger.warning("Session %s engine error: %s", self.session_id, error)
        self._emit("error", {"message": str(error), "type": type(error).__name__})

    def _emit(self, event: str, data: dict[str, Any]) -> None:
        if self.event_sink is None:
            return
        task = asyncio.get_running_loop().create_task(self.event_sink(event, data))
        self._pending.add(task)
        task.add_done_callback(self._sink_done)

    def _sink_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Event sink failed: %s", task.exception())

    async def flush(self) -> None:
        """Wait for queued event deliveries."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ── Lifecycle ─────────────────────────────────────────

    async def start(self) -> None:
        """Open the engine session, then begin sampling frames.

        A streaming engine's handshake failure propagates to the caller.
        """
        if self._running or self._stopped:
            return
        await self.engine.start()
        self._running = True
        self._loop_task = asyncio.create_task(self._capture_loop())
        logger.info(
            "Inspection %s started (engine=%s, %.1f fps)",
            self.session_id, self.engine.kind, self.settings.capture.frames_per_second,
        )

    async def _capture_loop(self) -> None:
        interval = 1.0 / self.settings.capture.frames_per_second
        while self._running:
            if self._tick is None or self._tick.done():
                self._tick = asyncio.create_task(self._capture_once())
            else:
                self.ticks_skipped += 1
                logger.debug("Previous frame still in flight, skipping tick")
            await asyncio.sleep(interval)

    async def _capture_once(self) -> None:
        try:
            frame = await self.frame_source.capture()
            if frame is None:
                return
            self._last_frame = frame
            await self.engine.submit_frame(frame)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Frame capture failed: %s", e)
            self._on_error(e)

    async def drain(self) -> None:
        """Wait for the capture/send cycle in flight, if any."""
        if self._tick is not None and not self._tick.done():
            await asyncio.gather(self._tick, return_exceptions=True)

    async def stop(self) -> None:
        """Stop sampling and release the engine; collected evidence is kept."""
        if self._stopped:
            return
        self._stopped = True
        self._running = False
        for task in (self._loop_task, self._tick):
            if task is not None and not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
        await self.engine.stop()
        await self.frame_source.close()
        logger.info("Inspection %s stopped (%d hazards)", self.session_id, self.collector.hazard_count)

    async def finish(self) -> ComplianceAnalysis:
        """Stop, take the one snapshot and run the hand-off. Idempotent."""
        if self.analysis is not None:
            return self.analysis
        await self.stop()
        self.snapshot = self.collector.snapshot()
        self.analysis = await self.analyzer.analyze(self.snapshot)
        logger.info(
            "Inspection %s analyzed: risk=%s origin=%s",
            self.session_id, self.analysis.overall_risk_level, self.analysis.origin,
        )
        self._emit("analysis", self.analysis.model_dump(mode="json"))
        await self.flush()
        return self.analysis

    # ── Operator input ────────────────────────────────────

    def push_frame(self, image_b64: str) -> None:
        if not isinstance(self.frame_source, LatestFrameSource):
            logger.warning("Session %s samples its own frames; pushed frame ignored", self.session_id)
            return
        self.frame_source.push(image_b64)

    async def push_audio(self, chunk_b64: str) -> bool:
        return await self.engine.submit_audio(chunk_b64)

    async def ask(self, text: str) -> str | None:
        """Forward an operator question; the answer (if any) arrives as narration too."""
        self.collector.add_transcript("operator", text)
        return await self.engine.ask(text, self._last_frame)

    def confirm(self, text: str) -> None:
        self.collector.add_transcript("operator", text)
        self.collector.add_confirmation(text)

    def follow_up(self, question: str, answer: str | None = None) -> None:
        self.collector.add_follow_up(question, answer)
