"""Vision analysis engines: streaming (live socket) and polling (request/response)."""

from __future__ import annotations

from sitescout.config import Settings, get_settings
from sitescout.engines.base import (
    AnalysisResult, CallbackObserver, EngineObserver, VisionAnalysisEngine,
)
from sitescout.engines.polling import PollingEngine
from sitescout.engines.streaming import ConnectionState, StreamingEngine

ENGINE_KINDS = ("streaming", "polling")


def create_engine(
    kind: str | None,
    observer: EngineObserver,
    settings: Settings | None = None,
    **kwargs,
) -> VisionAnalysisEngine:
    """Factory: build the engine selected for a session."""
    settings = settings or get_settings()
    kind = kind or settings.default_engine
    if kind == "streaming":
        return StreamingEngine(observer, settings.gemini_api_key, settings.streaming, **kwargs)
    if kind == "polling":
        return PollingEngine(observer, settings.gemini_api_key, settings.polling, **kwargs)
    raise ValueError(f"Unknown engine kind {kind!r}; expected one of {ENGINE_KINDS}")


__all__ = [
    "AnalysisResult", "CallbackObserver", "ConnectionState", "EngineObserver",
    "ENGINE_KINDS", "PollingEngine", "StreamingEngine", "VisionAnalysisEngine",
    "create_engine",
]
