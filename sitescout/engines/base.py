"""Vision analysis engine interface and the observer capability set it reports to."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Protocol

from sitescout.schemas import HazardEvent


class EngineObserver(Protocol):
    """Callbacks an engine delivers events to, injected at construction.

    Callbacks run on the event loop and must not block.
    """

    def on_text(self, text: str) -> None: ...

    def on_audio(self, audio: bytes) -> None: ...

    def on_finding(self, finding: HazardEvent) -> None: ...

    def on_connection_change(self, connected: bool) -> None: ...

    def on_error(self, error: Exception) -> None: ...


def _noop(*args) -> None:
    return None


@dataclass
class CallbackObserver:
    """EngineObserver assembled from plain callables; unset events are ignored."""

    text: Callable[[str], None] = _noop
    audio: Callable[[bytes], None] = _noop
    finding: Callable[[HazardEvent], None] = _noop
    connection: Callable[[bool], None] = _noop
    error: Callable[[Exception], None] = _noop
    turn_complete: Callable[[], None] = _noop

    def on_text(self, text: str) -> None:
        self.text(text)

    def on_audio(self, audio: bytes) -> None:
        self.audio(audio)

    def on_finding(self, finding: HazardEvent) -> None:
        self.finding(finding)

    def on_connection_change(self, connected: bool) -> None:
        self.connection(connected)

    def on_error(self, error: Exception) -> None:
        self.error(error)

    def on_turn_complete(self) -> None:
        self.turn_complete()


@dataclass
class AnalysisResult:
    text: str = ""
    finding: HazardEvent | None = None


class VisionAnalysisEngine(ABC):
    """Turns sampled frames and operator questions into narration and hazard events."""

    kind: str = ""

    @property
    @abstractmethod
    def is_ready(self) -> bool:
        """True when a submitted frame would be analyzed rather than dropped."""
        ...

    @abstractmethod
    async def start(self) -> None:
        """Open the session. Returns once frames may be submitted."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """End the session and release the backend connection."""
        ...

    @abstractmethod
    async def submit_frame(self, image_b64: str) -> bool:
        """Submit one JPEG frame. Returns False when the frame was dropped."""
        ...

    @abstractmethod
    async def submit_audio(self, chunk_b64: str) -> bool:
        """Submit one PCM audio chunk. Returns False when the chunk was dropped."""
        ...

    @abstractmethod
    async def ask(self, text: str, image_b64: str | None = None) -> str | None:
        """Send an operator question.

        Request/response engines return the answer; streaming engines
        return None and deliver the answer through ``on_text``.
        """
        ...
