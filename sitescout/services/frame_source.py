"""Frame sources: where the capture loop gets its next JPEG frame.

Frames are base64-encoded JPEG strings, the form both engines transmit.
"""

from __future__ import annotations

import asyncio
import base64
import io
import logging
from abc import ABC, abstractmethod
from pathlib import Path

import cv2
import numpy as np
from PIL import Image

from sitescout.config import CaptureConfig, get_settings

logger = logging.getLogger(__name__)

IMAGE_SUFFIXES = (".jpg", ".jpeg", ".png", ".webp", ".bmp")


class FrameSource(ABC):
    @abstractmethod
    async def capture(self) -> str | None:
        """Return the next frame, or None when nothing new is available."""
        ...

    def snapshot(self) -> str | None:
        """Higher-quality encoding of the last captured frame, when the source keeps one.

        Encoded alongside the frame in capture(), so this never touches the image.
        """
        return None

    async def close(self) -> None:
        return None


# ── Client-pushed frames ──────────────────────────────────

class LatestFrameSource(FrameSource):
    """Holds the most recent frame pushed by a client.

    Each pushed frame is returned by ``capture()`` at most once.
    """

    def __init__(self):
        self._frame: str | None = None

    def push(self, image_b64: str) -> None:
        self._frame = image_b64

    async def capture(self) -> str | None:
        frame, self._frame = self._frame, None
        return frame


# ── Image directory (simulation) ──────────────────────────

def encode_jpeg(img: Image.Image, max_width: int, quality: int) -> str:
    """Downscale to max_width and re-encode as base64 JPEG."""
    if img.mode != "RGB":
        img = img.convert("RGB")
    if img.width > max_width:
        height = round(img.height * max_width / img.width)
        img = img.resize((max_width, height))
    buf = io.BytesIO()
    img.save(buf, "JPEG", quality=quality)
    return base64.b64encode(buf.getvalue()).decode("ascii")


class DirectoryFrameSource(FrameSource):
    """Iterates the images of a directory in name order, once."""

    def __init__(self, directory: str | Path, config: CaptureConfig | None = None):
        self.config = config or get_settings().capture
        self.directory = Path(directory)
        if not self.directory.is_dir():
            raise FileNotFoundError(f"Frame directory not found: {self.directory}")
        self._paths = sorted(
            p for p in self.directory.iterdir() if p.suffix.lower() in IMAGE_SUFFIXES
        )
        self._index = 0
        self._snapshot: str | None = None
        logger.info("Loaded %d frames from %s", len(self._paths), self.directory)

    def __len__(self) -> int:
        return len(self._paths)

    @property
    def exhausted(self) -> bool:
        return self._index >= len(self._paths)

    def _load(self, path: Path) -> tuple[str, str]:
        cfg = self.config
        with Image.open(path) as img:
            return (
                encode_jpeg(img, cfg.max_width, cfg.jpeg_quality),
                encode_jpeg(img, cfg.max_width, cfg.snapshot_quality),
            )

    async def capture(self) -> str | None:
        if self.exhausted:
            return None
        path = self._paths[self._index]
        self._index += 1
        frame, self._snapshot = await asyncio.to_thread(self._load, path)
        return frame

    def snapshot(self) -> str | None:
        return self._snapshot


# ── Camera device ─────────────────────────────────────────

def encode_frame(frame: np.ndarray, max_width: int, quality: int) -> str:
    """Downscale a BGR frame to max_width and JPEG-encode it as base64."""
    height, width = frame.shape[:2]
    if width > max_width:
        frame = cv2.resize(frame, (max_width, round(height * max_width / width)))
    ok, buf = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), quality])
    if not ok:
        raise ValueError("JPEG encoding failed")
    return base64.b64encode(buf.tobytes()).decode("ascii")


class CameraFrameSource(FrameSource):
    """Samples an OpenCV capture device."""

    def __init__(self, device: int | str = 0, config: CaptureConfig | None = None):
        self.config = config or get_settings().capture
        self.device = device
        self._cap: cv2.VideoCapture | None = None
        self._snapshot: str | None = None

    def _read(self) -> tuple[str, str] | None:
        if self._cap is None:
            self._cap = cv2.VideoCapture(self.device)
            if not self._cap.isOpened():
                raise RuntimeError(f"Cannot open camera device {self.device!r}")
        ok, frame = self._cap.read()
        if not ok:
            logger.debug("Camera returned no frame")
            return None
        cfg = self.config
        return (
            encode_frame(frame, cfg.max_width, cfg.jpeg_quality),
            encode_frame(frame, cfg.max_width, cfg.snapshot_quality),
        )

    async def capture(self) -> str | None:
        encoded = await asyncio.to_thread(self._read)
        if encoded is None:
            return None
        frame, self._snapshot = encoded
        return frame

    def snapshot(self) -> str | None:
        return self._snapshot

    async def close(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None
