import base64
import io

import numpy as np
import pytest
from PIL import Image

from sitescout.config import CaptureConfig
from sitescout.services import frame_source
from sitescout.services.frame_source import (
    CameraFrameSource,
    DirectoryFrameSource,
    LatestFrameSource,
    encode_frame,
    encode_jpeg,
)


def _decode(b64: str) -> Image.Image:
    return Image.open(io.BytesIO(base64.b64decode(b64)))


async def test_latest_frame_returned_once():
    source = LatestFrameSource()
    assert await source.capture() is None
    source.push("first")
    source.push("second")
    assert await source.capture() == "second"
    assert await source.capture() is None


def test_encode_jpeg_downscales_wide_images():
    img = Image.new("RGB", (2000, 1000), color=(200, 10, 10))
    out = _decode(encode_jpeg(img, max_width=1000, quality=50))
    assert out.format == "JPEG"
    assert out.size == (1000, 500)


def test_encode_jpeg_keeps_small_images_and_converts_mode():
    img = Image.new("RGBA", (320, 240))
    out = _decode(encode_jpeg(img, max_width=1280, quality=50))
    assert out.size == (320, 240)
    assert out.mode == "RGB"


def test_encode_frame_from_bgr_array():
    frame = np.random.randint(0, 255, (480, 1920, 3), dtype=np.uint8)
    out = _decode(encode_frame(frame, max_width=960, quality=60))
    assert out.size == (960, 240)


async def test_directory_source_iterates_images_in_order(tmp_path):
    for name, color in (("b.png", (0, 255, 0)), ("a.jpg", (255, 0, 0))):
        Image.new("RGB", (64, 48), color=color).save(tmp_path / name)
    (tmp_path / "notes.txt").write_text("not an image")

    source = DirectoryFrameSource(tmp_path, CaptureConfig(max_width=32))
    assert len(source) == 2

    first = _decode(await source.capture())
    assert first.size == (32, 24)
    r, g, b = first.convert("RGB").getpixel((16, 12))
    assert r > 200 and g < 60  # a.jpg comes first

    assert await source.capture() is not None
    assert source.exhausted
    assert await source.capture() is None


def test_directory_source_missing_dir(tmp_path):
    with pytest.raises(FileNotFoundError):
        DirectoryFrameSource(tmp_path / "nope", CaptureConfig())


async def test_directory_source_snapshot_uses_snapshot_quality(tmp_path):
    noisy = np.random.randint(0, 255, (120, 160, 3), dtype=np.uint8)
    Image.fromarray(noisy).save(tmp_path / "frame.png")
    source = DirectoryFrameSource(tmp_path, CaptureConfig(jpeg_quality=20, snapshot_quality=95))
    assert source.snapshot() is None

    frame = await source.capture()
    snapshot = source.snapshot()
    assert _decode(snapshot).size == (160, 120)
    assert len(snapshot) > len(frame)


async def test_pushed_frames_have_no_snapshot():
    source = LatestFrameSource()
    source.push("aW1n")
    await source.capture()
    assert source.snapshot() is None


async def test_directory_snapshot_is_encoded_at_capture_time(tmp_path):
    path = tmp_path / "frame.png"
    Image.new("RGB", (64, 48), color=(0, 0, 255)).save(path)
    source = DirectoryFrameSource(tmp_path, CaptureConfig())
    await source.capture()

    path.unlink()
    assert _decode(source.snapshot()).size == (64, 48)


class FakeCapture:
    instances: list["FakeCapture"] = []

    def __init__(self, device, frames=None, opened=True):
        self.device = device
        self.opened = opened
        self.frames = list(frames or [])
        self.released = False
        FakeCapture.instances.append(self)

    def isOpened(self):
        return self.opened

    def read(self):
        if not self.frames:
            return False, None
        return True, self.frames.pop(0)

    def release(self):
        self.released = True


@pytest.fixture
def fake_capture(monkeypatch):
    FakeCapture.instances = []
    frames = [np.full((480, 1920, 3), 128, dtype=np.uint8)]
    monkeypatch.setattr(frame_source.cv2, "VideoCapture", lambda device: FakeCapture(device, frames))
    return FakeCapture


async def test_camera_source_reads_and_releases(fake_capture):
    source = CameraFrameSource(2, CaptureConfig(max_width=960))
    assert source.snapshot() is None

    frame = await source.capture()
    assert _decode(frame).size == (960, 240)
    assert _decode(source.snapshot()).size == (960, 240)
    assert fake_capture.instances[0].device == 2

    assert await source.capture() is None  # device ran dry
    await source.close()
    assert fake_capture.instances[0].released


async def test_camera_source_unopenable_device(monkeypatch):
    monkeypatch.setattr(frame_source.cv2, "VideoCapture",
                        lambda device: FakeCapture(device, opened=False))
    source = CameraFrameSource("rtsp://nowhere", CaptureConfig())
    with pytest.raises(RuntimeError):
        await source.capture()
