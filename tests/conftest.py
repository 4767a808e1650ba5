"""Pytest configuration and fixtures for cardflo tests."""
import io
import threading
from datetime import datetime

import pytest
from PIL import Image

from cardflo.api.schemas import DetectionResult
from cardflo.core.errors import CameraError
from cardflo.core.models import ContactRecord
from cardflo.storage.database import RecordStore

FRAME_SIZE = (640, 480)


class FakeVideoSource:
    """Video source yielding solid-color Pillow frames."""

    def __init__(self, size=FRAME_SIZE, fail_open=False):
        self.size = size
        self.fail_open = fail_open
        self.opened = False
        self.open_count = 0
        self.release_count = 0
        self.read_count = 0

    def open(self):
        if self.fail_open:
            raise CameraError("camera unavailable")
        self.opened = True
        self.open_count += 1

    def read(self):
        self.read_count += 1
        shade = (self.read_count * 20) % 255
        return Image.new("RGB", self.size, (shade, 120, 200))

    def release(self):
        if self.opened:
            self.release_count += 1
        self.opened = False

    def is_open(self):
        return self.opened


class ScriptedClassifier:
    """Plays back detection verdicts; entries may be exceptions to raise."""

    def __init__(self, script):
        self.script = list(script)
        self.calls = 0

    def classify(self, image_bytes):
        index = min(self.calls, len(self.script) - 1)
        self.calls += 1
        step = self.script[index]
        if isinstance(step, Exception):
            raise step
        present, steady = step
        return DetectionResult(card_present=present, is_steady=steady)


class SlowClassifier:
    """Blocks inside classify until released."""

    def __init__(self, verdict=(True, False)):
        self.verdict = verdict
        self.release = threading.Event()
        self.calls = 0

    def classify(self, image_bytes):
        self.calls += 1
        self.release.wait(timeout=5)
        present, steady = self.verdict
        return DetectionResult(card_present=present, is_steady=steady)


@pytest.fixture
def store(tmp_path):
    """Record store backed by a temporary SQLite file."""
    return RecordStore(tmp_path / "cardflo.db")


@pytest.fixture
def video_source():
    return FakeVideoSource()


@pytest.fixture
def now():
    return datetime(2026, 3, 15, 12, 0, 0)


@pytest.fixture
def card_jpeg():
    """A 1000x600 JPEG with a dark 'logo' block in the top-left corner."""
    img = Image.new("RGB", (1000, 600), (255, 255, 255))
    img.paste((10, 10, 10), (100, 60, 300, 180))
    buffer = io.BytesIO()
    img.save(buffer, format="JPEG", quality=90)
    return buffer.getvalue()


@pytest.fixture
def add_contact(store):
    """Factory storing a contact for an owner."""
    def _add(owner_id="owner-1", **fields):
        return store.add_contact(ContactRecord(owner_id=owner_id, **fields))
    return _add
