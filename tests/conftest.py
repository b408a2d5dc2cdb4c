import asyncio
import io

import pytest
from PIL import Image

from agroscan.config import Settings
from agroscan.store import InMemoryImageStore
from agroscan.vision import VisionClient


class FakeVisionClient(VisionClient):
    """Returns a canned reply, raises, or blocks until released."""

    def __init__(self, reply: str = "", error: Exception = None, delay: float = 0.0):
        self.reply = reply
        self.error = error
        self.delay = delay
        self.calls = []

    async def analyze(self, image_bytes: bytes, mime_type: str) -> str:
        self.calls.append((len(image_bytes), mime_type))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply


GOOD_REPLY = (
    "```json\n"
    '{"totalArea": 100, "items": ['
    '{"label": "crop", "confidence": 91, "box_2d": [0, 0, 500, 1000]},'
    '{"label": "Weed patch", "confidence": 77, "box_2d": [500, 0, 600, 1000]}'
    '], "recommendations": ["Spot spray the lower rows"]}\n'
    "```"
)


@pytest.fixture
def png_bytes():
    buf = io.BytesIO()
    Image.new("RGB", (40, 20), (30, 120, 30)).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def store():
    return InMemoryImageStore()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        upload_dir=str(tmp_path / "uploads"),
        store_backend="memory",
        analysis_timeout_seconds=2.0,
    )


@pytest.fixture
def stored_image(tmp_path, png_bytes):
    path = tmp_path / "field.png"
    path.write_bytes(png_bytes)
    return str(path)
