"""
Shared fixtures for the meme API tests.

Images are small solid-color canvases so pixel values are easy to predict.
"""

from io import BytesIO

import pytest
from PIL import Image

from app.config import Settings


def png_bytes(image: Image.Image) -> bytes:
    buffer = BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def base_image():
    """A 200x160 opaque blue photo stand-in."""
    return Image.new("RGBA", (200, 160), (0, 0, 255, 255))


@pytest.fixture
def template_image():
    """A 40x20 opaque red template (2:1 like the application form)."""
    return Image.new("RGBA", (40, 20), (255, 0, 0, 255))


@pytest.fixture
def offline_settings():
    """Settings without a touch-up credential."""
    return Settings(openai_api_key=None)


@pytest.fixture
def online_settings():
    """Settings with a fake credential and short timeouts."""
    return Settings(openai_api_key="sk-test-key", touchup_timeout=2.0, touchup_max_retries=1)
