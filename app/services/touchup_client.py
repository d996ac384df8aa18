"""
HTTP client for the generative touch-up pass.

Sends the deterministic composite plus an edit mask to the OpenAI image edit
endpoint and asks for the masked region to be repainted. The client never
raises to its caller: every outcome is a `TouchUpResult`, and callers fall
back to the deterministic composite whenever `result.ok` is false.

All calls go through the shared rate limiter:
- acquire a token before each request
- report 429s so later requests back off
- report successes to restore capacity
"""

from __future__ import annotations

import base64
import logging
import time
from dataclasses import dataclass
from io import BytesIO
from typing import Optional

import requests
from PIL import Image, UnidentifiedImageError

from app.config import Settings
from app.services.rate_limiter import TouchUpRateLimiter

logger = logging.getLogger(__name__)

RETRY_DELAY = 1.0  # seconds
RETRY_BACKOFF = 2  # exponential backoff multiplier

# Square canvases accepted by the image edit endpoint.
SUPPORTED_EDIT_SIDES = (256, 512, 1024)
DEFAULT_EDIT_SIDE = 1024
OPAQUE_BLACK = (0, 0, 0, 255)


@dataclass(frozen=True, slots=True)
class TouchUpError:
    """Why a touch-up attempt produced no usable image."""

    reason: str
    status_code: int | None = None
    retryable: bool = False

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"{self.reason} (HTTP {self.status_code})"
        return self.reason


@dataclass(frozen=True, slots=True)
class TouchUpResult:
    """Either an edited image or the error that prevented one."""

    image: Optional[Image.Image] = None
    error: Optional[TouchUpError] = None

    @property
    def ok(self) -> bool:
        return self.image is not None and self.error is None

    @classmethod
    def success(cls, image: Image.Image) -> "TouchUpResult":
        return cls(image=image)

    @classmethod
    def failure(cls, reason: str, status_code: int | None = None, retryable: bool = False) -> "TouchUpResult":
        return cls(error=TouchUpError(reason=reason, status_code=status_code, retryable=retryable))


class TouchUpClient:
    """
    Image edit client for the touch-up capability.

    Construct it with the process Settings; without an API key the client is
    inert and `is_available()` is False.
    """

    def __init__(self, settings: Settings, rate_limiter: TouchUpRateLimiter | None = None):
        self.settings = settings
        self.api_key = settings.openai_api_key
        self.base_url = settings.touchup_base_url
        self.model = settings.touchup_model
        self.rate_limiter = rate_limiter or TouchUpRateLimiter(
            requests_per_minute=settings.touchup_requests_per_minute,
            burst_capacity=settings.touchup_burst,
        )

        if not self.api_key:
            logger.warning("OPENAI_API_KEY not set. Touch-up disabled; deterministic composites only.")
            self.available = False
            return

        self.available = True
        logger.info("Touch-up client initialized (model: %s, key: %s...)", self.model, self.api_key[:7])

    def is_available(self) -> bool:
        """Check if the client has a credential to call the edit API."""
        return self.available and self.api_key is not None

    def edit(self, image: Image.Image, mask: Image.Image, prompt: str, size: str | None = None) -> TouchUpResult:
        """
        Repaint the transparent region of `mask` on `image` according to `prompt`.

        The edit model only works on square canvases, so the image and mask are
        scaled to fit a `size` square and padded; the padding is opaque in the
        mask and never edited. The reply is cropped back to the content box and
        scaled to the input dimensions, so a successful result always has
        exactly the size of `image`.

        Args:
            image: Deterministic composite (RGBA)
            mask: Edit mask of the same size; alpha 0 marks editable pixels
            prompt: Instruction for the edit model
            size: Square size string, e.g. "1024x1024"; defaults to settings
        """
        if not self.is_available():
            return TouchUpResult.failure("touch-up not configured")

        if image.size != mask.size:
            return TouchUpResult.failure(f"image {image.size} and mask {mask.size} differ in size")

        side = self._edit_side(size)
        square_image, content_box = _pad_to_square(image.convert("RGBA"), side, OPAQUE_BLACK, Image.Resampling.LANCZOS)
        square_mask, _ = _pad_to_square(mask.convert("RGBA"), side, OPAQUE_BLACK, Image.Resampling.NEAREST)
        edit_size = f"{side}x{side}"

        deadline = time.monotonic() + self.settings.touchup_timeout
        if not self.rate_limiter.acquire(timeout=self.settings.touchup_timeout):
            logger.warning("Touch-up rate limiter timeout - using deterministic composite")
            return TouchUpResult.failure("rate limiter timeout")

        max_attempts = self.settings.touchup_max_retries + 1
        result = TouchUpResult.failure("no attempt made")
        for attempt in range(max_attempts):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return TouchUpResult.failure("touch-up timed out")

            result = self._attempt_edit(square_image, square_mask, prompt, edit_size, attempt, timeout=remaining)
            if result.ok:
                self.rate_limiter.report_success()
                return TouchUpResult.success(_crop_from_square(result.image, content_box, image.size))

            error = result.error
            if error.status_code == 429:
                # The limiter owns backoff for 429s; retrying here would make it worse.
                self.rate_limiter.report_429()
                return result
            if not error.retryable or attempt == max_attempts - 1:
                return result

            delay = RETRY_DELAY * (RETRY_BACKOFF ** attempt)
            logger.warning(
                "Touch-up attempt %d/%d failed (%s) - retrying in %.1fs",
                attempt + 1,
                max_attempts,
                error,
                delay,
            )
            time.sleep(min(delay, max(deadline - time.monotonic(), 0.0)))

        return result

    def _edit_side(self, size: str | None) -> int:
        """Pick the square side for a request, falling back to the configured size."""
        for candidate in (size, self.settings.touchup_size):
            side = _parse_square(candidate)
            if side is not None:
                return side
            if candidate:
                logger.warning("Unsupported touch-up size %r; expected one of %s", candidate, SUPPORTED_EDIT_SIDES)
        return DEFAULT_EDIT_SIDE

    def _attempt_edit(
        self,
        image: Image.Image,
        mask: Image.Image,
        prompt: str,
        size: str,
        attempt: int,
        timeout: float,
    ) -> TouchUpResult:
        """Single request to the edit endpoint (used by the retry loop)."""
        attempt_suffix = f" (attempt {attempt + 1})" if attempt > 0 else ""
        logger.info(
            "Calling touch-up API%s - model: %s, image: %dx%d, size: %s",
            attempt_suffix,
            self.model,
            image.size[0],
            image.size[1],
            size,
        )

        headers = {"Authorization": f"Bearer {self.api_key}"}
        files = {
            "image": ("image.png", self._image_to_png(image), "image/png"),
            "mask": ("mask.png", self._image_to_png(mask), "image/png"),
        }
        data = {
            "model": self.model,
            "prompt": prompt,
            "n": "1",
            "size": size,
            "response_format": "b64_json",
        }

        try:
            response = requests.post(
                f"{self.base_url}/images/edits",
                headers=headers,
                files=files,
                data=data,
                timeout=timeout,
            )
        except requests.exceptions.Timeout:
            return TouchUpResult.failure("request timed out", retryable=True)
        except requests.exceptions.RequestException as exc:
            return TouchUpResult.failure(f"request failed: {exc}", retryable=True)

        if response.status_code == 429:
            return TouchUpResult.failure("rate limited", status_code=429)
        if response.status_code == 401:
            logger.error("Touch-up API rejected the API key (401)")
            return TouchUpResult.failure("invalid API key", status_code=401)
        if 400 <= response.status_code < 500:
            return TouchUpResult.failure(
                f"client error: {self._error_detail(response)}", status_code=response.status_code
            )
        if response.status_code >= 500:
            return TouchUpResult.failure(
                f"server error: {self._error_detail(response)}",
                status_code=response.status_code,
                retryable=True,
            )

        try:
            payload = response.json()
            b64_data = payload["data"][0]["b64_json"]
        except (ValueError, KeyError, IndexError, TypeError):
            return TouchUpResult.failure("malformed response: missing data[0].b64_json")
        if not b64_data:
            return TouchUpResult.failure("malformed response: empty b64_json")

        try:
            edited = Image.open(BytesIO(base64.b64decode(b64_data)))
            edited.load()
        except (ValueError, UnidentifiedImageError, OSError):
            return TouchUpResult.failure("malformed response: undecodable image")

        if edited.size != image.size:
            return TouchUpResult.failure(
                f"edited image is {edited.size[0]}x{edited.size[1]}, expected {image.size[0]}x{image.size[1]}"
            )

        logger.info("Touch-up API call succeeded")
        return TouchUpResult.success(edited.convert("RGBA"))

    def _image_to_png(self, pil_image: Image.Image) -> bytes:
        buffer = BytesIO()
        pil_image.save(buffer, format="PNG")
        return buffer.getvalue()

    def _error_detail(self, response: requests.Response) -> str:
        try:
            body = response.json()
            return str(body.get("error", {}).get("message") or body)
        except (ValueError, AttributeError):
            return response.text[:200]


def _parse_square(size: str | None) -> int | None:
    if not size:
        return None
    width, sep, height = size.strip().lower().partition("x")
    if not sep or width != height or not width.isdigit():
        return None
    side = int(width)
    return side if side in SUPPORTED_EDIT_SIDES else None


def _pad_to_square(
    image: Image.Image,
    side: int,
    fill: tuple[int, int, int, int],
    resample: Image.Resampling,
) -> tuple[Image.Image, tuple[int, int, int, int]]:
    """Scale `image` to fit a `side` square and center it; returns the canvas and content box."""
    scale = side / max(image.width, image.height)
    fitted_w = min(side, max(1, round(image.width * scale)))
    fitted_h = min(side, max(1, round(image.height * scale)))
    left = (side - fitted_w) // 2
    top = (side - fitted_h) // 2

    canvas = Image.new("RGBA", (side, side), fill)
    canvas.paste(image.resize((fitted_w, fitted_h), resample), (left, top))
    return canvas, (left, top, left + fitted_w, top + fitted_h)


def _crop_from_square(
    edited: Image.Image,
    content_box: tuple[int, int, int, int],
    size: tuple[int, int],
) -> Image.Image:
    """Undo `_pad_to_square`: cut out the content box and scale it to `size`."""
    content = edited.crop(content_box)
    if content.size == size:
        return content
    return content.resize(size, Image.Resampling.LANCZOS)
