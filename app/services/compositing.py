"""
Deterministic image operations for meme panels.

Everything here is pure: each function returns a new image and never touches
its inputs, so panels can be built concurrently from the same base photo.
Images cross the module boundary as Pillow RGBA images; blending is done on
numpy arrays.
"""

from __future__ import annotations

import base64
import logging
import math
from io import BytesIO

import cv2
import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from app.models.panels import BlendMode, Geometry

logger = logging.getLogger(__name__)

# Minimum gap between stitched panels, and the gap as a share of base width.
MIN_PANEL_GAP = 20
PANEL_GAP_RATIO = 0.02


class CompositingError(ValueError):
    """Base class for input errors that make a request impossible to render."""


class ImageDecodeError(CompositingError):
    """Raised when uploaded bytes are not a readable image."""


class ResizeError(CompositingError):
    """Raised when a template cannot be scaled to the requested size."""


def normalize_orientation(image: Image.Image) -> Image.Image:
    """
    Apply the EXIF orientation tag and return an RGBA copy.

    Phone photos are often stored sideways with a rotation tag; placement
    percentages are only meaningful on the upright image.
    """
    upright = ImageOps.exif_transpose(image)
    if upright is None:
        upright = image
    return upright.convert("RGBA")


def load_image(data: bytes) -> Image.Image:
    """Decode uploaded bytes into an upright RGBA image."""
    if not data:
        raise ImageDecodeError("Image upload is empty.")
    try:
        image = Image.open(BytesIO(data))
        image.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as exc:
        raise ImageDecodeError("Upload is not a readable image.") from exc
    return normalize_orientation(image)


def resize_template(template: Image.Image, target_width: int, target_height: int) -> Image.Image:
    """Scale a template to an exact size, keeping its alpha channel."""
    if target_width <= 0 or target_height <= 0:
        raise ResizeError(f"Invalid template target size {target_width}x{target_height}")

    rgba = np.array(template.convert("RGBA"))
    resized = cv2.resize(rgba, (target_width, target_height), interpolation=cv2.INTER_LANCZOS4)
    return Image.fromarray(resized)


def composite(
    base: Image.Image,
    template: Image.Image,
    geometry: Geometry,
    blend_mode: BlendMode,
) -> Image.Image:
    """
    Blend a resized template onto the base image at the geometry offset.

    The output always has the base image's size; parts of the template that
    fall outside the base are dropped.
    """
    result = np.array(base.convert("RGBA"), dtype=np.float32)
    base_height, base_width = result.shape[:2]

    overlap = geometry.clipped(base_width, base_height)
    if overlap is None:
        logger.info("Template at %s lies outside the %dx%d base; nothing to blend", geometry, base_width, base_height)
        return Image.fromarray(result.astype(np.uint8))

    x0, y0, x1, y1 = overlap
    overlay = np.asarray(template.convert("RGBA"), dtype=np.float32)
    # Offsets of the visible part inside the template itself.
    tx0 = x0 - geometry.left
    ty0 = y0 - geometry.top
    overlay = overlay[ty0:ty0 + (y1 - y0), tx0:tx0 + (x1 - x0)]

    region = result[y0:y1, x0:x1]
    alpha = overlay[:, :, 3:4] / 255.0
    overlay_rgb = overlay[:, :, :3]
    base_rgb = region[:, :, :3]

    if blend_mode == BlendMode.MULTIPLY:
        blended = base_rgb * overlay_rgb / 255.0
    else:
        blended = overlay_rgb

    region[:, :, :3] = blended * alpha + base_rgb * (1.0 - alpha)
    region[:, :, 3:4] = alpha * 255.0 + region[:, :, 3:4] * (1.0 - alpha)
    result[y0:y1, x0:x1] = region

    return Image.fromarray(np.clip(np.rint(result), 0, 255).astype(np.uint8))


def build_edit_mask(base_width: int, base_height: int, geometry: Geometry) -> Image.Image:
    """
    Build the touch-up mask for one panel.

    Opaque everywhere except a fully transparent rectangle at the geometry;
    edit services only repaint transparent pixels. The mask is always exactly
    the base image size.
    """
    mask = np.zeros((base_height, base_width, 4), dtype=np.uint8)
    mask[:, :, 3] = 255

    overlap = geometry.clipped(base_width, base_height)
    if overlap is None:
        logger.warning("Edit region %s lies outside the %dx%d base; mask has no hole", geometry, base_width, base_height)
    else:
        x0, y0, x1, y1 = overlap
        mask[y0:y1, x0:x1, 3] = 0

    return Image.fromarray(mask)


def panel_gap(base_width: int) -> int:
    return max(MIN_PANEL_GAP, math.floor(base_width * PANEL_GAP_RATIO))


def stitch_side_by_side(left: Image.Image, right: Image.Image, base_width: int, base_height: int) -> Image.Image:
    """Place two panels on one white canvas separated by a fixed gap."""
    gap = panel_gap(base_width)
    canvas = Image.new("RGBA", (2 * base_width + gap, base_height), (255, 255, 255, 255))
    canvas.alpha_composite(_fit_panel(left, base_width, base_height), (0, 0))
    canvas.alpha_composite(_fit_panel(right, base_width, base_height), (base_width + gap, 0))
    return canvas


def _fit_panel(panel: Image.Image, base_width: int, base_height: int) -> Image.Image:
    panel = panel.convert("RGBA")
    if panel.size != (base_width, base_height):
        # Panels are base-sized by construction; crop anything larger so the
        # right panel cannot spill over the canvas edge.
        panel = panel.crop((0, 0, base_width, base_height))
    return panel


def encode_png(image: Image.Image) -> bytes:
    buffer = BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def encode_png_base64(image: Image.Image) -> str:
    """Encode an image as base64 PNG for JSON responses."""
    return base64.b64encode(encode_png(image)).decode("utf-8")
