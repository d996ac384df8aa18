"""
Placement geometry for templates on a base photo.

Positions and sizes are fixed fractions of the base image, so the same photo
at a different resolution gets the same relative placement. There is no face
or hand detection; the percentages are heuristics tuned by eye.
"""

from __future__ import annotations

import math
from typing import Mapping

from app.models.panels import Geometry, PlacementConstants, PlacementMode
from app.services.compositing import CompositingError


class GeometryError(CompositingError):
    """Raised when no valid placement can be computed for the given images."""


def _floor(value: float) -> int:
    # 0.29 * 100 == 28.999999999999996
    return math.floor(value + 1e-9)


DEFAULT_PLACEMENTS: dict[PlacementMode, PlacementConstants] = {
    # Application form held in the lower-right quadrant.
    PlacementMode.HOLD: PlacementConstants(width_ratio=0.15, left_ratio=0.60, top_ratio=0.40),
    # Face mask over the upper-left-of-center area.
    PlacementMode.WEAR: PlacementConstants(width_ratio=0.30, left_ratio=0.35, top_ratio=0.20),
}


def resolve(
    base_width: int,
    base_height: int,
    template_width: int,
    template_height: int,
    mode: PlacementMode,
    placements: Mapping[PlacementMode, PlacementConstants] | None = None,
) -> Geometry:
    """
    Compute the template size and offset for a base image.

    Width and offset come from the mode's ratios applied to the base image;
    height follows the template's own aspect ratio. The result may overflow
    the base image, which callers accept.
    """
    if base_width <= 0 or base_height <= 0:
        raise GeometryError(f"Invalid base image size {base_width}x{base_height}")
    if template_width <= 0 or template_height <= 0:
        raise GeometryError(f"Invalid template size {template_width}x{template_height}")

    placements = placements or DEFAULT_PLACEMENTS
    try:
        constants = placements[PlacementMode(mode)]
    except (KeyError, ValueError) as exc:
        raise GeometryError(f"No placement configured for mode {mode!r}") from exc

    width = _floor(base_width * constants.width_ratio)
    height = _floor(width * template_height / template_width)
    left = _floor(base_width * constants.left_ratio)
    top = _floor(base_height * constants.top_ratio)
    return Geometry(width=width, height=height, left=left, top=top)
