from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from PIL import Image


class PlacementMode(str, Enum):
    """How the template sits on the photo; selects geometry and blend."""

    # Small, lower-right quadrant, as if held in a hand.
    HOLD = "hold"
    # Larger, upper-left of center, as if worn on the face.
    WEAR = "wear"


class BlendMode(str, Enum):
    NORMAL = "normal"
    MULTIPLY = "multiply"


BLEND_FOR_MODE: dict[PlacementMode, BlendMode] = {
    PlacementMode.HOLD: BlendMode.NORMAL,
    PlacementMode.WEAR: BlendMode.MULTIPLY,
}


class Provenance(str, Enum):
    """Where a panel image came from. Used for logging only."""

    DETERMINISTIC = "deterministic"
    TOUCHED_UP = "touched-up"


@dataclass(frozen=True, slots=True)
class Geometry:
    """
    Target size and top-left offset of the template on the base image, in pixels.

    The rectangle may extend past the base image for extreme aspect ratios;
    compositing and masking clip it silently.
    """

    width: int
    height: int
    left: int
    top: int

    @property
    def right(self) -> int:
        return self.left + self.width

    @property
    def bottom(self) -> int:
        return self.top + self.height

    def clipped(self, base_width: int, base_height: int) -> tuple[int, int, int, int] | None:
        """Return the (x0, y0, x1, y1) overlap with the base canvas, or None if empty."""
        x0 = max(self.left, 0)
        y0 = max(self.top, 0)
        x1 = min(self.right, base_width)
        y1 = min(self.bottom, base_height)
        if x0 >= x1 or y0 >= y1:
            return None
        return x0, y0, x1, y1


@dataclass(frozen=True, slots=True)
class PlacementConstants:
    """Placement of a template as fractions of the base image size."""

    width_ratio: float
    left_ratio: float
    top_ratio: float


@dataclass(slots=True)
class PanelSpec:
    """One template to place on the base photo, with its touch-up prompt."""

    template: Image.Image
    prompt: str
    mode: PlacementMode = PlacementMode.HOLD
    label: str = "panel"


@dataclass(slots=True)
class DualPanelRequest:
    """
    A two-panel generation request.

    The left panel is conventionally the held job application and the right
    panel the worn face mask, but each side carries its own mode.
    """

    base: Image.Image
    left: PanelSpec
    right: PanelSpec
    # Optional size hint forwarded to the touch-up service, e.g. "1024x1024".
    size: str | None = None


@dataclass(slots=True)
class PanelResult:
    """Output of one panel plus how it was produced."""

    image: Image.Image
    provenance: Provenance
    geometry: Geometry
    # Reason the touch-up was not used, when one was attempted.
    touchup_error: str | None = None
