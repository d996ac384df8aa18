"""Tests for template placement geometry."""

import pytest

from app.models.panels import Geometry, PlacementConstants, PlacementMode
from app.services.geometry import DEFAULT_PLACEMENTS, GeometryError, resolve


def test_hold_placement_on_reference_photo():
    geometry = resolve(1000, 800, 200, 100, PlacementMode.HOLD)

    assert geometry == Geometry(width=150, height=75, left=600, top=320)


def test_wear_placement_on_reference_photo():
    geometry = resolve(1000, 800, 200, 100, PlacementMode.WEAR)

    assert geometry == Geometry(width=300, height=150, left=350, top=160)


def test_mode_accepts_plain_string():
    assert resolve(1000, 800, 200, 100, "wear") == resolve(1000, 800, 200, 100, PlacementMode.WEAR)


def test_resolve_is_pure():
    results = {resolve(1234, 567, 89, 101, mode) for mode in PlacementMode for _ in range(5)}

    assert len(results) == len(PlacementMode)


def test_placement_scales_with_base_not_template():
    small = resolve(500, 400, 200, 100, PlacementMode.HOLD)
    large = resolve(1000, 800, 200, 100, PlacementMode.HOLD)

    assert (large.width, large.left, large.top) == (2 * small.width, 2 * small.left, 2 * small.top)


def test_height_follows_template_aspect_ratio():
    geometry = resolve(1000, 800, 100, 300, PlacementMode.HOLD)

    assert geometry.width == 150
    assert geometry.height == 450


def test_float_noise_does_not_lose_a_pixel():
    custom = {PlacementMode.HOLD: PlacementConstants(width_ratio=0.29, left_ratio=0.0, top_ratio=0.0)}

    assert resolve(100, 100, 10, 10, PlacementMode.HOLD, custom).width == 29


def test_overflowing_placement_is_not_an_error():
    geometry = resolve(1000, 800, 10, 1000, PlacementMode.HOLD)

    assert geometry.top + geometry.height > 800


@pytest.mark.parametrize(
    "template_size",
    [(0, 100), (100, 0), (-5, 100), (100, -1)],
)
def test_invalid_template_size_raises(template_size):
    with pytest.raises(GeometryError):
        resolve(1000, 800, *template_size, PlacementMode.HOLD)


def test_invalid_base_size_raises():
    with pytest.raises(GeometryError):
        resolve(0, 800, 200, 100, PlacementMode.WEAR)


def test_missing_mode_constants_raise():
    only_hold = {PlacementMode.HOLD: DEFAULT_PLACEMENTS[PlacementMode.HOLD]}

    with pytest.raises(GeometryError):
        resolve(1000, 800, 200, 100, PlacementMode.WEAR, only_hold)


def test_clipped_overlap():
    geometry = Geometry(width=50, height=50, left=180, top=-10)

    assert geometry.clipped(200, 160) == (180, 0, 200, 40)
    assert Geometry(width=10, height=10, left=300, top=0).clipped(200, 160) is None
