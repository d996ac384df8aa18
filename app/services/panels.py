"""
Panel rendering: deterministic composite plus optional touch-up.

The deterministic composite is always a complete answer. The touch-up pass
is layered on top of it and any failure there (timeout, cancellation, bad
response) silently falls back to the composite.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Mapping
from uuid import uuid4

from PIL import Image

from app.config import Settings
from app.models.panels import (
    BLEND_FOR_MODE,
    DualPanelRequest,
    Geometry,
    PanelResult,
    PanelSpec,
    PlacementConstants,
    PlacementMode,
    Provenance,
)
from app.services import geometry as geometry_resolver
from app.services.compositing import (
    build_edit_mask,
    composite,
    normalize_orientation,
    resize_template,
    stitch_side_by_side,
)
from app.services.touchup_client import TouchUpClient, TouchUpResult

logger = logging.getLogger(__name__)

DEFAULT_HOLD_PROMPT = (
    "Blend edges subtly, add natural shadows and lighting. "
    "Don't change the content, just improve the integration."
)
DEFAULT_WEAR_PROMPT = (
    "Blend this face mask naturally with the person's face. "
    "Make it look like they're wearing the mask. Don't change anything else."
)


def default_prompt(mode: PlacementMode) -> str:
    return DEFAULT_WEAR_PROMPT if mode == PlacementMode.WEAR else DEFAULT_HOLD_PROMPT


class PanelProcessor:
    """
    Renders one (base, template, prompt, mode) panel.

    The touch-up client is optional; without one (or without a credential)
    panels are purely deterministic.
    """

    def __init__(
        self,
        settings: Settings,
        touchup_client: TouchUpClient | None = None,
        placements: Mapping[PlacementMode, PlacementConstants] | None = None,
    ) -> None:
        self._settings = settings
        self._touchup = touchup_client
        self._placements = placements or geometry_resolver.DEFAULT_PLACEMENTS

    @property
    def touchup_enabled(self) -> bool:
        return self._touchup is not None and self._touchup.is_available()

    def render_deterministic(
        self,
        base: Image.Image,
        template: Image.Image,
        mode: PlacementMode,
    ) -> tuple[Image.Image, Geometry]:
        """Resolve geometry, resize the template and blend it onto the base."""
        base = normalize_orientation(base)
        mode = PlacementMode(mode)
        geometry = geometry_resolver.resolve(
            base.width,
            base.height,
            template.width,
            template.height,
            mode,
            self._placements,
        )
        resized = resize_template(template, geometry.width, geometry.height)
        return composite(base, resized, geometry, BLEND_FOR_MODE[mode]), geometry

    async def run(
        self,
        base: Image.Image,
        template: Image.Image,
        prompt: str,
        mode: PlacementMode,
        size: str | None = None,
        cancel_event: asyncio.Event | None = None,
        label: str = "panel",
    ) -> PanelResult:
        """
        Render a panel and report how it was produced.

        Raises GeometryError/ResizeError for unusable inputs; never raises for
        touch-up problems.
        """
        composite_image, geometry = await asyncio.to_thread(self.render_deterministic, base, template, mode)

        if not self.touchup_enabled:
            logger.info("[%s] touch-up not configured; returning deterministic composite", label)
            return PanelResult(image=composite_image, provenance=Provenance.DETERMINISTIC, geometry=geometry)

        mask = build_edit_mask(composite_image.width, composite_image.height, geometry)
        size = size or self._settings.touchup_size
        result = await self._request_touchup(composite_image, mask, prompt, size, cancel_event)
        if result.ok and result.image.size != composite_image.size:
            result = TouchUpResult.failure(
                f"touch-up returned {result.image.size}, expected {composite_image.size}"
            )

        if result.ok:
            logger.info("[%s] touch-up applied", label)
            return PanelResult(image=result.image, provenance=Provenance.TOUCHED_UP, geometry=geometry)

        logger.warning("[%s] touch-up failed (%s); using deterministic composite", label, result.error)
        return PanelResult(
            image=composite_image,
            provenance=Provenance.DETERMINISTIC,
            geometry=geometry,
            touchup_error=str(result.error),
        )

    async def process(
        self,
        base: Image.Image,
        template: Image.Image,
        prompt: str,
        mode: PlacementMode,
        size: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> Image.Image:
        """Render a panel and return just its image."""
        result = await self.run(base, template, prompt, mode, size=size, cancel_event=cancel_event)
        return result.image

    async def _request_touchup(
        self,
        image: Image.Image,
        mask: Image.Image,
        prompt: str,
        size: str,
        cancel_event: asyncio.Event | None,
    ) -> TouchUpResult:
        """
        Run the blocking touch-up call with a deadline and optional cancellation.

        Exceptions from the client are folded into a failed result.
        """
        touchup_task = asyncio.ensure_future(
            asyncio.wait_for(
                asyncio.to_thread(self._touchup.edit, image, mask, prompt, size),
                timeout=self._settings.touchup_timeout,
            )
        )
        waiters: set[asyncio.Future] = {touchup_task}
        cancel_task: asyncio.Future | None = None
        if cancel_event is not None:
            cancel_task = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_task)

        try:
            done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            touchup_task.cancel()
            raise
        finally:
            if cancel_task is not None:
                cancel_task.cancel()

        if touchup_task not in done:
            touchup_task.cancel()
            return TouchUpResult.failure("touch-up cancelled")

        try:
            return touchup_task.result()
        except asyncio.TimeoutError:
            return TouchUpResult.failure("touch-up timed out")
        except asyncio.CancelledError:
            return TouchUpResult.failure("touch-up cancelled")
        except Exception as exc:  # noqa: BLE001
            return TouchUpResult.failure(f"touch-up raised {type(exc).__name__}: {exc}")


class DualPanelOrchestrator:
    """Renders two independent panels concurrently and stitches them side by side."""

    def __init__(self, processor: PanelProcessor) -> None:
        self._processor = processor

    async def generate_dual(
        self,
        request: DualPanelRequest,
        cancel_event: asyncio.Event | None = None,
    ) -> Image.Image:
        base = normalize_orientation(request.base)
        request_id = uuid4().hex[:8]

        # Each panel gets its own copy of the base so neither can observe the other.
        left, right = await asyncio.gather(
            self._run_panel(base.copy(), request.left, request.size, cancel_event, request_id),
            self._run_panel(base.copy(), request.right, request.size, cancel_event, request_id),
        )
        logger.info(
            "[%s] panels ready (left: %s, right: %s)",
            request_id,
            left.provenance.value,
            right.provenance.value,
        )
        return await asyncio.to_thread(stitch_side_by_side, left.image, right.image, base.width, base.height)

    async def generate(
        self,
        base: Image.Image,
        left_template: Image.Image,
        left_prompt: str,
        right_template: Image.Image,
        right_prompt: str,
        size: str | None = None,
    ) -> Image.Image:
        """Convenience wrapper: left panel held, right panel worn."""
        request = DualPanelRequest(
            base=base,
            left=PanelSpec(template=left_template, prompt=left_prompt, mode=PlacementMode.HOLD, label="left"),
            right=PanelSpec(template=right_template, prompt=right_prompt, mode=PlacementMode.WEAR, label="right"),
            size=size,
        )
        return await self.generate_dual(request)

    async def _run_panel(
        self,
        base: Image.Image,
        spec: PanelSpec,
        size: str | None,
        cancel_event: asyncio.Event | None,
        request_id: str,
    ) -> PanelResult:
        return await self._processor.run(
            base,
            spec.template.copy(),
            spec.prompt,
            spec.mode,
            size=size,
            cancel_event=cancel_event,
            label=f"{request_id}/{spec.label}",
        )
