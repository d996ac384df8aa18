from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from PIL import Image

from app.api.v1.schemas import GeneratedImageResponse, HealthResponse, PlacementModeParam
from app.config import Settings
from app.models.panels import DualPanelRequest, PanelSpec, PlacementMode
from app.services.compositing import CompositingError, encode_png_base64, load_image
from app.services.panels import DualPanelOrchestrator, PanelProcessor, default_prompt

router = APIRouter(prefix="/api/v1")


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_panel_processor(request: Request) -> PanelProcessor:
    return request.app.state.panel_processor


def get_orchestrator(request: Request) -> DualPanelOrchestrator:
    return request.app.state.orchestrator


async def _read_image(upload: UploadFile, field: str, settings: Settings) -> Image.Image:
    """Read an upload fully and decode it, mapping failures to HTTP errors."""
    contents = await upload.read(settings.max_upload_bytes + 1)
    if len(contents) > settings.max_upload_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"`{field}` exceeds the {settings.max_upload_bytes} byte upload limit.",
        )
    try:
        return load_image(contents)
    except CompositingError as exc:
        raise HTTPException(
            status_code=422,
            detail=f"`{field}`: {exc}",
        ) from exc


def _to_response(image: Image.Image) -> GeneratedImageResponse:
    return GeneratedImageResponse(
        image_base64=encode_png_base64(image),
        width=image.width,
        height=image.height,
    )


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(processor: PanelProcessor = Depends(get_panel_processor)) -> HealthResponse:
    """API v1 health check endpoint."""
    return HealthResponse(touchup_enabled=processor.touchup_enabled)


@router.post(
    "/generate",
    response_model=GeneratedImageResponse,
    tags=["generate"],
    summary="Place one template on a photo",
)
async def generate(
    user_image: UploadFile = File(..., description="The visitor's photo."),
    template_image: UploadFile = File(..., description="Template to place (application form or face mask)."),
    prompt: str | None = Form(default=None, description="Touch-up instruction; defaults per mode."),
    mode: PlacementModeParam = Form(default=PlacementModeParam.HOLD),
    size: str | None = Form(default=None, description="Touch-up size hint, e.g. '1024x1024'."),
    settings: Settings = Depends(get_settings),
    processor: PanelProcessor = Depends(get_panel_processor),
) -> GeneratedImageResponse:
    """
    Composite a single template onto the uploaded photo.

    The template is placed with fixed percentages of the photo size:
    - `hold`: small, lower right, normal alpha blend
    - `wear`: larger, upper left of center, multiply blend

    When touch-up is configured the composited region is sent for a generative
    pass; otherwise, or if that pass fails, the deterministic composite is
    returned.
    """
    base = await _read_image(user_image, "user_image", settings)
    template = await _read_image(template_image, "template_image", settings)
    placement = PlacementMode(mode.value)

    try:
        image = await processor.process(
            base,
            template,
            prompt or default_prompt(placement),
            placement,
            size=size,
        )
    except CompositingError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    return _to_response(image)


@router.post(
    "/generate-dual",
    response_model=GeneratedImageResponse,
    tags=["generate"],
    summary="Render held and worn panels side by side",
)
async def generate_dual(
    user_image: UploadFile = File(..., description="The visitor's photo."),
    left_template: UploadFile = File(..., description="Left panel template (job application)."),
    right_template: UploadFile = File(..., description="Right panel template (face mask)."),
    prompt_left: str | None = Form(default=None),
    prompt_right: str | None = Form(default=None),
    mode_left: PlacementModeParam = Form(default=PlacementModeParam.HOLD),
    mode_right: PlacementModeParam = Form(default=PlacementModeParam.WEAR),
    size: str | None = Form(default=None),
    settings: Settings = Depends(get_settings),
    orchestrator: DualPanelOrchestrator = Depends(get_orchestrator),
) -> GeneratedImageResponse:
    """
    Render two panels from one photo and stitch them into a single image.

    The result is `2 * width + gap` pixels wide, with the gap at least 20 px.
    Each panel falls back to its deterministic composite independently.
    """
    base = await _read_image(user_image, "user_image", settings)
    left = await _read_image(left_template, "left_template", settings)
    right = await _read_image(right_template, "right_template", settings)
    left_mode = PlacementMode(mode_left.value)
    right_mode = PlacementMode(mode_right.value)

    request = DualPanelRequest(
        base=base,
        left=PanelSpec(template=left, prompt=prompt_left or default_prompt(left_mode), mode=left_mode, label="left"),
        right=PanelSpec(
            template=right,
            prompt=prompt_right or default_prompt(right_mode),
            mode=right_mode,
            label="right",
        ),
        size=size,
    )

    try:
        image = await orchestrator.generate_dual(request)
    except CompositingError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    return _to_response(image)
