from enum import Enum

from pydantic import BaseModel, Field


class PlacementModeParam(str, Enum):
    """Placement selector accepted by the generation endpoints."""

    HOLD = "hold"
    WEAR = "wear"


class GeneratedImageResponse(BaseModel):
    """A generated meme, ready to be wrapped in a data URL by the frontend."""

    image_base64: str = Field(..., description="Base64-encoded image bytes.")
    mime_type: str = Field(default="image/png", description="MIME type of the encoded image.")
    width: int = Field(..., description="Image width in pixels.")
    height: int = Field(..., description="Image height in pixels.")


class HealthResponse(BaseModel):
    status: str = Field(default="ok")
    api_version: str = Field(default="v1")
    touchup_enabled: bool = Field(
        ...,
        description="Whether generative touch-up is configured. When false, results are deterministic composites.",
    )
