from fastapi import FastAPI

from app.api.v1.routes import router as api_v1_router
from app.config import Settings, load_settings
from app.services.panels import DualPanelOrchestrator, PanelProcessor
from app.services.touchup_client import TouchUpClient


def create_app(settings: Settings | None = None) -> FastAPI:
    """
    Application factory for the meme API.

    Settings are loaded from the environment (and `.env`) unless given, which
    lets tests build an app with or without a touch-up credential.
    """
    settings = settings or load_settings()

    app = FastAPI(
        title="Jobbed Meme API",
        version="0.1.0",
        description="Places job applications and face masks onto uploaded photos.",
    )

    touchup_client = TouchUpClient(settings) if settings.touchup_enabled else None
    processor = PanelProcessor(settings, touchup_client=touchup_client)
    app.state.settings = settings
    app.state.panel_processor = processor
    app.state.orchestrator = DualPanelOrchestrator(processor)

    # Infrastructure-level health check (non-versioned) primarily for ops.
    @app.get("/health", tags=["health"])
    async def root_health_check() -> dict:
        """Simple root health check endpoint."""
        return {"status": "ok"}

    app.include_router(api_v1_router)

    return app


app = create_app()
