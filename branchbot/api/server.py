import traceback
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from core.config import ConfigManager
from dialog.base import ResolverRouter

SERVICE_NAME = "Voice Agent Backend"


def create_app(
    config_manager: ConfigManager,
    resolver_router: Optional[ResolverRouter] = None,
    tts_engine=None,
) -> FastAPI:
    """Create and configure the backend proxy."""

    if resolver_router is None:
        resolver_router = ResolverRouter(config_manager)
    if tts_engine is None:
        from speech.google_tts import GoogleTextToSpeech
        tts_engine = GoogleTextToSpeech(config_manager.config.tts)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await resolver_router.close()

    app = FastAPI(title="Branch Voice Agent", version="1.0.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[config_manager.config.server.frontend_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Store references for route handlers
    app.state.config_manager = config_manager
    app.state.resolver_router = resolver_router
    app.state.tts_engine = tts_engine

    from api.routes.dialogflow import router as dialogflow_router
    from api.routes.tts import router as tts_router

    app.include_router(dialogflow_router, prefix="/api/dialogflow", tags=["dialogflow"])
    app.include_router(tts_router, prefix="/api/tts", tags=["tts"])

    @app.get("/api/health")
    async def health():
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": SERVICE_NAME,
        }

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404 and exc.detail == "Not Found":
            return JSONResponse(status_code=404, content={"error": "Not found"})
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": "Invalid request body"})

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.error("Error: {}", exc)
        content = {"error": str(exc) or "Internal server error"}
        if config_manager.is_development:
            content["stack"] = "".join(
                traceback.format_exception(type(exc), exc, exc.__traceback__)
            )
        return JSONResponse(status_code=500, content=content)

    return app
