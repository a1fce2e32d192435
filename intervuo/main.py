import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from intervuo.api.api import api_router
from intervuo.config.logging_config import setup_logging
from intervuo.config.settings import Settings, settings
from intervuo.context import AppContext
from intervuo.system.exceptions import (
    BaseHTTPException,
    common_exception_handler,
    validation_exception_handler,
)

setup_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    owned = getattr(app.state, "context", None) is None
    if owned:
        app.state.context = AppContext.build(app.state.settings)
    logger.info(f"{app.state.settings.APP_NAME} listening on port {app.state.settings.APP_PORT}")
    yield
    if owned:
        app.state.context.close()
        app.state.context = None


def prepare_app(app_settings: Settings | None = None, context: AppContext | None = None) -> FastAPI:
    app_settings = app_settings or (context.settings if context else settings)
    app = FastAPI(
        title=app_settings.APP_NAME,
        description="Mock interview sessions with voice agents and transcript analysis",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.settings = app_settings
    app.state.context = context

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix="/api")
    app.add_exception_handler(BaseHTTPException, common_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    @app.get("/health")
    async def health():
        return {"status": "OK", "message": "Interview platform is running"}

    return app


def start_service() -> None:
    uvicorn.run(
        prepare_app(),
        host=settings.APP_ADDRESS,
        port=settings.APP_PORT,
    )


app = prepare_app()

if __name__ == "__main__":
    start_service()
