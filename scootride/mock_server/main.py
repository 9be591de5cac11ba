"""
In-process mock of the scooter backend: rent, history and zone endpoints.

Used when ``ENV=mock`` (see ``scootride.connection.build_connection``) and
runnable on its own with ``uvicorn --factory scootride.mock_server.main:create_app``.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from scootride.config import Settings, get_settings
from scootride.mock_server.routers import rent, zones
from scootride.mock_server.state import MockStore

logger = logging.getLogger(__name__)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)


def create_app(
    settings: Optional[Settings] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting %s mock backend [%s]", settings.app_name, settings.env)
        yield
        logger.info("Mock backend shutdown complete")

    app = FastAPI(
        title=f"{settings.app_name} mock backend",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = MockStore(settings, clock) if clock else MockStore(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled error on %s: %s", request.url, exc, exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"},
        )

    @app.get("/health", tags=["Health"])
    async def health():
        return {"status": "ok"}

    app.include_router(rent.router)
    app.include_router(zones.router)
    return app
