import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from devportal.api.v1 import aicore, health, sonar
from devportal.config import settings
from devportal.dependencies import close_http_clients
from devportal.infrastructure.database.models import Base
from devportal.infrastructure.database.session import engine
from devportal.middleware import ErrorHandlingMiddleware, LoggingMiddleware, register_exception_handlers

# Configure logging
logging.basicConfig(level=settings.LOG_LEVEL.upper())
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    logger.info(f"{settings.APP_NAME} {settings.APP_VERSION} started")
    yield
    await close_http_clients()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Developer Portal Backend",
        description="AI Core and Sonar proxy for the developer portal",
        version=settings.APP_VERSION,
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Order matters - last added is first executed
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(ErrorHandlingMiddleware, enable_error_logging=True)

    register_exception_handlers(app)

    # Mount routers
    app.include_router(health.router, prefix="/api/v1")
    app.include_router(aicore.router, prefix="/api/v1")
    app.include_router(sonar.router, prefix="/api/v1")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8080))
    uvicorn.run("devportal.main:app", host="0.0.0.0", port=port, log_level=settings.LOG_LEVEL.lower())
