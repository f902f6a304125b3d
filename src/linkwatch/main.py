"""FastAPI application for linkwatch."""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from . import __version__
from .api import health_router, router
from .container import ServiceContainer
from .core.config import settings
from .core.exceptions import (
    ConfigurationError,
    DuplicateAlertRace,
    LinkwatchError,
    PersistenceError,
    TransientDeviceError,
)
from .core.logging import configure_logging, get_logger
from .models.common import ErrorResponse

logger = get_logger(__name__)

ERROR_STATUS = {
    ConfigurationError: 422,
    DuplicateAlertRace: 409,
    PersistenceError: 503,
    TransientDeviceError: 502,
}


async def linkwatch_error_handler(request: Request, exc: LinkwatchError) -> JSONResponse:
    """Render domain errors that escape a route as an ErrorResponse."""
    status_code = ERROR_STATUS.get(type(exc), 500)
    if status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=str(exc), code=type(exc).__name__)
    else:
        logger.warning("request_rejected", path=request.url.path, error=str(exc), code=type(exc).__name__)
    body = ErrorResponse(error=str(exc), code=type(exc).__name__)
    return JSONResponse(status_code=status_code, content=body.model_dump())


def create_app(container: ServiceContainer | None = None) -> FastAPI:
    """Build the application.

    When a container is passed in it is used as-is and its lifecycle is left
    to the caller; otherwise the lifespan connects, starts and stops one.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if container is not None:
            app.state.container = container
            yield
            return

        configure_logging()
        logger.info("linkwatch_starting", environment=settings.environment, port=settings.port)
        owned = await ServiceContainer.create(settings)
        app.state.container = owned
        await owned.start()
        try:
            yield
        finally:
            logger.info("linkwatch_shutting_down")
            await owned.stop()

    app = FastAPI(
        title="linkwatch",
        description="Router interface traffic polling and alerting",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_exception_handler(LinkwatchError, linkwatch_error_handler)
    app.include_router(health_router)
    app.include_router(router)
    return app
