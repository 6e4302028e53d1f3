"""FastAPI application setup"""
import logging
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from pungpung.api.routes import router
from pungpung.api.middleware import setup_cors, setup_rate_limiting
from pungpung.exceptions import (
    AuthenticationError,
    InvalidTransitionError,
    MissionRateLimitError,
    PungpungError,
    RecordNotFoundError,
    TransactionConflictError,
    ValidationError,
)
from pungpung.services.container import ServiceContainer, create_store, init_container, reset_container

logger = logging.getLogger(__name__)

# Most specific first
ERROR_STATUS_CODES = (
    (RecordNotFoundError, status.HTTP_404_NOT_FOUND),
    (TransactionConflictError, status.HTTP_409_CONFLICT),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (MissionRateLimitError, status.HTTP_429_TOO_MANY_REQUESTS),
    (AuthenticationError, status.HTTP_401_UNAUTHORIZED),
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
)


def status_code_for(error: PungpungError) -> int:
    for error_type, code in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def create_api_application(container: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Create and configure FastAPI application

    Args:
        container: Prebuilt service container (tests). When omitted, the
            lifespan builds one around the configured store.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting API server...")
        active = container
        if active is None:
            active = init_container(create_store())
        app.state.container = active
        await active.store.open()
        logger.info(f"Storage ready: {type(active.store).__name__}")

        yield

        logger.info("Shutting down API server...")
        await active.progress_service.notifier.drain()
        await active.store.close()
        if container is None:
            reset_container()
        logger.info("Storage closed")

    app = FastAPI(
        title="Pungpung API",
        description="Progress & incentive engine for elementary school exercise goals",
        version="1.0.0",
        lifespan=lifespan
    )

    app.state.container = container

    setup_cors(app)
    setup_rate_limiting(app)

    app.include_router(router)

    @app.exception_handler(PungpungError)
    async def engine_exception_handler(request: Request, exc: PungpungError):
        return JSONResponse(status_code=status_code_for(exc), content=exc.to_dict())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error", "detail": str(exc)}
        )

    logger.info("FastAPI application created")

    return app
