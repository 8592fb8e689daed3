"""FastAPI application entry point for the pimflow API."""

import asyncio
import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from pimflow_api.api import products, workflow
from pimflow_api.dependencies import get_engine

# Initialize structured logger
logger = structlog.get_logger(__name__)


def get_shutdown_timeout() -> int:
    """Get shutdown timeout from environment variable.

    Returns:
        Shutdown timeout in seconds (default: 30).
    """
    return int(os.getenv("SHUTDOWN_TIMEOUT_SECONDS", "30"))


async def cleanup_resources() -> None:
    """Clean up application resources during shutdown.

    Stops the engine's background audit verification task.
    """
    logger.info("shutdown_started", message="Beginning graceful shutdown")

    try:
        await get_engine().close()
        logger.info("shutdown_resource_closed", resource="workflow_engine", status="success")
    except Exception as e:
        logger.warning(
            "shutdown_resource_error",
            resource="workflow_engine",
            error=str(e),
            status="warning",
        )

    logger.info("shutdown_completed", message="Graceful shutdown completed successfully")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """FastAPI lifespan context manager for startup and shutdown.

    Handles:
    - Application startup (engine and background verification)
    - Application shutdown (cleanup with timeout)

    Yields:
        None: Application runs between startup and shutdown.
    """
    logger.info("application_startup", message="pimflow API starting up")
    shutdown_timeout = get_shutdown_timeout()
    logger.info("shutdown_timeout_configured", timeout_seconds=shutdown_timeout)

    await get_engine().start()

    yield

    logger.info("shutdown_signal_received", message="Shutdown signal received, starting graceful shutdown")
    try:
        await asyncio.wait_for(cleanup_resources(), timeout=shutdown_timeout)
    except asyncio.TimeoutError:
        logger.warning(
            "shutdown_timeout_exceeded",
            timeout_seconds=shutdown_timeout,
            message=f"Shutdown timeout ({shutdown_timeout}s) exceeded, forcing exit",
        )
    except Exception as e:
        logger.error(
            "shutdown_error",
            error=str(e),
            message="Unexpected error during shutdown",
        )


app = FastAPI(
    title="pimflow API",
    version="0.1.0",
    description="Product workflow, permission and audit trail service",
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed request data as 400, not 422."""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "success": False,
            "error": "Invalid request data",
            "details": jsonable_errors(exc),
        },
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, object]]:
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", ""), "type": error.get("type", "")}
        for error in exc.errors()
    ]


app.include_router(products.router, prefix="/api")
app.include_router(workflow.router, prefix="/api/workflow")
