"""FastAPI application entry point."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Annotated, AsyncIterator

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from instancehub import __version__
from instancehub.app.api.v1 import instances_router, runtime_router
from instancehub.app.api.v1.dependencies import (
    get_health_probe,
    get_registry,
    get_runtime_driver,
    get_status_reconciler,
)
from instancehub.app.config import get_settings
from instancehub.app.logging import setup_logging
from instancehub.app.metrics import get_metrics_response
from instancehub.app.middleware import LoggingMiddleware
from instancehub.app.proxy import router as proxy_router
from instancehub.app.proxy.client import close_http_client
from instancehub.control import ReconcileLoop
from instancehub.core.errors import (
    ERROR_CODE_HEADER,
    InstanceHubError,
    InternalError,
    ValidationFailedError,
)
from instancehub.core.interfaces import RuntimeDriver
from instancehub.core.logging_schema import LogEvent
from instancehub.infra import close_db, init_db

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    if settings.registry.backend == "sql":
        await init_db()

    logger.info("Starting application", extra={"event": LogEvent.APP_STARTED})

    loop: ReconcileLoop | None = None
    loop_task: asyncio.Task | None = None
    if settings.reconciler.enabled:
        reconciler = get_status_reconciler(
            get_runtime_driver(), get_registry(), get_health_probe()
        )
        loop = ReconcileLoop(reconciler, settings.reconciler.interval)
        loop_task = asyncio.create_task(loop.run())

    yield

    logger.info("Shutting down application", extra={"event": LogEvent.APP_STOPPED})
    if loop is not None and loop_task is not None:
        loop.stop()
        loop_task.cancel()
        try:
            await loop_task
        except asyncio.CancelledError:
            pass

    await close_http_client()
    await get_runtime_driver().close()
    await get_registry().close()
    if settings.registry.backend == "sql":
        await close_db()


app = FastAPI(title="InstanceHub", version=__version__, lifespan=lifespan)
app.add_middleware(LoggingMiddleware)


def _error_response(exc: InstanceHubError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response().model_dump(exclude_none=True),
        headers={ERROR_CODE_HEADER: exc.code.value},
    )


@app.exception_handler(InstanceHubError)
async def instancehub_error_handler(request: Request, exc: InstanceHubError) -> JSONResponse:
    """Handle InstanceHubError exceptions."""
    return _error_response(exc)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render request validation failures as field -> messages."""
    errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = err.get("loc") or ("body",)
        errors.setdefault(str(loc[-1]), []).append(err.get("msg", "Invalid value"))
    return _error_response(ValidationFailedError(errors))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error: %s", exc)
    return _error_response(InternalError())


app.include_router(instances_router)
app.include_router(runtime_router)
app.include_router(proxy_router)


@app.get("/health")
async def health(driver: Annotated[RuntimeDriver, Depends(get_runtime_driver)]):
    docker_running = await driver.daemon_healthy()
    return {
        "status": "ok" if docker_running else "degraded",
        "version": __version__,
        "services": {"docker": "connected" if docker_running else "unavailable"},
    }


if get_settings().metrics.enabled:

    @app.get("/metrics", include_in_schema=False)
    async def metrics():
        """Prometheus metrics endpoint."""
        return get_metrics_response()
