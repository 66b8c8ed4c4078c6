import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from docflow.config import settings
from docflow.db import PostgresStore, close_pool, get_pool, init_schema
from docflow.errors import (
    DelegateNotFound,
    DuplicateDelegate,
    InvalidTransition,
    InvoiceNotFound,
    OrderNotFound,
    ValidationFailed,
)
from docflow.memory_store import MemoryStore
from docflow.metrics import get_metrics_bytes, get_metrics_content_type, notification_queue_backlog
from docflow.notifications import QueueNotifier
from docflow.queue import queue_backlog
from docflow.redis_client import close_redis
from docflow.routes import admin, delegates, invoices, orders
from docflow.services import Services, build_services

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


async def _build_from_settings() -> Services:
    if settings.store_backend == "memory":
        store = MemoryStore()
    else:
        pool = await get_pool()
        await init_schema(pool)
        store = PostgresStore(pool)
    logger.info("Store backend=%s ready", settings.store_backend)
    return build_services(store, QueueNotifier())


async def _not_found(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=404, content={"status": "not_found", "detail": f"{type(exc).__name__}: {exc}"})


async def _invalid_transition(request: Request, exc: InvalidTransition) -> JSONResponse:
    return JSONResponse(
        status_code=409,
        content={
            "status": "invalid_transition",
            "current_status": exc.current_status,
            "attempted_status": exc.attempted,
            "detail": str(exc),
        },
    )


async def _duplicate_delegate(request: Request, exc: DuplicateDelegate) -> JSONResponse:
    return JSONResponse(status_code=409, content={"status": "duplicate_delegate", "detail": str(exc)})


async def _validation_failed(request: Request, exc: ValidationFailed) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={"status": "validation_failed", "error": type(exc).__name__, "detail": str(exc)},
    )


def create_app(services: Services | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = getattr(app.state, "services", None) is None
        if owned:
            app.state.services = await _build_from_settings()
        yield
        if owned:
            await close_redis()
            await close_pool()

    app = FastAPI(title="Docflow Dispatch Engine", lifespan=lifespan)
    if services is not None:
        app.state.services = services
    app.include_router(invoices.router)
    app.include_router(orders.router)
    app.include_router(delegates.router)
    app.include_router(admin.router)

    for exc_type in (OrderNotFound, InvoiceNotFound, DelegateNotFound):
        app.add_exception_handler(exc_type, _not_found)
    app.add_exception_handler(InvalidTransition, _invalid_transition)
    app.add_exception_handler(DuplicateDelegate, _duplicate_delegate)
    app.add_exception_handler(ValidationFailed, _validation_failed)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    @app.get("/metrics")
    async def metrics() -> Response:
        """Prometheus scrape endpoint: orders, dispatch outcomes, transitions, notification backlog."""
        try:
            notification_queue_backlog.set(await queue_backlog())
        except Exception as e:
            logger.debug("Notification backlog unavailable: %s", e)
        return Response(
            content=get_metrics_bytes(),
            media_type=get_metrics_content_type(),
        )

    return app


app = create_app()
