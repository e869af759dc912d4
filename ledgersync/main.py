"""
main.py — ledgersync FastAPI application

Wires logging, the schema sync, the scheduler and the sync engine into the
app lifespan, mounts the routers, and maps domain errors to JSON bodies.

Business Rules:
- Every response carries X-Request-ID; log lines inside a request carry it too
- LedgerSyncError subclasses answer with their own status code
- Sync only auto-starts when enabled AND the store credentials are set
- TESTING=1 skips the schema sync, the scheduler and the store calls

Called by: uvicorn (ledgersync.main:app)
Depends on: routers/*, sync_engine.py, scheduler.py, logging_config.py
"""

import asyncio
import os
import uuid
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy import text
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .config import settings
from .database import get_db
from .dependencies import get_sync_engine
from .errors import LedgerSyncError
from .http_client import close_clients
from .logging_config import setup_logging
from .routers import journals, numbers, orders, sync, tax
from .scheduler import shutdown_scheduler, start_scheduler
from .schemas.errors import ErrorResponse
from .sync_engine import get_engine

setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    from .startup import run_startup_migrations

    run_startup_migrations()
    testing = bool(os.environ.get("TESTING"))
    engine = get_engine()
    first_cycle = None
    if not testing:
        start_scheduler()
        if settings.sync_enabled and settings.wc_configured:
            # First cycle runs in the background so boot isn't blocked on the store
            first_cycle = asyncio.create_task(engine.start_sync(settings.sync_interval_minutes))
        elif settings.wc_configured:
            await engine.tax_cache.initialize(engine.client)
    logger.info(f"ledgersync {__version__} started (sync_enabled={settings.sync_enabled})")
    yield
    engine.stop_sync()
    if first_cycle and not first_cycle.done():
        first_cycle.cancel()
    shutdown_scheduler()
    await close_clients()


app = FastAPI(title="ledgersync", version=__version__, lifespan=lifespan)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = uuid.uuid4().hex[:8]
    request.state.request_id = request_id
    with logger.contextualize(request_id=request_id):
        response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "")


def _error_body(request: Request, status_code: int, error: str, message: str = "", detail=None) -> dict:
    return ErrorResponse(
        error=error,
        status_code=status_code,
        message=message,
        request_id=_request_id(request),
        detail=detail,
    ).model_dump()


@app.exception_handler(LedgerSyncError)
async def ledgersync_error_handler(request: Request, exc: LedgerSyncError):
    if exc.status_code >= 500:
        logger.warning(f"{request.method} {request.url.path} → {exc.status_code}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(request, exc.status_code, exc.error, exc.message),
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(request, exc.status_code, str(exc.detail), str(exc.detail)),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content=_error_body(
            request, 422, "validation_error", "Request validation failed",
            detail=jsonable_encoder(exc.errors()),
        ),
    )


@app.get("/health")
def health(db: Session = Depends(get_db), engine=Depends(get_sync_engine)):
    try:
        db.execute(text("SELECT 1"))
        db_status = "ok"
    except Exception as e:
        logger.error(f"Health check DB failure: {e}")
        db_status = "error"
    return {
        "status": "ok" if db_status == "ok" else "degraded",
        "version": __version__,
        "db": db_status,
        "sync": engine.state,
        "sync_disabled_reason": engine.sync_disabled_reason,
    }


app.include_router(sync.router)
app.include_router(orders.router)
app.include_router(journals.router)
app.include_router(numbers.router)
app.include_router(tax.router)
