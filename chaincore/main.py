"""
chain-core — Branch synchronization service

App wiring only: lifespan builds the shared collaborators (state cache,
branch dispatcher, sync scheduler) onto app.state, middleware stamps a
request id and security headers, exception handlers render ErrorResponse.
Routes live in routers/.
"""

import os
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from .cache.state_cache import StateCache
from .config import APP_VERSION, settings
from .database import SessionLocal
from .exceptions import SyncCoreError
from .http_client import branch_http, close_clients
from .logging_config import setup_logging
from .routers import branch_sync, network, onec
from .routers import scheduler as scheduler_router
from .scheduler import SyncScheduler, wait_for_idle
from .schemas.errors import ErrorResponse
from .services.branch_dispatcher import BranchDispatcher
from .startup import run_startup_migrations


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    run_startup_migrations()

    cache = StateCache.from_settings(settings)
    dispatcher = BranchDispatcher(client=branch_http, session_factory=SessionLocal, settings=settings)
    scheduler = SyncScheduler(
        session_factory=SessionLocal, cache=cache, dispatcher=dispatcher, settings=settings
    )
    app.state.cache = cache
    app.state.dispatcher = dispatcher
    app.state.scheduler = scheduler

    if settings.scheduler_enabled and not os.environ.get("TESTING"):
        await scheduler.start()
    logger.info("chain-core {} started", APP_VERSION)
    yield

    scheduler.stop()
    await wait_for_idle(scheduler)
    scheduler.close()
    await cache.close()
    await close_clients()
    logger.info("chain-core stopped")


app = FastAPI(title="chain-core", version=APP_VERSION, lifespan=lifespan)


# ── Middleware ───────────────────────────────────────────────────────


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
    request.state.request_id = request_id
    with logger.contextualize(request_id=request_id):
        response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["X-API-Version"] = "v1"
    return response


# ── Error handlers ───────────────────────────────────────────────────


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "")


def _error(request: Request, status_code: int, error: str, detail: list | None = None) -> JSONResponse:
    body = ErrorResponse(error=error, status_code=status_code, request_id=_request_id(request), detail=detail)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


@app.exception_handler(SyncCoreError)
async def sync_core_error_handler(request: Request, exc: SyncCoreError):
    if exc.status_code >= 500:
        logger.warning("{} on {}: {}", type(exc).__name__, request.url.path, exc.message)
    return _error(request, exc.status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return _error(request, exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    detail = [
        {"loc": list(e.get("loc", ())), "msg": e.get("msg", ""), "type": e.get("type", "")}
        for e in exc.errors()
    ]
    return _error(request, 422, "Validation error", detail)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.opt(exception=exc).error("Unhandled error on {} {}", request.method, request.url.path)
    return _error(request, 500, "Internal server error")


# ── Routes ───────────────────────────────────────────────────────────


@app.get("/health")
async def health(request: Request):
    cache: StateCache | None = getattr(request.app.state, "cache", None)
    scheduler: SyncScheduler | None = getattr(request.app.state, "scheduler", None)
    return {
        "status": "ok",
        "version": APP_VERSION,
        "scheduler_running": bool(scheduler and scheduler.is_running),
        "cache": "connected" if cache and await cache.ping() else "disabled",
    }


app.include_router(scheduler_router.router)
app.include_router(branch_sync.router)
app.include_router(network.router)
app.include_router(onec.router)
