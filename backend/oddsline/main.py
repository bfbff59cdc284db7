"""
backend/oddsline/main.py

Purpose:
    FastAPI application bootstrap: logging, database, event bus with its
    subscribers, WebSocket manager and the periodic pipeline tasks. Exposes
    health, metrics and task status endpoints plus the realtime stream.

Dependencies:
    - oddsline.database
    - oddsline.services.task_runner
    - oddsline.services.event_bus
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pymongo.errors import (
    ConnectionFailure,
    OperationFailure,
    PyMongoError,
    ServerSelectionTimeoutError,
)

import oddsline.database as _db
from oddsline.config import settings
from oddsline.database import close_db, connect_db
from oddsline.middleware.logging import StructuredLoggingMiddleware, setup_logging
from oddsline.services.task_runner import TaskRunner

logger = logging.getLogger("oddsline")
task_runner = TaskRunner()
SHUTDOWN_DRAIN_SECONDS = 5.0
# Strong references to runs started from /tasks/{name}/run.
_manual_runs: set[asyncio.Task] = set()


def build_task_specs() -> list[dict]:
    from oddsline.workers.lifecycle import sweep_lifecycle
    from oddsline.workers.live_broadcast import broadcast_live_matches
    from oddsline.workers.live_odds import poll_live_odds
    from oddsline.workers.odds_poller import poll_odds
    from oddsline.workers.scores_poller import poll_scores
    from oddsline.workers.settlement import run_settlement

    return [
        {"id": "odds_poller", "func": poll_odds, "trigger_kwargs": {"minutes": settings.ODDS_POLL_INTERVAL_MINUTES}},
        {"id": "live_odds", "func": poll_live_odds, "trigger_kwargs": {"minutes": settings.LIVE_ODDS_INTERVAL_MINUTES}},
        {"id": "lifecycle", "func": sweep_lifecycle, "trigger_kwargs": {"minutes": settings.LIFECYCLE_INTERVAL_MINUTES}},
        {"id": "scores_poller", "func": poll_scores, "trigger_kwargs": {"minutes": settings.SCORES_INTERVAL_MINUTES}},
        {"id": "settlement", "func": run_settlement, "trigger_kwargs": {"minutes": settings.SETTLEMENT_INTERVAL_MINUTES}},
        {"id": "live_broadcast", "func": broadcast_live_matches, "trigger_kwargs": {"minutes": settings.LIVE_BROADCAST_INTERVAL_MINUTES}},
    ]


def register_tasks(runner: TaskRunner) -> int:
    specs = build_task_specs()
    for spec in specs:
        runner.register(spec["id"], spec["func"], trigger="interval", **spec["trigger_kwargs"])
    return len(specs)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    await connect_db()
    from oddsline.providers.odds_api import odds_feed
    from oddsline.services.event_bus import event_bus
    from oddsline.services.event_handlers import register_event_handlers
    from oddsline.services.websocket_manager import websocket_manager

    await odds_feed.load_usage()
    if settings.WS_EVENTS_ENABLED:
        await websocket_manager.start()
        logger.info("WebSocket realtime manager enabled")
    else:
        logger.info("WebSocket realtime manager disabled via config")
    if settings.EVENT_BUS_ENABLED:
        register_event_handlers(event_bus)
        await event_bus.start()
        logger.info("Event bus enabled")
    else:
        logger.info("Event bus disabled via config")

    register_tasks(task_runner)
    if settings.SCHEDULER_ENABLED:
        task_runner.start()
    else:
        logger.info("Scheduler disabled via config; tasks run only on demand")

    yield

    task_runner.shutdown()
    if settings.EVENT_BUS_ENABLED:
        await event_bus.drain(SHUTDOWN_DRAIN_SECONDS)
        await event_bus.stop()
    if settings.WS_EVENTS_ENABLED:
        await websocket_manager.stop()
    await odds_feed.aclose()
    await close_db()


app = FastAPI(
    title="oddsline",
    description="Odds ingestion, match lifecycle and wager settlement pipeline",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type"],
)
app.add_middleware(StructuredLoggingMiddleware)

from oddsline.routers.ws import router as ws_router  # noqa: E402

app.include_router(ws_router)


@app.exception_handler(ServerSelectionTimeoutError)
async def db_timeout_handler(request: Request, exc: ServerSelectionTimeoutError):
    logger.error("Database timeout: %s %s", request.method, request.url.path)
    return JSONResponse(status_code=503, content={"detail": "Service temporarily unavailable."})


@app.exception_handler(ConnectionFailure)
async def db_connection_handler(request: Request, exc: ConnectionFailure):
    logger.error("Database connection failure: %s %s", request.method, request.url.path)
    return JSONResponse(status_code=503, content={"detail": "Service temporarily unavailable."})


@app.exception_handler(OperationFailure)
async def db_operation_handler(request: Request, exc: OperationFailure):
    logger.error("Database operation error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "An internal error occurred."})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "An internal error occurred."})


@app.get("/health")
async def health():
    """Health check: DB ping, feed circuit state, quota and task status."""
    from oddsline.providers.odds_api import odds_feed
    from oddsline.services.event_bus import event_bus

    try:
        result = await _db.db.command("ping")
        db_ok = result.get("ok") == 1.0
    except PyMongoError:
        db_ok = False

    return {
        "status": "healthy" if db_ok else "degraded",
        "db": "connected" if db_ok else "disconnected",
        "odds_feed": {
            "enabled": odds_feed.enabled,
            "circuit_open": odds_feed.circuit_open,
            "circuit_state": odds_feed.circuit_state,
            "quota": odds_feed.quota,
        },
        "event_bus": {k: v for k, v in event_bus.stats().items() if k.endswith("_total")},
        "tasks": task_runner.stats(),
    }


@app.get("/metrics")
async def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.post("/tasks/{name}/run", status_code=202)
async def run_task(name: str):
    """Start a registered task in the background; 409 while it is already running."""
    if name not in task_runner.names:
        return JSONResponse(status_code=404, content={"detail": "Unknown task."})
    if task_runner.get(name).running:
        return JSONResponse(status_code=409, content={"detail": "Task already running."})
    run = asyncio.create_task(task_runner.trigger(name), name=f"manual_{name}")
    _manual_runs.add(run)
    run.add_done_callback(_manual_runs.discard)
    return {"task": name, "status": "started"}
