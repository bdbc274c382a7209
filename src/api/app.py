from __future__ import annotations

import asyncio
import json
import logging
import os
import traceback
from concurrent.futures import ThreadPoolExecutor
from typing import Any, AsyncIterator, Awaitable, Callable

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from src.domain.errors import ConfigError
from src.trader.service import WallService
from src.utils.config_loader import default_config_path, load_config

logger = logging.getLogger(__name__)

# Config reloads touch the disk; keep them off the event loop.
_io_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="admin_io")


def _scheduler_disabled() -> bool:
    return str(os.environ.get("WALLKEEPER_DISABLE_SCHEDULER", "")).strip() in {"1", "true", "TRUE", "yes", "YES"}


async def _run_in_executor_strict(func, *args, timeout_seconds: float = 5.0, **kwargs):
    """
    Run a blocking function in the IO executor and fail loudly (no silent fallbacks).
    ConfigError is passed through so the caller can map it to a 400.
    """
    loop = asyncio.get_running_loop()
    try:
        return await asyncio.wait_for(
            loop.run_in_executor(_io_executor, lambda: func(*args, **kwargs)),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError as e:
        raise HTTPException(status_code=503, detail=f"Call timed out: {func.__name__}") from e
    except (HTTPException, ConfigError):
        raise
    except Exception as e:
        raise HTTPException(
            status_code=503,
            detail=f"Call failed: {func.__name__}: {type(e).__name__}: {str(e)[:200]}",
        ) from e


def _sse(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


async def event_stream(
    service: WallService,
    is_disconnected: Callable[[], Awaitable[bool]],
    *,
    poll_seconds: float = 1.0,
) -> AsyncIterator[str]:
    """
    Server-Sent Events generator for one live listener.

    Sends a `connected` line and the current config first, then every narration
    published after the subscription was made. No history is replayed.
    """
    sub = service.broadcaster.subscribe()
    try:
        # Hint to clients how long to wait before reconnecting (milliseconds).
        yield "retry: 1000\n\n"
        yield _sse({"level": "INFO", "step": "Connected", "pair": None, "message": "connected"})
        yield _sse(
            {
                "level": "INFO",
                "step": "Config",
                "pair": None,
                "message": "Config is",
                "config": service.config_store.document(),
            }
        )
        while True:
            if await is_disconnected():
                break
            messages = sub.drain()
            if messages:
                for m in messages:
                    yield _sse(m.to_dict())
            else:
                yield ": keep-alive\n\n"
            await asyncio.sleep(float(poll_seconds))
    finally:
        service.broadcaster.unsubscribe(sub)


def create_app(service: WallService | None = None) -> FastAPI:
    app = FastAPI(title="Wallkeeper API", version="0.1.0")
    app.state.service = service

    def _service() -> WallService:
        svc = app.state.service
        if svc is None:
            raise HTTPException(status_code=503, detail="Wall service not ready")
        return svc

    @app.on_event("startup")
    async def startup_event():
        if app.state.service is None:
            path = default_config_path()
            app.state.service = WallService.from_config(load_config(path), path=path)
        if _scheduler_disabled():
            logger.info("Wall scheduler startup skipped (WALLKEEPER_DISABLE_SCHEDULER set).")
            return
        app.state.service.start()

    @app.on_event("shutdown")
    async def shutdown_event():
        svc = app.state.service
        if svc is not None:
            # Lets an in-flight cycle finish before the timer stops.
            await asyncio.get_running_loop().run_in_executor(None, svc.stop)
            logger.info("Wall service stopped")

    # Local dev defaults.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
        allow_credentials=False,
        allow_methods=["GET", "PUT"],
        allow_headers=["*"],
    )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Return a clean JSON 500 for anything unhandled."""
        logger.error(f"Unhandled exception: {type(exc).__name__}: {exc}")
        logger.debug(traceback.format_exc())
        return JSONResponse(
            status_code=500,
            content={
                "detail": f"Internal server error: {type(exc).__name__}",
                "message": str(exc)[:200],
            },
        )

    @app.get("/api/health")
    async def health() -> dict[str, Any]:
        svc = app.state.service
        running = bool(svc and svc.scheduler.is_running())
        return {
            "status": "ok" if svc is not None else "starting",
            "scheduler_running": running,
            "listeners": svc.broadcaster.listener_count() if svc else 0,
            "cycles_run": svc.scheduler.cycles_run if svc else 0,
        }

    @app.get("/api/config")
    async def config_get() -> dict[str, Any]:
        """Active config document (what the next cycle will use)."""
        return jsonable_encoder(_service().config_store.document())

    @app.put("/api/config")
    async def config_put(payload: dict[str, Any]) -> dict[str, Any]:
        """
        Replace the config document (strict validation; the pair list is replaced, not merged).
        On a validation error the previous config stays active.
        """
        svc = _service()
        try:
            await _run_in_executor_strict(svc.config_store.reload, payload)
        except ConfigError as e:
            raise HTTPException(status_code=400, detail=f"Invalid config: {str(e)[:200]}") from e
        return jsonable_encoder(svc.config_store.document())

    @app.get("/api/targets")
    async def targets() -> dict[str, Any]:
        return jsonable_encoder({k: t.to_dict() for k, t in _service().store.snapshot().items()})

    @app.get("/api/cycle/latest")
    async def cycle_latest() -> dict[str, Any]:
        report = _service().scheduler.last_report
        if report is None:
            return {"started_at": None, "finished_at": None, "aborted": None}
        return jsonable_encoder(report.to_dict())

    @app.get("/api/events/stream")
    async def events_stream(
        request: Request,
        poll_seconds: float = Query(default=1.0, ge=0.2, le=10.0),
    ):
        """Server-Sent Events feed of live narration."""
        svc = _service()
        return StreamingResponse(
            event_stream(svc, request.is_disconnected, poll_seconds=poll_seconds),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                # Disable proxy buffering.
                "X-Accel-Buffering": "no",
            },
        )

    return app
