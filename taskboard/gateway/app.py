from __future__ import annotations

import asyncio
import json
import time
from typing import Any

from fastapi import Body, Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse

from taskboard.auth import TOKEN_COOKIE, Authenticator, TokenAuthenticator, bearer_token
from taskboard.bus.interface import Bus
from taskboard.config import AppConfig, load_config
from taskboard.errors import TaskboardError
from taskboard.observability import (
    bind_owner,
    configure_uvicorn_logging,
    get_json_logger,
    get_metrics,
    use_request_context,
)
from taskboard.tasks.events import TaskBroadcaster
from taskboard.tasks.schemas import CreateTaskRequest, UpdateTaskRequest
from taskboard.tasks.service import TaskService
from taskboard.tasks.store import TaskStore

_POLL_INTERVAL_S = 0.05
_HEARTBEAT_S = 15.0


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request."
    err = errors[0]
    loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
    msg = str(err.get("msg") or "invalid value")
    return f"Invalid request ({loc}: {msg})." if loc else f"Invalid request ({msg})."


def create_app(
    store: TaskStore,
    bus: Bus,
    *,
    authenticator: Authenticator | None = None,
    config: AppConfig | None = None,
) -> FastAPI:
    cfg = config or load_config()
    app = FastAPI(title="taskboard")
    # Configure uvicorn logging at app startup to avoid import-time side effects
    configure_uvicorn_logging()
    logger = get_json_logger("taskboard.gateway")
    metrics = get_metrics()
    auth = authenticator or TokenAuthenticator(cfg.token_secret, ttl_seconds=cfg.token_ttl_seconds)
    broadcaster = TaskBroadcaster(bus, cfg.events_topic)
    service = TaskService(store, broadcaster)
    # Shutdown signal used to encourage prompt exit of long-lived generators
    shutdown_flag: asyncio.Event = asyncio.Event()

    app.state.store = store
    app.state.service = service
    app.state.broadcaster = broadcaster

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    @app.on_event("shutdown")
    async def _on_shutdown() -> None:
        shutdown_flag.set()
        try:
            await store.close()
        except Exception:
            logger.exception(
                "store close failed", extra={"event": "gateway_error", "service": "gateway"}
            )
        logger.info("gateway shutdown", extra={"event": "gateway_shutdown", "service": "gateway"})

    @app.middleware("http")
    async def _request_context(request: Request, call_next: Any) -> Response:
        with use_request_context(request.headers.get("X-Request-ID")) as ctx:
            started = time.perf_counter()
            response: Response = await call_next(request)
            response.headers["X-Request-ID"] = ctx["request_id"]
            logger.info(
                "http request",
                extra={
                    "event": "http_request",
                    "service": "gateway",
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": (time.perf_counter() - started) * 1000.0,
                    "attributes": {"method": request.method},
                },
            )
            return response

    # ----------------------------
    # Error mapping
    # ----------------------------

    @app.exception_handler(TaskboardError)
    async def _taskboard_error(request: Request, exc: TaskboardError) -> JSONResponse:
        metrics.increment("gateway_errors", {"kind": type(exc).__name__})
        if exc.status_code >= 500:
            logger.error(
                "request failed",
                exc_info=exc,
                extra={"event": "gateway_error", "service": "gateway", "path": request.url.path},
            )
            return JSONResponse(status_code=exc.status_code, content={"message": exc.message})
        logger.info(
            "request rejected",
            extra={
                "event": "request_rejected",
                "service": "gateway",
                "path": request.url.path,
                "status_code": exc.status_code,
                "attributes": {"kind": type(exc).__name__, "reason": exc.message},
            },
        )
        return JSONResponse(status_code=exc.status_code, content={"message": exc.message})

    @app.exception_handler(RequestValidationError)
    async def _request_invalid(request: Request, exc: RequestValidationError) -> JSONResponse:
        metrics.increment("gateway_errors", {"kind": "ValidationError"})
        return JSONResponse(status_code=400, content={"message": _validation_message(exc)})

    @app.exception_handler(Exception)
    async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "unhandled error",
            exc_info=exc,
            extra={"event": "gateway_error", "service": "gateway", "path": request.url.path},
        )
        metrics.increment("gateway_errors", {"kind": "Internal"})
        return JSONResponse(status_code=500, content={"message": "Internal server error"})

    # ----------------------------
    # Auth
    # ----------------------------

    async def current_owner(request: Request) -> str:
        token = request.cookies.get(TOKEN_COOKIE) or bearer_token(
            request.headers.get("Authorization")
        )
        owner_id = auth.authenticate(token)
        bind_owner(owner_id)
        return owner_id

    # ----------------------------
    # Service endpoints
    # ----------------------------

    @app.get("/")
    async def root() -> PlainTextResponse:
        return PlainTextResponse("Hello from taskboard")

    @app.get("/health")
    async def health() -> dict[str, str]:  # lightweight healthcheck endpoint
        return {"status": "ok"}

    @app.get("/ready")
    async def ready() -> JSONResponse:
        try:
            ok = await store.ping()
        except Exception:
            ok = False
        if not ok:
            logger.error(
                "gateway not ready",
                extra={"event": "gateway_error", "service": "gateway", "path": "ready"},
            )
            metrics.increment("gateway_ready_errors", {})
            return JSONResponse(status_code=503, content={"message": "store not ready"})
        return JSONResponse(content={"status": "ok"})

    # ----------------------------
    # Task endpoints
    # ----------------------------

    @app.post("/tasks", status_code=201)
    async def create_task(
        body: CreateTaskRequest, owner_id: str = Depends(current_owner)
    ) -> dict[str, Any]:
        task = await service.create(owner_id, body.title, body.description, body.category)
        return task.to_wire()

    @app.get("/tasks")
    async def list_tasks(owner_id: str = Depends(current_owner)) -> list[dict[str, Any]]:
        return [t.to_wire() for t in await service.list_tasks(owner_id)]

    @app.post("/tasks/reorderColumn")
    async def reorder_column(
        body: Any = Body(...), owner_id: str = Depends(current_owner)
    ) -> dict[str, Any]:
        result = await service.reorder(owner_id, body)
        return result.summary()

    @app.put("/tasks/{task_id}")
    async def update_task(
        task_id: str, body: UpdateTaskRequest, owner_id: str = Depends(current_owner)
    ) -> dict[str, Any]:
        task = await service.update(owner_id, task_id, body.present_fields())
        return task.to_wire()

    @app.delete("/tasks/{task_id}")
    async def delete_task(task_id: str, owner_id: str = Depends(current_owner)) -> dict[str, str]:
        await service.remove(owner_id, task_id)
        return {"message": "Task deleted successfully."}

    # ----------------------------
    # Realtime channel
    # ----------------------------

    @app.get("/events")
    async def events(request: Request, max_events: int | None = None) -> Response:
        """Server-Sent Events feed of task lifecycle events.

        Semantics:
        - Every connected client receives every event (no owner scoping).
        - The feed starts at the current tail: events published before the
          client connected are not replayed.
        - Frames carry `event: taskCreated|taskMoved|taskDeleted` and the
          JSON `data` (full task, or the deleted task id as a string).

        Parameters:
        - max_events: optional testing aid to stop after N events
        """
        topic = broadcaster.topic
        tail = await asyncio.to_thread(lambda: list(bus.read(topic, last_id=None, limit=1)))
        # Stream positions rather than message ids, so trimming never strands a viewer
        start_cursor: str | None = (tail[-1].cursor or tail[-1].id) if tail else None

        async def event_gen() -> Any:
            cursor = start_cursor
            sent = 0
            last_hb = time.monotonic()
            try:
                while True:
                    if shutdown_flag.is_set():
                        return
                    if await request.is_disconnected():
                        return

                    items = await asyncio.to_thread(
                        lambda: list(bus.read(topic, last_id=cursor, limit=100))
                    )
                    for m in items:
                        name = str(m.payload.get("event") or "message")
                        data = json.dumps(m.payload.get("data"), separators=(",", ":"))
                        yield f"id: {m.id}\nevent: {name}\ndata: {data}\n\n"
                        cursor = m.cursor or m.id
                        sent += 1
                        if max_events is not None and sent >= max_events:
                            return
                    if not items:
                        # avoid tight loop when no new items are available
                        await asyncio.sleep(_POLL_INTERVAL_S)
                    # Heartbeat keeps connections alive through proxies
                    now = time.monotonic()
                    if now - last_hb >= _HEARTBEAT_S:
                        last_hb = now
                        yield ":\n\n"
            except asyncio.CancelledError:
                return

        logger.info(
            "gateway stream start",
            extra={"event": "gateway_stream", "service": "gateway", "path": "events"},
        )
        metrics.increment("gateway_streams", {})
        sse_headers = {
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            # Hint for reverse proxies like Nginx to disable response buffering
            "X-Accel-Buffering": "no",
        }
        return StreamingResponse(event_gen(), media_type="text/event-stream", headers=sse_headers)

    return app


__all__ = ["create_app"]
