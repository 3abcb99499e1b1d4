from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError
import asyncio
import logging

from core.config import (
    CORS_ALLOW_ORIGINS,
    QA_MODE,
    SESSION_CLEANUP_INTERVAL_SEC,
    SESSION_CLEANUP_TTL_SEC,
    SESSION_STORE_BACKEND,
)
from orchestrator.schemas import (
    CompleteRoundRequest,
    ContextResponse,
    EventOutcomeResponse,
    ProctoringSignal,
    StartRoundRequest,
    StartSessionRequest,
)
from orchestrator.sequencer import contract
from orchestrator.session.errors import NoActiveSession, RoundOrderViolation
from orchestrator.session.registry import runtime_registry
from orchestrator.session.runtime import InterviewRuntime
from orchestrator.system_metrics import get_metrics_snapshot

app = FastAPI(title="Interview Orchestrator")
logger = logging.getLogger("orchestrator.main")


def _get_allowed_origins() -> list[str]:
    if not CORS_ALLOW_ORIGINS:
        return [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]
    return [item.strip() for item in CORS_ALLOW_ORIGINS.split(",") if item.strip()]


_allowed_origins = _get_allowed_origins()

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=False,
)

_session_cleanup_task: asyncio.Task | None = None


def _client_id(request: Request) -> str:
    return str(request.headers.get("x-client-id") or "").strip() or "default"


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=422, detail=jsonable_encoder(exc.errors(include_url=False)))
    if isinstance(exc, NoActiveSession):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, RoundOrderViolation):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


@app.on_event("startup")
async def startup_banner():
    global _session_cleanup_task
    if QA_MODE:
        logger.info("[SYSTEM] QA_MODE ENABLED")
    logger.info("[SYSTEM] CORS allow_origins=%s", _allowed_origins)
    logger.info("[SYSTEM] session store backend=%s", SESSION_STORE_BACKEND)

    async def _session_cleanup_loop():
        while True:
            await asyncio.sleep(SESSION_CLEANUP_INTERVAL_SEC)
            removed = runtime_registry.cleanup_inactive(SESSION_CLEANUP_TTL_SEC)
            if removed > 0:
                logger.info("[SYSTEM] cleaned inactive runtimes=%s", removed)

    _session_cleanup_task = asyncio.create_task(_session_cleanup_loop())


@app.on_event("shutdown")
async def shutdown_handler():
    global _session_cleanup_task
    if _session_cleanup_task is not None:
        _session_cleanup_task.cancel()
        try:
            await _session_cleanup_task
        except asyncio.CancelledError:
            pass
        finally:
            _session_cleanup_task = None
    runtime_registry.clear()
    logger.info("[SYSTEM] shutdown complete")


@app.get("/healthz")
async def healthz():
    return {"status": "ok", "service": "orchestrator"}


@app.post("/api/session/start")
def start_session(req: StartSessionRequest, request: Request):
    runtime = runtime_registry.get_or_create(_client_id(request))
    try:
        session = runtime.start(req.mode, req.user_name, req.topics)
    except ValueError as exc:
        raise _http_error(exc)
    return {
        "session": session.to_dict(),
        "progress": contract.progress_label(session.question_index),
        "schedule": contract.describe_schedule(session.mode),
    }


@app.get("/api/session")
def get_session_route(request: Request):
    runtime = runtime_registry.get_or_create(_client_id(request))
    return runtime.snapshot()


@app.post("/api/session/end")
def end_session(request: Request):
    client_id = _client_id(request)
    runtime = runtime_registry.get_or_create(client_id)
    session_id = runtime.store.session_id
    runtime.end()
    runtime_registry.mark_inactive(client_id)
    return {"ended": bool(session_id), "session_id": session_id or None}


@app.post("/api/session/events", response_model=EventOutcomeResponse)
def ingest_event(payload: dict, request: Request):
    client_id = _client_id(request)
    runtime = runtime_registry.get_or_create(client_id)
    try:
        outcome = runtime.ingest(payload)
    except (ValidationError, ValueError) as exc:
        raise _http_error(exc)
    runtime_registry.touch(client_id)

    session = runtime.session
    return EventOutcomeResponse(
        **outcome.to_dict(),
        progress=contract.progress_label(session.question_index) if session else None,
    )


def _apply_proctoring_signal(runtime: InterviewRuntime, req: ProctoringSignal):
    if req.signal == "visibility":
        return runtime.on_visibility_change(req.hidden)
    if req.signal == "fullscreen":
        return runtime.on_fullscreen_change(req.is_fullscreen)
    if req.ok:
        runtime.enter_fullscreen()
    else:
        runtime.fullscreen_unavailable(req.error)
    return None


@app.post("/api/session/proctoring")
async def proctoring_signal(req: ProctoringSignal, request: Request):
    client_id = _client_id(request)
    runtime = await asyncio.to_thread(runtime_registry.get_or_create, client_id)
    if runtime.session is None:
        raise _http_error(NoActiveSession("proctoring"))

    # warning clear timers stay on this loop; persistence runs off it
    runtime.bind_loop(asyncio.get_running_loop())
    warning = await asyncio.to_thread(_apply_proctoring_signal, runtime, req)
    runtime_registry.touch(client_id)

    session = runtime.session
    return {
        "warning": warning.to_dict() if warning else None,
        "proctoring": runtime.monitor.snapshot() if runtime.monitor is not None else None,
        "interview_status": session.interview_status.value if session else None,
        "ended_reason": session.ended_reason if session else None,
    }


@app.post("/api/session/rounds/start")
def start_round(req: StartRoundRequest, request: Request):
    runtime = runtime_registry.get_or_create(_client_id(request))
    try:
        session = runtime.store.start_round(req.topic, req.question_type)
    except (NoActiveSession, RoundOrderViolation, ValueError) as exc:
        raise _http_error(exc)
    return {"session": session.to_dict()}


@app.post("/api/session/rounds/complete")
def complete_round(req: CompleteRoundRequest, request: Request):
    runtime = runtime_registry.get_or_create(_client_id(request))
    try:
        session = runtime.store.complete_round(req.score, req.max_score, round_index=req.round_index)
    except (NoActiveSession, RoundOrderViolation, ValueError) as exc:
        raise _http_error(exc)
    return {"session": session.to_dict()}


@app.get("/api/session/context", response_model=ContextResponse)
def session_context(request: Request):
    runtime = runtime_registry.get_or_create(_client_id(request))
    session = runtime.session
    return ContextResponse(
        session_id=session.id if session else None,
        mode=session.mode.value if session else None,
        context=runtime.context(),
    )


@app.get("/api/session/analysis")
def session_analysis(request: Request):
    runtime = runtime_registry.get_or_create(_client_id(request))
    return runtime.analysis()


@app.get("/api/session/directives")
def drain_directives(request: Request):
    runtime = runtime_registry.get_or_create(_client_id(request))
    return {"items": [item.to_dict() for item in runtime.drain_directives()]}


@app.get("/api/system/metrics")
def system_metrics_route():
    return get_metrics_snapshot(extra={
        "session_store_backend": SESSION_STORE_BACKEND,
        "runtimes_registered": len(runtime_registry),
    })
