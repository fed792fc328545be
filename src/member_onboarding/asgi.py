"""
FastAPI + Uvicorn ASGI application exposing the onboarding session for diagnostics.

On startup the lifespan builds one OnboardingFlowController from settings and
starts the session in a background task; the endpoints read its flow state
and analytics and let an operator retry or dismiss the welcome.

Endpoints:
  - GET  /health             liveness (503 on startup failure)
  - GET  /ready              readiness (202 while the session is starting)
  - GET  /flow               current flow snapshot
  - POST /flow/retry         retry the failed step
  - POST /flow/continue      dismiss the new-member welcome
  - GET  /analytics/summary  derived rates and metrics
  - GET  /analytics/export   full analytics report

Entry point: uvicorn member_onboarding.asgi:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from member_onboarding import __version__
from member_onboarding.config import AppSettings
from member_onboarding.controller import OnboardingFlowController
from member_onboarding.main import build_controller, configure_structlog

# ─────────────────────── Global State ───────────────────────
# Set during app startup and read by the endpoints.

_controller: OnboardingFlowController | None = None
_session_task: asyncio.Task[Any] | None = None
_error_message: str | None = None
log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Startup: load settings, build the controller and start the session.
    Shutdown: cancel the session task and dispose the controller.
    """
    global _controller, _session_task, _error_message

    log.info("asgi.startup")

    try:
        settings = AppSettings()  # type: ignore[call-arg]
    except Exception as e:
        _error_message = f"Configuration error: {e}"
        log.error("asgi.startup_error", error=_error_message)
        raise

    configure_structlog(settings.log_level)
    log.info("asgi.startup_config", version=__version__, log_level=settings.log_level)

    _controller = build_controller(settings)
    _session_task = asyncio.create_task(_run_session(_controller))

    yield

    log.info("asgi.shutdown", reason="SIGTERM or server stop")
    if _session_task is not None and not _session_task.done():
        _session_task.cancel()
    if _controller is not None:
        _controller.dispose()
    log.info("asgi.shutdown_complete")


async def _run_session(controller: OnboardingFlowController) -> None:
    global _error_message
    try:
        await controller.start()
        await controller.settle()
        log.info("asgi.session_settled", flow_state=controller.flow_state.value)
    except Exception as e:
        _error_message = f"Session error: {e}"
        log.exception("asgi.session_error")


# ─────────────────────── FastAPI Application ───────────────────────

app = FastAPI(
    title="member-onboarding",
    description="Membership onboarding client: flow state and registration analytics",
    version=__version__,
    lifespan=lifespan,
)


def _unavailable() -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content={"status": "unavailable", "reason": "Session not initialized"},
    )


@app.get("/health")
async def health() -> JSONResponse:
    """Liveness: 200 unless startup or the session crashed."""
    if _error_message:
        log.warning("health.check_failed", error=_error_message)
        return JSONResponse(status_code=503, content={"status": "unhealthy", "error": _error_message})
    return JSONResponse(status_code=200, content={"status": "healthy"})


@app.get("/ready")
async def ready() -> JSONResponse:
    """Readiness: 202 until the session's first start has completed."""
    if _error_message:
        return JSONResponse(status_code=503, content={"status": "error", "error": _error_message})
    if _controller is None or (_session_task is not None and not _session_task.done()):
        return JSONResponse(status_code=202, content={"status": "starting"})
    return JSONResponse(
        status_code=200,
        content={"status": "ready", "flow_state": _controller.flow_state.value},
    )


@app.get("/flow")
async def flow() -> JSONResponse:
    if _controller is None:
        return _unavailable()
    return JSONResponse(status_code=200, content=_controller.snapshot().to_dict())


@app.post("/flow/retry")
async def retry() -> JSONResponse:
    """Retry whatever failed; returns the snapshot after the retry ran."""
    if _controller is None:
        return _unavailable()
    log.info("flow.manual_retry", source="REST")
    await _controller.retry()
    return JSONResponse(status_code=200, content=_controller.snapshot().to_dict())


@app.post("/flow/continue")
async def continue_flow() -> JSONResponse:
    if _controller is None:
        return _unavailable()
    _controller.continue_()
    return JSONResponse(status_code=200, content=_controller.snapshot().to_dict())


@app.get("/analytics/summary")
async def analytics_summary() -> JSONResponse:
    if _controller is None:
        return _unavailable()
    return JSONResponse(status_code=200, content=_controller.analytics.get_summary().to_dict())


@app.get("/analytics/export")
async def analytics_export() -> JSONResponse:
    if _controller is None:
        return _unavailable()
    return JSONResponse(status_code=200, content=_controller.analytics.export_data())


if __name__ == "__main__":
    # For local testing: python -m uvicorn member_onboarding.asgi:app --reload
    import uvicorn

    uvicorn.run(
        "member_onboarding.asgi:app",
        host="0.0.0.0",
        port=8000,
        reload=False,
        log_level="info",
    )
