"""
Session host routes: provision, tear down, and report health.
"""

import json
import logging
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .logging_utils import log_event
from .schemas import HostRequest, TeardownRequest
from .service import HostOutcome, SessionHostService


async def _read_payload(request: Request) -> dict[str, Any]:
    """Bodies are optional; anything that is not a JSON object reads as empty."""
    raw = await request.body()
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {}
    return data if isinstance(data, dict) else {}


def _respond(outcome: HostOutcome) -> JSONResponse:
    return JSONResponse(content=outcome.body, status_code=outcome.status_code)


def _bad_request(exc: ValidationError) -> JSONResponse:
    fields = ", ".join(
        ".".join(str(part) for part in error.get("loc", ())) or "body"
        for error in exc.errors()
    )
    return JSONResponse(
        content={"ok": False, "error": f"invalid request: {fields}"}, status_code=400
    )


def _internal_error(request: Request, event: str, exc: Exception) -> JSONResponse:
    log_event(request.app.state.logger, logging.ERROR, event, exc=exc)
    return JSONResponse(
        content={"ok": False, "error": str(exc) or exc.__class__.__name__},
        status_code=500,
    )


def build_session_routes() -> APIRouter:
    router = APIRouter()

    @router.post("/api/game/host")
    async def host_session(request: Request):
        service: SessionHostService = request.app.state.session_service
        try:
            host_request = HostRequest.model_validate(await _read_payload(request))
        except ValidationError as exc:
            return _bad_request(exc)
        try:
            outcome = await service.handle_host_request(host_request)
        except Exception as exc:
            return _internal_error(request, "game_host.host.internal_error", exc)
        return _respond(outcome)

    @router.delete("/api/game/host")
    async def teardown_session(request: Request):
        service: SessionHostService = request.app.state.session_service
        try:
            teardown_request = TeardownRequest.model_validate(await _read_payload(request))
        except ValidationError as exc:
            return _bad_request(exc)
        try:
            outcome = await service.handle_teardown_request(teardown_request)
        except Exception as exc:
            return _internal_error(request, "game_host.teardown.internal_error", exc)
        return _respond(outcome)

    @router.get("/api/game/health")
    def health(request: Request):
        service: SessionHostService = request.app.state.session_service
        return {
            "ok": True,
            "controlPlane": service.control_plane_configured,
            "localEnabled": service.local_enabled,
        }

    return router


__all__ = ["build_session_routes"]
