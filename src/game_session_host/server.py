import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from . import __version__
from .config import HostConfig, load_config
from .logging_utils import log_event, setup_rotating_logger
from .routes import build_session_routes
from .service import SessionHostService


def create_app(
    config: Optional[HostConfig] = None,
    *,
    service: Optional[SessionHostService] = None,
) -> FastAPI:
    config = config or load_config()
    app = FastAPI(title="game-session-host", version=__version__, redirect_slashes=False)
    app.state.config = config
    app.state.logger = setup_rotating_logger("game-session-host", config.log)
    app.state.session_service = service or SessionHostService(
        config, logger=app.state.logger
    )
    log_event(
        app.state.logger,
        logging.INFO,
        "game_host.server.ready",
        version=__version__,
        control_plane=config.control_plane.base_url,
        local_enabled=config.local.enabled,
        runtime=config.local.runtime if config.local.enabled else None,
    )

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        log_event(
            app.state.logger,
            logging.ERROR,
            "game_host.http.unhandled",
            path=request.url.path,
            exc=exc,
        )
        return JSONResponse(
            content={"ok": False, "error": "internal error"}, status_code=500
        )

    app.include_router(build_session_routes())
    return app


__all__ = ["create_app"]
