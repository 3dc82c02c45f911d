import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
import typer

load_dotenv()
import uvicorn

from .config import ConfigError, HostConfig, load_config
from .join_code import generate_join_code
from .schemas import HostRequest, TeardownRequest
from .server import create_app
from .service import HostOutcome, SessionHostService

app = typer.Typer(add_completion=False)


def _require_config(path: Optional[Path]) -> HostConfig:
    try:
        return load_config(path)
    except ConfigError as exc:
        raise typer.Exit(str(exc))


def _echo_outcome(outcome: HostOutcome) -> None:
    typer.echo(json.dumps(outcome.body, indent=2))
    if not outcome.ok:
        raise typer.Exit(code=1)


def _console_logger() -> logging.Logger:
    logger = logging.getLogger("game_session_host.cli")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
        logger.propagate = False
    return logger


@app.command()
def serve(
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to game-host.yml"),
    host: Optional[str] = typer.Option(None, "--host", help="Host to bind"),
    port: Optional[int] = typer.Option(None, "--port", help="Port to bind"),
):
    """Start the session host HTTP API."""
    config = _require_config(config_path)
    bind_host = host or config.server.host
    bind_port = port or config.server.port
    typer.echo(f"Serving session host on http://{bind_host}:{bind_port}")
    uvicorn.run(create_app(config), host=bind_host, port=bind_port)


@app.command("host")
def host_session(
    requester_id: Optional[str] = typer.Option(None, "--requester-id", help="Requesting player id"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to game-host.yml"),
):
    """Provision one game session and print the result."""
    config = _require_config(config_path)
    service = SessionHostService(config, logger=_console_logger())
    outcome = asyncio.run(
        service.handle_host_request(HostRequest(requester_id=requester_id))
    )
    _echo_outcome(outcome)


@app.command()
def stop(
    host_id: str = typer.Argument(..., help="Host id returned when the session was provisioned"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to game-host.yml"),
):
    """Tear down a game session."""
    config = _require_config(config_path)
    service = SessionHostService(config, logger=_console_logger())
    outcome = asyncio.run(service.handle_teardown_request(TeardownRequest(host_id=host_id)))
    _echo_outcome(outcome)


@app.command("join-code")
def join_code(
    count: int = typer.Option(1, "--count", min=1, help="How many codes to print"),
):
    """Print stub join codes."""
    for _ in range(count):
        typer.echo(generate_join_code())


def main() -> None:
    app()


if __name__ == "__main__":
    main()
