from __future__ import annotations

import logging
import sys
import time
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from .config import STUB_HOST_PREFIX, HostConfig
from .join_code import generate_join_code
from .log_scanner import LogEvent, LogScanError, log_follow_command, scan_for_event
from .logging_utils import log_event
from .process_runner import ProcessError, ProcessRunner, run_process
from .schemas import HostRequest, HostResult
from .utils import strip_trailing_slashes

HOST_GATEWAY_ARG = "--add-host=host.docker.internal:host-gateway"

LogScanner = Callable[..., Awaitable[LogEvent]]


@dataclass(frozen=True)
class ResourceLimits:
    cpus: Optional[str] = None
    cpuset: Optional[str] = None
    memory: Optional[str] = None
    cpu_shares: Optional[str] = None


@dataclass(frozen=True)
class ContainerSpec:
    image: str
    name: str
    env: tuple[tuple[str, str], ...]
    ports: Optional[tuple[str, str]] = None
    limits: Optional[ResourceLimits] = None
    extra_args: tuple[str, ...] = ()
    host_gateway_alias: bool = False


def is_stub_host_id(host_id: str) -> bool:
    return host_id.startswith(STUB_HOST_PREFIX)


def container_name(config: HostConfig) -> str:
    local = config.local
    if local.container_name:
        return local.container_name
    return f"{local.container_prefix}-{uuid.uuid4().hex[:12]}"


def build_container_spec(
    config: HostConfig,
    request: HostRequest,
    *,
    platform: str = sys.platform,
    name: Optional[str] = None,
) -> ContainerSpec:
    local = config.local
    env: list[tuple[str, str]] = [
        ("UNITY_SERVER_SCENE", local.scene),
        ("RELAY_REGION", local.relay_region),
        ("RL_MAX_CONNECTIONS", str(local.max_connections)),
    ]
    user_api_base = strip_trailing_slashes(local.user_api_base) or strip_trailing_slashes(
        config.user_api_url
    )
    if user_api_base:
        env.append(("USER_API_BASE", user_api_base))
    env.append(("INSECURE_TLS", "1" if local.insecure_tls else "0"))
    if local.game_api_key:
        env.append(("GAME_API_KEY", local.game_api_key))
    if request.requester_id:
        env.append(("USER_ID", request.requester_id))
    env.append(("PORT", local.env_port or local.port_container))
    env.extend(local.extra_env)

    ports = (local.port_host, local.port_container) if local.port_host else None
    limits: Optional[ResourceLimits] = None
    if local.cpus or local.cpuset or local.memory or local.cpu_shares:
        limits = ResourceLimits(
            cpus=local.cpus,
            cpuset=local.cpuset,
            memory=local.memory,
            cpu_shares=local.cpu_shares,
        )
    return ContainerSpec(
        image=local.image,
        name=name or container_name(config),
        env=tuple(env),
        ports=ports,
        limits=limits,
        extra_args=local.extra_args,
        host_gateway_alias=platform.startswith("linux"),
    )


def build_run_args(spec: ContainerSpec) -> list[str]:
    """Arguments for ``<runtime> run``: detached and removed on exit."""
    args = ["run", "--rm", "--name", spec.name, "-d"]
    if spec.ports:
        host_port, container_port = spec.ports
        args.extend(["-p", f"{host_port}:{container_port}"])
    if spec.limits:
        if spec.limits.cpus:
            args.extend(["--cpus", spec.limits.cpus])
        if spec.limits.cpuset:
            args.extend(["--cpuset-cpus", spec.limits.cpuset])
        if spec.limits.memory:
            args.extend(["-m", spec.limits.memory])
        if spec.limits.cpu_shares:
            args.extend(["--cpu-shares", spec.limits.cpu_shares])
    args.extend(spec.extra_args)
    if spec.host_gateway_alias:
        args.append(HOST_GATEWAY_ARG)
    for key, value in spec.env:
        args.extend(["-e", f"{key}={value}"])
    args.append(spec.image)
    return args


class LocalContainerOrchestrator:
    """Starts a game-server container and waits for it to report a join code."""

    def __init__(
        self,
        config: HostConfig,
        *,
        runner: ProcessRunner = run_process,
        scanner: LogScanner = scan_for_event,
        logger: Optional[logging.Logger] = None,
        platform: str = sys.platform,
    ) -> None:
        self._config = config
        self._runner = runner
        self._scanner = scanner
        self._logger = logger or logging.getLogger(__name__)
        self._platform = platform

    def stub_result(self, reason: str) -> HostResult:
        return HostResult(
            ok=True,
            join_code=generate_join_code(),
            host_id=f"{STUB_HOST_PREFIX}{int(time.time() * 1000)}",
            message=(
                "Game server could not be confirmed; returning a stubbed join "
                f"code for development. Reason: {reason}"
            ),
            ws_url=self._config.ws_url,
        )

    async def provision(self, request: HostRequest) -> HostResult:
        """
        Start a container and return its join code.

        Raises ProcessError when the container does not start. A container
        that starts but never reports a code degrades to a stub result.
        """
        local = self._config.local
        spec = build_container_spec(self._config, request, platform=self._platform)
        await self._runner(local.runtime, build_run_args(spec), logger=self._logger)
        log_event(
            self._logger,
            logging.INFO,
            "game_host.container.started",
            container=spec.name,
            image=spec.image,
            requester_id=request.requester_id,
        )
        try:
            event = await self._scanner(
                log_follow_command(local.runtime, spec.name),
                timeout_ms=local.log_timeout_ms,
                logger=self._logger,
            )
        except LogScanError as exc:
            log_event(
                self._logger,
                logging.WARNING,
                "game_host.container.unconfirmed",
                container=spec.name,
                timeout_ms=local.log_timeout_ms,
                exc=exc,
            )
            return self.stub_result(str(exc))
        return HostResult(
            ok=True,
            join_code=event.join_code,
            host_id=spec.name,
            message=f"Game server started via local runtime ({spec.image}).",
            ws_url=self._config.ws_url,
        )

    async def remove(self, host_id: str) -> HostResult:
        try:
            await self._runner(
                self._config.local.runtime, ["rm", "-f", host_id], logger=self._logger
            )
        except ProcessError as exc:
            log_event(
                self._logger,
                logging.WARNING,
                "game_host.container.remove_failed",
                container=host_id,
                exc=exc,
            )
            return HostResult(ok=False, host_id=host_id, error=exc.message)
        log_event(
            self._logger, logging.INFO, "game_host.container.removed", container=host_id
        )
        return HostResult(ok=True, host_id=host_id, message=f"Container {host_id} removed.")


__all__ = [
    "ContainerSpec",
    "HOST_GATEWAY_ARG",
    "LocalContainerOrchestrator",
    "ResourceLimits",
    "STUB_HOST_PREFIX",
    "build_container_spec",
    "build_run_args",
    "container_name",
    "is_stub_host_id",
]
