from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from .config import HostConfig
from .control_plane import ControlPlaneClient, DelegateError
from .local_orchestrator import LocalContainerOrchestrator, is_stub_host_id
from .logging_utils import log_event
from .process_runner import ProcessError
from .schemas import HostRequest, HostResult, TeardownRequest, failure


class InvalidRequestError(Exception):
    """A required request field is missing or malformed."""

    def __init__(self, reason: str, detail: str):
        super().__init__(detail)
        self.reason = reason
        self.detail = detail


@dataclass
class HostOutcome:
    status_code: int
    body: dict[str, Any]

    @property
    def ok(self) -> bool:
        return bool(self.body.get("ok"))

    @classmethod
    def from_result(cls, result: HostResult, status_code: int = 200) -> "HostOutcome":
        return cls(status_code=status_code, body=result.to_payload())


class SessionHostService:
    """
    Entry points for provisioning and tearing down game sessions.

    Tiers are tried in order: control plane, then the local container
    runtime (only when enabled), with a stub join code as the last resort.
    """

    def __init__(
        self,
        config: HostConfig,
        *,
        control_plane: Optional[ControlPlaneClient] = None,
        orchestrator: Optional[LocalContainerOrchestrator] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config
        self._logger = logger or logging.getLogger(__name__)
        self._control_plane = (
            control_plane
            if control_plane is not None
            else ControlPlaneClient.from_config(config, logger=self._logger)
        )
        self._orchestrator = orchestrator or LocalContainerOrchestrator(
            config, logger=self._logger
        )

    @property
    def control_plane_configured(self) -> bool:
        return self._control_plane is not None

    @property
    def local_enabled(self) -> bool:
        return self.config.local.enabled

    async def handle_host_request(self, request: HostRequest) -> HostOutcome:
        control_plane_error: Optional[str] = None
        if self._control_plane is not None:
            try:
                payload = await self._control_plane.host(request.requester_id)
            except DelegateError as exc:
                control_plane_error = exc.message
                log_event(
                    self._logger,
                    logging.WARNING,
                    "game_host.control_plane.failed",
                    url=self._control_plane.url_for(),
                    status=exc.status_code,
                    local_enabled=self.local_enabled,
                    exc=exc,
                )
            else:
                return HostOutcome(status_code=200, body=payload)

        if not self.local_enabled:
            if control_plane_error is not None:
                return HostOutcome.from_result(
                    failure(f"control plane failed: {control_plane_error}"), 502
                )
            return HostOutcome.from_result(failure("control plane not configured"), 503)

        try:
            result = await self._orchestrator.provision(request)
        except ProcessError as exc:
            log_event(
                self._logger,
                logging.ERROR,
                "game_host.container.start_failed",
                image=self.config.local.image,
                returncode=exc.returncode,
                exc=exc,
            )
            return HostOutcome.from_result(
                failure(f"container start failed: {exc.message}"), 502
            )
        except Exception as exc:
            log_event(
                self._logger,
                logging.ERROR,
                "game_host.local.unexpected_error",
                image=self.config.local.image,
                exc=exc,
            )
            result = self._orchestrator.stub_result(str(exc) or exc.__class__.__name__)
        return HostOutcome.from_result(result)

    async def handle_teardown_request(self, request: TeardownRequest) -> HostOutcome:
        try:
            host_id = _require_host_id(request)
        except InvalidRequestError as exc:
            return HostOutcome.from_result(failure(exc.detail), 400)

        if self._control_plane is not None:
            try:
                payload = await self._control_plane.teardown(host_id)
            except DelegateError as exc:
                log_event(
                    self._logger,
                    logging.WARNING,
                    "game_host.control_plane.teardown_failed",
                    url=self._control_plane.url_for(),
                    host_id=host_id,
                    status=exc.status_code,
                    exc=exc,
                )
                return HostOutcome.from_result(failure(exc.message, host_id=host_id), 502)
            return HostOutcome(status_code=200, body=payload)

        if not self.local_enabled or is_stub_host_id(host_id):
            return HostOutcome.from_result(
                HostResult(
                    ok=True,
                    host_id=host_id,
                    message="Nothing to remove for this host.",
                )
            )

        result = await self._orchestrator.remove(host_id)
        return HostOutcome.from_result(result, 200 if result.ok else 502)


def _require_host_id(request: TeardownRequest) -> str:
    host_id = (request.host_id or "").strip()
    if not host_id:
        raise InvalidRequestError("missing_host_id", "hostId is required")
    return host_id


__all__ = ["HostOutcome", "InvalidRequestError", "SessionHostService"]
