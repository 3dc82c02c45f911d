from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from .config import HostConfig
from .logging_utils import log_event
from .utils import strip_trailing_slashes

# Some reverse proxies mount the controller at the root while operators
# configure ``.../api``; a 404 there is retried once without the segment.
ROUTING_QUIRK_SEGMENT = "/api"


class DelegateError(Exception):
    """The control plane could not satisfy the request."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ControlPlaneClient:
    def __init__(
        self,
        base_url: str,
        *,
        path: str = "/host",
        api_key: Optional[str] = None,
        api_key_header: str = "x-api-key",
        timeout: Optional[float] = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.base_url = strip_trailing_slashes(base_url)
        self.path = "/" + path.strip().lstrip("/") if path.strip() else ""
        self._api_key = api_key
        self._api_key_header = api_key_header
        self._timeout = timeout
        self._transport = transport
        self._logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_config(
        cls,
        config: HostConfig,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[logging.Logger] = None,
    ) -> Optional["ControlPlaneClient"]:
        control_plane = config.control_plane
        if not control_plane.configured:
            return None
        return cls(
            control_plane.base_url,
            path=control_plane.path,
            api_key=control_plane.api_key,
            api_key_header=control_plane.api_key_header,
            timeout=control_plane.timeout_seconds,
            transport=transport,
            logger=logger,
        )

    def url_for(self, base_url: Optional[str] = None) -> str:
        return f"{base_url if base_url is not None else self.base_url}{self.path}"

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers[self._api_key_header] = self._api_key
        return headers

    async def host(self, requester_id: Optional[str]) -> dict[str, Any]:
        return await self._send("POST", {"requesterId": requester_id})

    async def teardown(self, host_id: str) -> dict[str, Any]:
        return await self._send("DELETE", {"hostId": host_id})

    async def _send(self, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        async with httpx.AsyncClient(
            timeout=self._timeout, transport=self._transport
        ) as client:
            url = self.url_for()
            response = await self._request(client, method, url, payload)
            if response.status_code == 404 and self.base_url.endswith(
                ROUTING_QUIRK_SEGMENT
            ):
                stripped = self.base_url[: -len(ROUTING_QUIRK_SEGMENT)]
                retry_url = self.url_for(stripped)
                log_event(
                    self._logger,
                    logging.INFO,
                    "game_host.control_plane.retry",
                    method=method,
                    url=url,
                    retry_url=retry_url,
                )
                url = retry_url
                response = await self._request(client, method, url, payload)
        return self._parse(method, url, response)

    async def _request(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        payload: dict[str, Any],
    ) -> httpx.Response:
        try:
            return await client.request(
                method, url, json=payload, headers=self._headers()
            )
        except httpx.HTTPError as exc:
            log_event(
                self._logger,
                logging.WARNING,
                "game_host.control_plane.unreachable",
                method=method,
                url=url,
                exc=exc,
            )
            raise DelegateError(
                f"{method} {url} failed: {exc.__class__.__name__}: {exc}"
            ) from exc

    def _parse(self, method: str, url: str, response: httpx.Response) -> dict[str, Any]:
        if not response.is_success:
            text = response.text.strip()
            log_event(
                self._logger,
                logging.WARNING,
                "game_host.control_plane.rejected",
                method=method,
                url=url,
                status=response.status_code,
                body=text[:500] or None,
            )
            raise DelegateError(
                f"Backend error: {response.status_code} {text}".strip(),
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise DelegateError(
                f"Backend returned invalid JSON from {url}",
                status_code=response.status_code,
            ) from exc
        if not isinstance(data, dict):
            raise DelegateError(
                f"Backend returned a non-object payload from {url}",
                status_code=response.status_code,
            )
        if data.get("ok") is False:
            log_event(
                self._logger,
                logging.WARNING,
                "game_host.control_plane.declined",
                method=method,
                url=url,
                error=data.get("error"),
            )
            raise DelegateError(
                str(data.get("error") or f"Backend declined {method} {url}"),
                status_code=response.status_code,
            )
        # Backends answer with the bare session fields; success is implied.
        return {"ok": True, **data}


__all__ = ["ControlPlaneClient", "DelegateError", "ROUTING_QUIRK_SEGMENT"]
