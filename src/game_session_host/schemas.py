"""
Pydantic request/response schemas for the session host routes.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class ResponseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class HostRequest(Payload):
    requester_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("requesterId", "requester_id", "userId"),
    )


class TeardownRequest(Payload):
    host_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("hostId", "host_id")
    )


class HostResult(ResponseModel):
    """
    The one response shape every provisioning path produces.

    ``ok`` results carry a join code; failed results carry ``error``.
    """

    ok: bool
    join_code: Optional[str] = Field(default=None, serialization_alias="joinCode")
    host_id: Optional[str] = Field(default=None, serialization_alias="hostId")
    message: Optional[str] = None
    ws_url: Optional[str] = Field(default=None, serialization_alias="wsUrl")
    error: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def failure(error: str, **fields: Any) -> HostResult:
    return HostResult(ok=False, error=error, **fields)


__all__ = ["HostRequest", "HostResult", "Payload", "ResponseModel", "TeardownRequest", "failure"]
