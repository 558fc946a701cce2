"""Shared Pydantic models — endpoint settings, wire envelopes, status reports."""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

API_NAME = "VTubeStudioPublicAPI"
API_VERSION = "1.0"
API_ERROR = "APIError"

# Reserved errorID values that drive automatic recovery.
ERROR_API_INACTIVE = 1
ERROR_TOKEN_INVALIDATED = 8


class EndpointConfig(BaseModel):
    """Where to connect and how the plugin introduces itself."""

    model_config = ConfigDict(frozen=True)

    address: str = "ws://localhost:8001"
    plugin_name: str = "vtslink"
    plugin_developer: str = "vtslink"
    plugin_icon: str | None = None  # base64 PNG, 128x128
    store: str = "default"  # token scope


class Timings(BaseModel):
    """Timeouts and retry backoffs, in seconds."""

    model_config = ConfigDict(frozen=True)

    request_timeout: float = 5.0
    reconnect_delay: float = 5.0
    liveness_retry_delay: float = 5.0
    auth_retry_delay: float = 20.0
    requeue_delay: float = 0.001
    open_timeout: float = 10.0


class RequestEnvelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    api_name: str = Field(API_NAME, alias="apiName")
    api_version: str = Field(API_VERSION, alias="apiVersion")
    message_type: str = Field(alias="messageType")
    request_id: str = Field(alias="requestID")
    data: Any = None


class ErrorData(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    error_id: int = Field(alias="errorID")
    message: str = ""


class ResponseEnvelope(BaseModel):
    """Inbound frame. Unknown fields are kept so callers see the full original."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    api_name: str = Field(alias="apiName")
    api_version: str | None = Field(None, alias="apiVersion")
    timestamp: int | float | None = None
    message_type: str = Field(alias="messageType")
    request_id: str | None = Field(None, alias="requestID")
    data: Any = None

    @property
    def is_error(self) -> bool:
        return self.message_type == API_ERROR

    @property
    def error(self) -> ErrorData | None:
        if not self.is_error:
            return None
        return ErrorData.model_validate(self.data)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    AUTHENTICATING = "authenticating"
    READY = "ready"
    ERROR = "error"
    INACTIVE = "inactive"


_FILLS: dict[ConnectionStatus, str] = {
    ConnectionStatus.CONNECTING: "blue",
    ConnectionStatus.AUTHENTICATING: "blue",
    ConnectionStatus.CONNECTED: "green",
    ConnectionStatus.READY: "green",
}


class StatusReport(BaseModel):
    """What every attached caller is shown: a coloured dot plus a label."""

    model_config = ConfigDict(frozen=True)

    status: ConnectionStatus
    fill: Literal["red", "green", "blue"]
    shape: Literal["dot", "ring"] = "dot"
    text: str

    @classmethod
    def of(cls, status: ConnectionStatus, text: str | None = None) -> StatusReport:
        return cls(
            status=status,
            fill=_FILLS.get(status, "red"),
            text=text or status.value,
        )
