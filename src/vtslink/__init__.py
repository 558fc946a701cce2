"""vtslink — a shared, self-authenticating VTube Studio API connection.

Exports the building blocks an integration needs:
  - PluginConnection — attach/detach reference counting + call()
  - RequestRunner    — one attached caller mapping messages to API calls
  - EndpointConfig   — where to connect and how the plugin identifies itself
  - token stores     — MemoryTokenStore, FileTokenStore
  - errors           — APIError, ClientError and its subclasses
"""

__version__ = "0.1.0"

from .connection import PluginConnection
from .errors import (
    APIError,
    ClientError,
    DisconnectedError,
    InvalidEndpointError,
    NotReadyError,
    ProtocolError,
    RequestTimeoutError,
    SendFailedError,
    VTSError,
)
from .models import (
    ConnectionStatus,
    EndpointConfig,
    ResponseEnvelope,
    StatusReport,
    Timings,
)
from .requester import RequestRunner, serialize_error
from .token_store import FileTokenStore, MemoryTokenStore, TokenStore

__all__ = [
    "APIError",
    "ClientError",
    "ConnectionStatus",
    "DisconnectedError",
    "EndpointConfig",
    "FileTokenStore",
    "InvalidEndpointError",
    "MemoryTokenStore",
    "NotReadyError",
    "PluginConnection",
    "ProtocolError",
    "RequestRunner",
    "RequestTimeoutError",
    "ResponseEnvelope",
    "SendFailedError",
    "StatusReport",
    "Timings",
    "TokenStore",
    "VTSError",
    "serialize_error",
]
