"""Exception types raised by the connection to callers of ``call()``.

Two families reach a caller:
  - ``APIError``    — the remote API answered with an error envelope
  - ``ClientError`` — a local failure (not connected, send failed, timed out,
                      transport closed underneath the call)

``ProtocolError`` is connection-level only: malformed frames force the
transport closed and are never handed to a particular caller.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import ResponseEnvelope


class VTSError(Exception):
    """Base class for every vtslink error."""


class ClientError(VTSError):
    """Local failure, optionally wrapping the error that caused it."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause


class NotReadyError(ClientError):
    pass


class RequestTimeoutError(ClientError):
    pass


class SendFailedError(ClientError):
    pass


class DisconnectedError(ClientError):
    pass


class InvalidEndpointError(ClientError):
    """The configured endpoint address cannot be connected to at all."""


class APIError(VTSError):
    """The remote API reported a failure for one request."""

    def __init__(self, original: ResponseEnvelope) -> None:
        error = original.error
        super().__init__(error.message)
        self.code = error.error_id
        self.message = error.message
        self.original = original

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class ProtocolError(VTSError, ValueError):
    """An inbound frame is not a valid API message."""
