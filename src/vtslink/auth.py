"""Authenticator — liveness check and token handshake for one connection.

Flow after the transport opens::

    check_active_state ──active──▶ try_auth ──authenticated──▶ ready
          ▲  │ inactive / error          │ no token: request one, store it, requeue
          └──┘ retry after 5s            │ token rejected: clear it, requeue
                                         └ failure: retry after 20s

Every inbound error response is also inspected: errorID 8 (token
invalidated) re-enters ``try_auth`` and errorID 1 (API not active) re-enters
``check_active_state``, whatever state the handshake is in.

Only one flow runs at a time. Entering a step cancels the running flow task
and any retry that was waiting for its turn.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TYPE_CHECKING, Any

from .errors import APIError, ClientError
from .models import (
    ERROR_API_INACTIVE,
    ERROR_TOKEN_INVALIDATED,
    ConnectionStatus,
    EndpointConfig,
    ResponseEnvelope,
    Timings,
)
from .timers import TimerRegistry
from .token_store import TokenStore

if TYPE_CHECKING:
    from .connection import PluginConnection

logger = logging.getLogger(__name__)

TOKEN_KEY = "token"

Step = Callable[[], Awaitable[None]]


def _field(response: ResponseEnvelope, key: str, default: Any = None) -> Any:
    # data may be null or a non-object on otherwise valid replies
    data = response.data
    return data.get(key, default) if isinstance(data, dict) else default


class AuthState(str, Enum):
    IDLE = "idle"
    CHECKING_ACTIVE = "checking-active"
    AUTHENTICATING = "authenticating"
    READY = "ready"


class Authenticator:
    def __init__(
        self,
        connection: PluginConnection,
        store: TokenStore,
        endpoint: EndpointConfig,
        timers: TimerRegistry,
        timings: Timings,
    ) -> None:
        self._conn = connection
        self._store = store
        self._endpoint = endpoint
        self._timers = timers
        self._timings = timings
        self._flow: asyncio.Task[None] | None = None
        self._retry: asyncio.TimerHandle | None = None
        self.state = AuthState.IDLE

    # ------------------------------------------------------------------
    # Entry points used by the connection
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Begin the handshake on a freshly opened transport."""
        self._enter(self.check_active_state)

    def stop(self) -> None:
        self._timers.cancel(self._retry)
        self._retry = None
        if self._flow is not None and self._flow is not asyncio.current_task():
            self._flow.cancel()
        self._flow = None
        self.state = AuthState.IDLE

    def handle_error_code(self, code: int) -> None:
        if code == ERROR_TOKEN_INVALIDATED:
            logger.warning("Authentication token invalidated by the API")
            self._conn.report_status(ConnectionStatus.ERROR, "invalidated")
            self._enter(self.try_auth)
        elif code == ERROR_API_INACTIVE:
            logger.warning("API reported itself inactive")
            self._enter(self.check_active_state)

    # ------------------------------------------------------------------
    # Handshake steps
    # ------------------------------------------------------------------

    async def check_active_state(self) -> None:
        self.state = AuthState.CHECKING_ACTIVE
        try:
            response = await self._conn.call("APIStateRequest")
        except (ClientError, APIError) as exc:
            logger.warning("API state check failed: %s", exc)
            self._conn.report_status(ConnectionStatus.ERROR)
            self._requeue(self.check_active_state, self._timings.liveness_retry_delay)
            return

        if not _field(response, "active"):
            logger.info(
                "API is not active; checking again in %.0fs",
                self._timings.liveness_retry_delay,
            )
            self._conn.report_status(ConnectionStatus.INACTIVE)
            self._requeue(self.check_active_state, self._timings.liveness_retry_delay)
            return

        await self.try_auth()

    async def try_auth(self) -> None:
        self.state = AuthState.AUTHENTICATING
        self._conn.report_status(ConnectionStatus.AUTHENTICATING)
        scope = self._endpoint.store
        try:
            token = await self._store.get(TOKEN_KEY, scope)
            if token:
                response = await self._conn.call(
                    "AuthenticationRequest",
                    self._identity(authenticationToken=token),
                )
                if _field(response, "authenticated"):
                    self.state = AuthState.READY
                    logger.info("Authenticated as %s", self._endpoint.plugin_name)
                    self._conn.report_status(ConnectionStatus.READY)
                    return
                logger.info(
                    "Stored token rejected: %s", _field(response, "reason", "")
                )
                await self._store.set(TOKEN_KEY, None, scope)
            else:
                logger.info("No stored token; requesting one (confirm in the app)")
                response = await self._conn.call(
                    "AuthenticationTokenRequest", self._identity()
                )
                await self._store.set(
                    TOKEN_KEY, _field(response, "authenticationToken"), scope
                )
        except Exception as exc:
            logger.warning(
                "Authentication failed (%s); retrying in %.0fs",
                exc,
                self._timings.auth_retry_delay,
            )
            self._conn.report_status(ConnectionStatus.ERROR, "unauthenticated")
            self._requeue(self.try_auth, self._timings.auth_retry_delay)
            return

        self._requeue(self.try_auth, self._timings.requeue_delay)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _identity(self, **extra: Any) -> dict[str, Any]:
        data: dict[str, Any] = {
            "pluginName": self._endpoint.plugin_name,
            "pluginDeveloper": self._endpoint.plugin_developer,
        }
        if self._endpoint.plugin_icon:
            data["pluginIcon"] = self._endpoint.plugin_icon
        data.update(extra)
        return data

    def _enter(self, step: Step) -> None:
        """Replace whatever flow is running with *step*."""
        self.stop()
        self._flow = self._timers.spawn(step())

    def _requeue(self, step: Step, delay: float) -> None:
        """Run *step* as a new flow after *delay*, yielding to the loop first."""
        self._timers.cancel(self._retry)
        self._retry = self._timers.schedule(delay, self._fire_retry, step)

    def _fire_retry(self, step: Step) -> None:
        self._retry = None
        self._enter(step)
