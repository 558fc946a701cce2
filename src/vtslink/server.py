"""FastAPI HTTP bridge so local processes can share one API connection.

Runs inside the same asyncio event loop as the connection and stays attached
as caller ``"http"`` for as long as it is serving.
Endpoints:
  GET  /status — connection status, subscribers, ready flag
  POST /call   — {"request": "...", "data": {...}, "timeout": 5}
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from . import __version__
from .config import Config
from .connection import PluginConnection
from .errors import APIError, NotReadyError
from .requester import serialize_error

logger = logging.getLogger(__name__)

HTTP_CALLER_ID = "http"

app = FastAPI(title="vtslink", version=__version__, docs_url=None, redoc_url=None)

# Injected by run_http_server (or tests) before requests are served.
_connection: PluginConnection | None = None


def set_connection(connection: PluginConnection | None) -> None:
    global _connection
    _connection = connection


class CallBody(BaseModel):
    request: str
    data: Any = None
    timeout: float | None = None


@app.get("/status")
async def get_status() -> JSONResponse:
    conn = _connection
    if conn is None:
        return JSONResponse({"status": "disconnected", "ready": False}, status_code=503)
    report = conn.status
    return JSONResponse(
        {
            "status": report.status.value,
            "text": report.text,
            "ready": conn.is_ready,
            "endpoint": conn.endpoint.address,
            "subscribers": conn.subscribers,
        }
    )


@app.post("/call")
async def post_call(body: CallBody) -> JSONResponse:
    conn = _connection
    try:
        if conn is None:
            raise NotReadyError("Client not ready")
        result = await conn.call(body.request, body.data, body.timeout)
    except APIError as exc:
        return JSONResponse(
            {"topic": exc.original.message_type, "payload": exc.original.data},
            status_code=502,
        )
    except Exception as exc:
        logger.warning("HTTP call %s failed: %s", body.request, exc)
        return JSONResponse(
            {"topic": "ClientError", "payload": serialize_error(exc)},
            status_code=503,
        )
    return JSONResponse({"topic": result.message_type, "payload": result.data})


async def run_http_server(
    config: Config, connection: PluginConnection, stop_event: asyncio.Event
) -> None:
    """Serve until stop_event is set, keeping the connection attached."""
    set_connection(connection)
    await connection.attach(HTTP_CALLER_ID)
    uv_config = uvicorn.Config(
        app=app,
        host=config.http_host,
        port=config.http_port,
        log_level="warning",
        loop="none",  # use the running event loop
    )
    server = uvicorn.Server(uv_config)

    serve_task = asyncio.create_task(server.serve())
    stop_task = asyncio.create_task(stop_event.wait())
    try:
        done, pending = await asyncio.wait(
            [serve_task, stop_task],
            return_when=asyncio.FIRST_COMPLETED,
        )
        if stop_task in done:
            server.should_exit = True
            await serve_task
        for task in pending:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
    finally:
        await connection.detach(HTTP_CALLER_ID)
        set_connection(None)
    logger.info("HTTP bridge stopped.")
