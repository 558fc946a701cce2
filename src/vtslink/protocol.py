"""Wire codec — build request frames and parse response frames."""

from __future__ import annotations

import json
from typing import Any
from uuid import uuid4

from pydantic import ValidationError

from .errors import ProtocolError
from .models import API_NAME, ErrorData, RequestEnvelope, ResponseEnvelope

# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


def build_request(
    message_type: str,
    data: Any = None,
    *,
    request_id: str | None = None,
) -> str:
    """Serialise a request envelope. ``data`` is left out when absent."""
    frame = RequestEnvelope(
        message_type=message_type,
        request_id=request_id or uuid4().hex,
        data=data,
    ).model_dump(mode="json", by_alias=True)
    if data is None:
        del frame["data"]
    return json.dumps(frame, separators=(",", ":"))


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def parse_response(raw: str | bytes) -> ResponseEnvelope:
    """Deserialise one inbound frame.

    Raises ``ProtocolError`` for anything that is not a well-formed message
    of the expected API family.
    """
    try:
        if isinstance(raw, (bytes, bytearray, memoryview)):
            raw = bytes(raw).decode("utf-8")
        payload = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ProtocolError(f"unparsable frame: {exc}") from exc

    if not isinstance(payload, dict):
        raise ProtocolError("frame is not a JSON object")
    if payload.get("apiName") != API_NAME:
        raise ProtocolError(f"not a {API_NAME} message: {payload.get('apiName')!r}")

    try:
        response = ResponseEnvelope.model_validate(payload)
        if response.is_error:
            ErrorData.model_validate(response.data)
    except ValidationError as exc:
        raise ProtocolError(f"malformed envelope: {exc}") from exc
    return response
