"""Utility helpers for msgspec response encoding and server-sent events."""

from __future__ import annotations

from typing import Any

import msgspec
from starlette.responses import Response


def encode_msgspec_response(payload: Any, *, status_code: int = 200) -> Response:
  """Encode a msgspec.Struct or plain builtins as a JSON HTTP response."""
  encoded = msgspec.json.encode(payload)
  return Response(content=encoded, status_code=status_code, media_type="application/json")


def encode_sse(event: str, payload: Any) -> bytes:
  """Frame one server-sent event; ``data`` is a single JSON line."""
  data = msgspec.json.encode(payload)
  return b"event: " + event.encode("utf-8") + b"\ndata: " + data + b"\n\n"
