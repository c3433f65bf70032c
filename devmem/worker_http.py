from __future__ import annotations

import json
from http.server import BaseHTTPRequestHandler
from typing import Any
from urllib.parse import parse_qs

from .errors import ValidationError


def send_json_response(
    handler: BaseHTTPRequestHandler,
    payload: dict,
    status: int = 200,
) -> None:
    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    handler.send_response(status)
    handler.send_header("Content-Type", "application/json; charset=utf-8")
    handler.send_header("Content-Length", str(len(body)))
    handler.end_headers()
    handler.wfile.write(body)


def send_error_response(handler: BaseHTTPRequestHandler, exc: Exception) -> None:
    status = getattr(exc, "http_status", 500)
    send_json_response(handler, {"error": str(exc)}, status=status)


def read_json_body(handler: BaseHTTPRequestHandler) -> dict[str, Any]:
    """Decode the request body as a JSON object.

    An empty body is an empty object. Anything that is not a JSON object raises
    ValidationError("Invalid JSON body").
    """
    try:
        length = int(handler.headers.get("Content-Length", "0") or 0)
    except ValueError as exc:
        raise ValidationError("Invalid JSON body") from exc
    if length < 0:
        raise ValidationError("Invalid JSON body")
    raw = handler.rfile.read(length).decode("utf-8", errors="replace") if length else ""
    if not raw.strip():
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValidationError("Invalid JSON body") from exc
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON body")
    return payload


def query_params(query: str) -> dict[str, str]:
    """First value of each query parameter; blank values are kept."""
    params = parse_qs(query, keep_blank_values=True)
    return {key: values[0] for key, values in params.items() if values}
