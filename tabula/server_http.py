from __future__ import annotations

import json
import mimetypes
from http.server import BaseHTTPRequestHandler
from pathlib import Path
from typing import Any, Literal
from urllib.parse import urlparse

# Captures carry a base64 screenshot, so bodies are large compared to plain events.
MAX_BODY_BYTES = 32 * 1024 * 1024

_LOOPBACK_HOSTS = {"127.0.0.1", "localhost", "::1"}
# The extension's own pages (popup, options) call the local API with these origins.
_EXTENSION_SCHEMES = {"chrome-extension", "moz-extension"}
_SAFE_FETCH_SITES = {"same-origin", "same-site", "none"}


class BodyTooLarge(Exception):
    pass


class InvalidJsonBody(ValueError):
    pass


def is_trusted_origin(url: str) -> bool:
    """True for a bare loopback ``http`` origin or a browser-extension origin."""
    try:
        parsed = urlparse(url)
        host = parsed.hostname
        _ = parsed.port
    except ValueError:
        return False
    if parsed.username is not None or parsed.password is not None:
        return False
    if parsed.path not in ("", "/") or parsed.params or parsed.query or parsed.fragment:
        return False
    if parsed.scheme in _EXTENSION_SCHEMES:
        return bool(host)
    return parsed.scheme == "http" and host in _LOOPBACK_HOSTS


def _looks_cross_site(handler: BaseHTTPRequestHandler) -> bool:
    fetch_site = (handler.headers.get("Sec-Fetch-Site") or "").strip().lower()
    if fetch_site and fetch_site not in _SAFE_FETCH_SITES:
        return True
    referer = handler.headers.get("Referer")
    if not referer:
        return False
    try:
        parsed = urlparse(referer)
    except ValueError:
        return True
    return not is_trusted_origin(f"{parsed.scheme}://{parsed.netloc}")


def send_cors_headers(handler: BaseHTTPRequestHandler) -> None:
    handler.send_header("Access-Control-Allow-Origin", "*")
    handler.send_header("Access-Control-Allow-Methods", "GET, POST, OPTIONS")
    handler.send_header("Access-Control-Allow-Headers", "Content-Type")


def send_json_response(
    handler: BaseHTTPRequestHandler,
    payload: Any,
    status: int = 200,
    *,
    cors: bool = False,
) -> None:
    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    handler.send_response(status)
    handler.send_header("Content-Type", "application/json; charset=utf-8")
    handler.send_header("Content-Length", str(len(body)))
    if cors:
        send_cors_headers(handler)
    handler.end_headers()
    handler.wfile.write(body)


def send_file_response(handler: BaseHTTPRequestHandler, path: Path) -> None:
    body = path.read_bytes()
    content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    handler.send_response(200)
    handler.send_header("Content-Type", content_type)
    handler.send_header("Content-Length", str(len(body)))
    handler.send_header("Cache-Control", "no-cache, no-store, must-revalidate")
    handler.send_header("Pragma", "no-cache")
    handler.send_header("Expires", "0")
    send_cors_headers(handler)
    handler.end_headers()
    handler.wfile.write(body)


def send_empty_response(
    handler: BaseHTTPRequestHandler, status: int, *, cors: bool = False
) -> None:
    handler.send_response(status)
    handler.send_header("Content-Length", "0")
    if cors:
        send_cors_headers(handler)
    handler.end_headers()


def read_raw_body(handler: BaseHTTPRequestHandler, *, max_bytes: int = MAX_BODY_BYTES) -> bytes:
    try:
        length = int(handler.headers.get("Content-Length", "0") or 0)
    except ValueError:
        length = 0
    if length > max_bytes:
        raise BodyTooLarge(f"body exceeds {max_bytes} bytes")
    return handler.rfile.read(length) if length > 0 else b""


def read_optional_json_body(handler: BaseHTTPRequestHandler) -> dict[str, Any] | None:
    """Decode a JSON object body; an empty body is None, anything else invalid raises."""
    raw = read_raw_body(handler).decode("utf-8", errors="replace")
    if not raw.strip():
        return None
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InvalidJsonBody("invalid json") from exc
    if not isinstance(payload, dict):
        raise InvalidJsonBody("json body must be an object")
    return payload


def read_json_body(handler: BaseHTTPRequestHandler) -> dict[str, Any] | None:
    try:
        return read_optional_json_body(handler)
    except InvalidJsonBody:
        return None


MissingOriginPolicy = Literal["allow", "reject", "reject_if_unsafe"]


def reject_cross_origin(
    handler: BaseHTTPRequestHandler,
    *,
    missing_origin_policy: MissingOriginPolicy = "allow",
) -> bool:
    """Answer 403 and return True unless the request comes from a trusted origin.

    Requests without ``Origin`` (curl, the CLI) are judged by ``missing_origin_policy``.
    """
    origin = handler.headers.get("Origin")
    if origin:
        allowed = is_trusted_origin(origin)
    elif missing_origin_policy == "reject_if_unsafe":
        allowed = not _looks_cross_site(handler)
    else:
        allowed = missing_origin_policy == "allow"
    if allowed:
        return False
    send_json_response(handler, {"error": "forbidden"}, status=403)
    return True
