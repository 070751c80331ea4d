"""Endpoints used by the browser extension."""

from __future__ import annotations

import logging
import threading
from typing import Any, Protocol

from .. import __version__
from ..commands_channel import CommandChannel, Subscription
from ..server_http import send_cors_headers, send_empty_response, send_file_response
from ..service import TabService
from ..store import CapturePayload, SyncPayload, TabEvent

logger = logging.getLogger(__name__)

SSE_KEEPALIVE_S = 15.0


class _ExtensionHandler(Protocol):
    def _send_json(self, payload: Any, status: int = 200, *, cors: bool = False) -> None: ...

    def _read_json(self) -> dict[str, Any] | None: ...


def stream_commands(
    handler: Any,
    subscription: Subscription,
    *,
    stop: threading.Event,
    keepalive_s: float = SSE_KEEPALIVE_S,
) -> None:
    """Write commands as Server-Sent Events until the client goes away or ``stop`` is set."""
    handler.send_response(200)
    handler.send_header("Content-Type", "text/event-stream")
    handler.send_header("Cache-Control", "no-cache")
    handler.send_header("Connection", "keep-alive")
    send_cors_headers(handler)
    handler.end_headers()
    try:
        handler.wfile.write(b": connected\n\n")
        handler.wfile.flush()
        while not stop.is_set():
            command = subscription.get(timeout=keepalive_s)
            if command is None:
                handler.wfile.write(b": keepalive\n\n")
            else:
                handler.wfile.write(f"data: {command}\n\n".encode())
            handler.wfile.flush()
    except (BrokenPipeError, ConnectionResetError):
        logger.debug("command stream closed by client")


def handle_get(
    handler: _ExtensionHandler,
    service: TabService,
    path: str,
    *,
    commands: CommandChannel,
    stop: threading.Event,
) -> bool:
    if path == "/health":
        handler._send_json({"status": "ok", "version": __version__}, cors=True)
        return True
    if path.startswith("/screenshot/"):
        filename = path[len("/screenshot/") :]
        target = service.store.snapshots.resolve(filename)
        if target is None:
            handler._send_json({"error": "access denied"}, status=403, cors=True)
            return True
        if not target.is_file():
            handler._send_json({"error": "screenshot not found"}, status=404, cors=True)
            return True
        try:
            send_file_response(handler, target)  # type: ignore[arg-type]
        except FileNotFoundError:
            handler._send_json({"error": "screenshot not found"}, status=404, cors=True)
        return True
    if path == "/commands":
        with commands.subscribe() as subscription:
            stream_commands(handler, subscription, stop=stop)
        return True
    return False


def handle_post(
    handler: _ExtensionHandler,
    service: TabService,
    path: str,
) -> bool:
    if path not in {"/capture", "/event", "/sync"}:
        return False
    payload = handler._read_json()
    if payload is None:
        handler._send_json({"error": "invalid json"}, status=400, cors=True)
        return True
    try:
        if path == "/capture":
            service.handle_capture(CapturePayload.from_dict(payload))
            response: dict[str, Any] = {"ok": True}
        elif path == "/event":
            service.handle_event(TabEvent.from_dict(payload))
            response = {"ok": True}
        else:
            affected = service.sync(SyncPayload.from_dict(payload).open_ids)
            response = {"ok": True, "affected": affected}
    except ValueError as exc:
        logger.info("rejected %s payload: %s", path, exc)
        handler._send_json({"error": "invalid payload", "detail": str(exc)}, status=400, cors=True)
        return True
    handler._send_json(response, cors=True)
    return True


def handle_options(handler: Any, path: str) -> bool:
    if path in {"/health", "/capture", "/event", "/sync", "/commands"} or path.startswith(
        "/screenshot/"
    ):
        send_empty_response(handler, 204, cors=True)
        return True
    return False
