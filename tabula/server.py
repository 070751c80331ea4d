from __future__ import annotations

import logging
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any
from urllib.parse import urlparse

from .commands_channel import CommandChannel
from .config import TabulaConfig
from .maintenance import RetentionSweeper
from .routes import api as api_routes
from .routes import extension as extension_routes
from .server_http import (
    BodyTooLarge,
    InvalidJsonBody,
    read_json_body,
    read_optional_json_body,
    reject_cross_origin,
    send_json_response,
)
from .service import TabService
from .store import TabStore

logger = logging.getLogger(__name__)


def build_handler(
    service: TabService,
    *,
    commands: CommandChannel,
    stop: threading.Event,
    access_logs: bool = False,
) -> type[BaseHTTPRequestHandler]:
    class TabulaHandler(BaseHTTPRequestHandler):
        def _send_json(self, payload: Any, status: int = 200, *, cors: bool = False) -> None:
            send_json_response(self, payload, status=status, cors=cors)

        def _read_json(self) -> dict[str, Any] | None:
            return read_json_body(self)

        def log_message(self, format: str, *args: object) -> None:  # noqa: A003
            if access_logs:
                super().log_message(format, *args)

        def do_OPTIONS(self) -> None:  # noqa: N802
            parsed = urlparse(self.path)
            if extension_routes.handle_options(self, parsed.path):
                return
            self._send_json({"error": "not found"}, status=404)

        def do_GET(self) -> None:  # noqa: N802
            parsed = urlparse(self.path)
            try:
                if extension_routes.handle_get(
                    self, service, parsed.path, commands=commands, stop=stop
                ):
                    return
                if api_routes.handle_get(self, service, parsed.path):
                    return
                self._send_json({"error": "not found"}, status=404)
            except Exception as exc:
                logger.exception("GET %s failed", parsed.path, exc_info=exc)
                self._send_json({"error": "internal server error"}, status=500)

        def do_POST(self) -> None:  # noqa: N802
            parsed = urlparse(self.path)
            is_api = parsed.path.startswith("/api/")
            if is_api and reject_cross_origin(self, missing_origin_policy="reject_if_unsafe"):
                return
            try:
                if extension_routes.handle_post(self, service, parsed.path):
                    return
                if is_api:
                    try:
                        payload = read_optional_json_body(self)
                    except InvalidJsonBody:
                        self._send_json({"error": "invalid json"}, status=400)
                        return
                    if api_routes.handle_post(self, service, parsed.path, payload):
                        return
                self._send_json({"error": "not found"}, status=404)
            except BodyTooLarge:
                self.close_connection = True
                self._send_json({"error": "payload too large"}, status=413, cors=not is_api)
            except Exception as exc:
                logger.exception("POST %s failed", parsed.path, exc_info=exc)
                self._send_json({"error": "internal server error"}, status=500)

    return TabulaHandler


class TabulaServer:
    """Owns the store, the command channel and the HTTP listener for one process."""

    def __init__(
        self,
        config: TabulaConfig,
        *,
        store: TabStore | None = None,
        service: TabService | None = None,
    ) -> None:
        self.config = config
        self.store = store or TabStore(config.data_path)
        self.commands = CommandChannel(config.command_queue_size)
        self.service = service or TabService(
            self.store, self.commands, ai_timeout_s=config.ai_timeout_s
        )
        self.sweeper = RetentionSweeper(
            self.store,
            retention_days=config.retention_days,
            interval_s=config.cleanup_interval_s,
        )
        self._stop = threading.Event()
        self._httpd: ThreadingHTTPServer | None = None

    @property
    def address(self) -> tuple[str, int]:
        if self._httpd is None:
            return self.config.server_host, self.config.server_port
        host, port = self._httpd.server_address[:2]
        return str(host), int(port)

    def startup_maintenance(self) -> int:
        removed = self.store.cleanup(self.config.retention_days)
        if removed:
            logger.info("startup cleanup removed %s old tabs", removed)
        stats = self.store.stats()
        logger.info(
            "storage stats: total=%s open=%s closed=%s", stats.total, stats.open, stats.closed
        )
        return removed

    def bind(self) -> ThreadingHTTPServer:
        handler = build_handler(
            self.service,
            commands=self.commands,
            stop=self._stop,
            access_logs=self.config.server_logs,
        )
        httpd = ThreadingHTTPServer((self.config.server_host, self.config.server_port), handler)
        httpd.daemon_threads = True
        self._httpd = httpd
        return httpd

    def serve_forever(self) -> None:
        self.startup_maintenance()
        httpd = self._httpd or self.bind()
        self.sweeper.start()
        host, port = self.address
        logger.info("tabula server listening on http://%s:%s", host, port)
        try:
            httpd.serve_forever()
        finally:
            self.close()

    def shutdown(self) -> None:
        """Stop ``serve_forever`` from another thread."""
        self._stop.set()
        if self._httpd is not None:
            self._httpd.shutdown()

    def close(self) -> None:
        self._stop.set()
        self.sweeper.stop()
        if self._httpd is not None:
            self._httpd.server_close()
            self._httpd = None
