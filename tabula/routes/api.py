from __future__ import annotations

import logging
import re
from collections.abc import Callable
from typing import Any, Protocol

from ..errors import AIRequestError, CommandChannelError, ConfigurationError
from ..service import TabService
from ..store import Settings, SyncPayload, TabRecord

logger = logging.getLogger(__name__)

_TAB_ACTION_RE = re.compile(r"^/api/tabs/(-?\d+)/(close|keep)$")


class _ApiHandler(Protocol):
    def _send_json(self, payload: Any, status: int = 200, *, cors: bool = False) -> None: ...


def _records(records: list[TabRecord]) -> list[dict[str, Any]]:
    return [record.to_dict() for record in records]


def _int_field(payload: dict[str, Any] | None, key: str) -> int | None:
    if not payload or payload.get(key) is None:
        return None
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{key} must be a non-negative integer")
    return value


def handle_get(handler: _ApiHandler, service: TabService, path: str) -> bool:
    if path == "/api/tabs":
        handler._send_json({"items": _records(service.open_tabs())})
        return True
    if path == "/api/tabs/closed":
        handler._send_json({"items": _records(service.today_closed_tabs())})
        return True
    if path == "/api/tabs/today":
        handler._send_json({"items": _records(service.today_tabs())})
        return True
    if path == "/api/stats":
        handler._send_json(service.stats().to_dict())
        return True
    if path == "/api/settings":
        handler._send_json(service.get_settings().to_dict())
        return True
    if path == "/api/report":
        report = service.get_report()
        handler._send_json({"report": report.to_dict() if report else None})
        return True
    return False


def _run_ai(handler: _ApiHandler, action: Callable[[], dict[str, Any]]) -> None:
    try:
        payload = action()
    except ConfigurationError as exc:
        logger.warning("ai action rejected: %s", exc)
        handler._send_json({"error": str(exc)}, status=400)
        return
    except AIRequestError as exc:
        logger.warning("ai action failed: %s", exc)
        handler._send_json({"error": str(exc)}, status=502)
        return
    handler._send_json(payload)


def handle_post(
    handler: _ApiHandler,
    service: TabService,
    path: str,
    payload: dict[str, Any] | None,
) -> bool:
    if not path.startswith("/api/"):
        return False
    match = _TAB_ACTION_RE.match(path)
    if match:
        tab_id = int(match.group(1))
        if match.group(2) == "close":
            changed = service.close_tab(tab_id)
        else:
            changed = service.mark_keep(tab_id)
        handler._send_json({"ok": True, "updated": changed})
        return True
    try:
        return _dispatch_post(handler, service, path, payload)
    except ValueError as exc:
        handler._send_json({"error": "invalid payload", "detail": str(exc)}, status=400)
        return True


def _dispatch_post(
    handler: _ApiHandler,
    service: TabService,
    path: str,
    payload: dict[str, Any] | None,
) -> bool:
    if path == "/api/settings":
        if payload is None:
            handler._send_json({"error": "invalid json"}, status=400)
            return True
        settings = Settings.from_dict(payload)
        saved = service.save_settings(settings)
        handler._send_json({"ok": saved, "settings": settings.to_dict()})
        return True
    if path == "/api/report":
        _run_ai(handler, lambda: {"report": service.generate_report().to_dict()})
        return True
    if path == "/api/analyze":
        _run_ai(handler, lambda: {"items": _records(service.analyze_tabs())})
        return True
    if path == "/api/analyze/batch":
        limit = _int_field(payload, "limit")

        def _batch() -> dict[str, Any]:
            tabs, analyzed = service.analyze_batch(limit)
            return {"items": _records(tabs), "analyzed": analyzed}

        _run_ai(handler, _batch)
        return True
    if path == "/api/suggestions/clear":
        handler._send_json({"ok": True, "cleared": service.clear_suggestions()})
        return True
    if path == "/api/data/clear":
        service.clear_all_data()
        handler._send_json({"ok": True})
        return True
    if path == "/api/cleanup":
        removed = service.cleanup(_int_field(payload, "days"))
        handler._send_json({"ok": True, "removed": removed})
        return True
    if path == "/api/sync":
        if payload is None:
            handler._send_json({"error": "invalid json"}, status=400)
            return True
        affected = service.sync(SyncPayload.from_dict(payload).open_ids)
        handler._send_json({"ok": True, "affected": affected})
        return True
    if path == "/api/refresh":
        try:
            delivered = service.trigger_refresh()
        except CommandChannelError as exc:
            handler._send_json({"error": f"Failed to send refresh command: {exc}"}, status=503)
            return True
        handler._send_json({"ok": True, "delivered": delivered})
        return True
    return False
