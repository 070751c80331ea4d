from __future__ import annotations

import http.client
import json
import threading
from collections.abc import Iterator
from pathlib import Path

import pytest

from tabula.config import TabulaConfig
from tabula.server import TabulaServer


@pytest.fixture
def running_server(tmp_path: Path) -> Iterator[TabulaServer]:
    config = TabulaConfig(data_dir=str(tmp_path / "data"), server_port=0, cleanup_interval_s=0)
    server = TabulaServer(config)
    server.bind()
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield server
    finally:
        server.shutdown()
        thread.join(timeout=5)


def _request(
    server: TabulaServer,
    method: str,
    path: str,
    payload: object | None = None,
    headers: dict[str, str] | None = None,
) -> tuple[int, dict[str, str], object]:
    host, port = server.address
    conn = http.client.HTTPConnection(host, port, timeout=5)
    body = json.dumps(payload).encode("utf-8") if payload is not None else None
    send_headers = {"Content-Type": "application/json", **(headers or {})}
    conn.request(method, path, body=body, headers=send_headers)
    resp = conn.getresponse()
    raw = resp.read()
    conn.close()
    data = json.loads(raw) if raw else None
    return resp.status, dict(resp.getheaders()), data


def test_health_over_http(running_server: TabulaServer) -> None:
    status, headers, data = _request(running_server, "GET", "/health")
    assert status == 200
    assert data["status"] == "ok"  # type: ignore[index]
    assert headers["Access-Control-Allow-Origin"] == "*"


def test_event_then_list_over_http(running_server: TabulaServer) -> None:
    event = {"type": "created", "tab": {"id": 11, "createdAt": 1, "title": "Hi"}, "timestamp": 1}
    status, _, data = _request(running_server, "POST", "/event", event)
    assert (status, data) == (200, {"ok": True})

    status, _, data = _request(running_server, "GET", "/api/tabs")
    assert status == 200
    assert [item["id"] for item in data["items"]] == [11]  # type: ignore[index]


def test_api_rejects_foreign_origin(running_server: TabulaServer) -> None:
    status, _, data = _request(
        running_server, "POST", "/api/data/clear", headers={"Origin": "https://evil.example"}
    )
    assert status == 403
    assert data == {"error": "forbidden"}


def test_unknown_path_is_404(running_server: TabulaServer) -> None:
    status, _, data = _request(running_server, "GET", "/nope")
    assert status == 404
    assert data == {"error": "not found"}


def test_preflight_over_http(running_server: TabulaServer) -> None:
    status, headers, _ = _request(running_server, "OPTIONS", "/capture")
    assert status == 204
    assert "POST" in headers["Access-Control-Allow-Methods"]


@pytest.mark.parametrize("path", ["/api/cleanup", "/api/analyze/batch"])
def test_api_rejects_unparsable_body(running_server: TabulaServer, path: str) -> None:
    host, port = running_server.address
    conn = http.client.HTTPConnection(host, port, timeout=5)
    conn.request("POST", path, body=b"{days: 3", headers={"Content-Type": "application/json"})
    resp = conn.getresponse()
    data = json.loads(resp.read())
    conn.close()

    assert resp.status == 400
    assert data == {"error": "invalid json"}


def test_api_accepts_empty_body_as_defaults(running_server: TabulaServer) -> None:
    status, _, data = _request(running_server, "POST", "/api/cleanup")
    assert (status, data) == (200, {"ok": True, "removed": 0})
