from __future__ import annotations

import asyncio
import logging
import socket
import threading
from collections.abc import Iterator
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest
from agentmd_fakes import FakeTarget, FakeTargets, make_config, todo_registry

from mcp_servers.agentmd.http_client import HttpClientError, fetch_manifest, http_get_json, manifest_url
from mcp_servers.agentmd.session import BridgeSession

MANIFEST = "# Served\n> from a local server\n"


class _Handler(BaseHTTPRequestHandler):
    def do_GET(self) -> None:  # noqa: N802
        if self.path == "/agent.md":
            body = MANIFEST.encode("utf-8")
            self.send_response(200)
            self.send_header("Content-Type", "text/markdown; charset=utf-8")
        elif self.path == "/json/list":
            body = b'[{"type": "page", "url": "http://localhost/"}]'
            self.send_response(200)
            self.send_header("Content-Type", "application/json")
        elif self.path == "/bogus.md":
            body = MANIFEST.encode("utf-8")
            self.send_response(200)
            self.send_header("Content-Type", "text/markdown; charset=bogus")
        elif self.path == "/moved.md":
            body = b""
            self.send_response(302)
            self.send_header("Location", "http://example.invalid/agent.md")
        else:
            body = b"not here"
            self.send_response(404)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: object) -> None:  # noqa: A002
        pass


@pytest.fixture()
def origin() -> Iterator[str]:
    server = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}"
    finally:
        server.shutdown()
        server.server_close()


@pytest.fixture()
def garbage_origin() -> Iterator[str]:
    """A TCP server that answers every request with a line that is not HTTP."""
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(("127.0.0.1", 0))
    listener.listen()
    stop = threading.Event()

    def _serve() -> None:
        while not stop.is_set():
            try:
                conn, _ = listener.accept()
            except OSError:
                return
            with conn:
                conn.recv(65536)
                conn.sendall(b"garbage not http\r\n\r\n")

    thread = threading.Thread(target=_serve, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{listener.getsockname()[1]}"
    finally:
        stop.set()
        listener.close()


def test_manifest_url_joins_origin_and_path() -> None:
    config = make_config()
    assert manifest_url("http://localhost:3000", config) == "http://localhost:3000/agent.md"
    assert manifest_url("http://localhost:3000/", config) == "http://localhost:3000/agent.md"


def test_fetch_manifest_returns_text(origin: str) -> None:
    assert fetch_manifest(origin, make_config()) == MANIFEST


def test_fetch_manifest_404_is_error(origin: str) -> None:
    with pytest.raises(HttpClientError, match="404"):
        fetch_manifest(origin, make_config(manifest_path="/missing.md"))


def test_fetch_manifest_truncates_large_bodies(origin: str) -> None:
    assert fetch_manifest(origin, make_config(http_max_bytes=8)) == MANIFEST[:8]


def test_fetch_manifest_respects_allowlist(origin: str) -> None:
    with pytest.raises(HttpClientError, match="allowlist"):
        fetch_manifest(origin, make_config(allow_hosts=["example.com"]))
    assert fetch_manifest(origin, make_config(allow_hosts=["127.0.0.1"])) == MANIFEST


def test_redirect_off_allowlist_is_refused(origin: str) -> None:
    with pytest.raises(HttpClientError, match="allowlist"):
        fetch_manifest(origin, make_config(manifest_path="/moved.md", allow_hosts=["127.0.0.1"]))


def test_fetch_manifest_rejects_other_schemes() -> None:
    with pytest.raises(HttpClientError, match="http/https"):
        fetch_manifest("file://", make_config())


def test_unreachable_origin_is_error() -> None:
    with pytest.raises(HttpClientError):
        fetch_manifest("http://127.0.0.1:9", make_config(http_timeout=1.0))


def test_http_get_json(origin: str) -> None:
    assert http_get_json(f"{origin}/json/list") == [{"type": "page", "url": "http://localhost/"}]


def test_malformed_status_line_is_error(garbage_origin: str) -> None:
    with pytest.raises(HttpClientError):
        fetch_manifest(garbage_origin, make_config())


def test_unknown_charset_falls_back_to_utf8(origin: str) -> None:
    assert fetch_manifest(origin, make_config(manifest_path="/bogus.md")) == MANIFEST


def test_truncation_is_logged(origin: str, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING, logger="mcp.agentmd.http_client")
    fetch_manifest(origin, make_config(http_max_bytes=8))
    assert any("manifest_truncated" in r.getMessage() and origin in r.getMessage() for r in caplog.records)


def test_broken_server_means_no_tools(garbage_origin: str) -> None:
    target = FakeTarget(garbage_origin + "/", todo_registry())
    session = BridgeSession(make_config(), targets=FakeTargets(target), fetcher=fetch_manifest)
    response = asyncio.run(session.dispatcher.handle({"jsonrpc": "2.0", "id": 1, "method": "tools/list"}))
    assert response == {"jsonrpc": "2.0", "id": 1, "result": {"tools": []}}
    assert len(session.cache) == 0
