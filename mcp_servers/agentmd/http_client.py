from __future__ import annotations

import codecs
import http.client
import json
import logging
import ssl
import urllib.parse
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import HTTPRedirectHandler, HTTPSHandler, Request, build_opener, urlopen

from .config import BridgeConfig

logger = logging.getLogger("mcp.agentmd.http_client")


class HttpClientError(Exception):
    pass


class _SafeRedirectHandler(HTTPRedirectHandler):
    def __init__(self, config: BridgeConfig) -> None:
        super().__init__()
        self._config = config

    def redirect_request(self, req, fp, code, msg, headers, newurl):  # noqa: ANN001
        # urllib may pass relative URLs here; normalize against the previous URL.
        absolute = urllib.parse.urljoin(req.full_url, str(newurl))
        parsed = urllib.parse.urlparse(absolute)
        if parsed.scheme not in ("http", "https"):
            raise HttpClientError("Only http/https are supported (redirect)")
        if not self._config.is_host_allowed(parsed.hostname or ""):
            raise HttpClientError(f"Host {parsed.hostname} is not in allowlist (redirect)")
        return super().redirect_request(req, fp, code, msg, headers, absolute)


def manifest_url(origin: str, config: BridgeConfig) -> str:
    return origin.rstrip("/") + config.manifest_path


def fetch_manifest(origin: str, config: BridgeConfig) -> str:
    """GET ``<origin>/agent.md`` and return its text.

    Raises HttpClientError on any failure, including non-2xx statuses.
    """
    url = manifest_url(origin, config)
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise HttpClientError("Only http/https are supported")
    if not config.is_host_allowed(parsed.hostname or ""):
        raise HttpClientError(f"Host {parsed.hostname} is not in allowlist")
    req = Request(url, headers={"User-Agent": "agentmd-bridge/0.1", "Accept": "text/markdown, text/plain, */*"})
    try:
        ctx = ssl.create_default_context()
        opener = build_opener(_SafeRedirectHandler(config), HTTPSHandler(context=ctx))
        with opener.open(req, timeout=config.http_timeout) as resp:
            status = int(getattr(resp, "status", 200))
            if not 200 <= status < 300:
                raise HttpClientError(f"GET {url} returned {status}")
            body = resp.read(config.http_max_bytes + 1)
            if len(body) > config.http_max_bytes:
                logger.warning("manifest_truncated origin=%s max_bytes=%d", origin, config.http_max_bytes)
                body = body[: config.http_max_bytes]
            charset = resp.headers.get_content_charset() or "utf-8"
            try:
                codecs.lookup(charset)
            except LookupError:
                charset = "utf-8"
            return body.decode(charset, errors="replace")
    except HTTPError as exc:
        raise HttpClientError(f"GET {url} returned {exc.code}") from exc
    except (TimeoutError, URLError, OSError, http.client.HTTPException, ValueError) as exc:
        raise HttpClientError(str(exc) or type(exc).__name__) from exc


def http_get_json(url: str, timeout: float = 2.0) -> Any:
    """Fetch JSON from URL."""
    try:
        with urlopen(url, timeout=timeout) as resp:
            return json.loads(resp.read().decode())
    except (URLError, OSError, ValueError, http.client.HTTPException) as e:
        raise HttpClientError(str(e)) from e
