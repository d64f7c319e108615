"""CDP-backed execution target.

The active browser tab is discovered through the DevTools HTTP endpoint and its
action registry (``window.__agent`` by default) is driven with
``Runtime.evaluate``. Every evaluation opens its own short-lived websocket, so
concurrent tool calls never share a connection.
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import suppress
from typing import Any
from urllib.parse import urlsplit

import websocket

from .config import BridgeConfig
from .http_client import HttpClientError, http_get_json
from .invoker import ActionCallable

logger = logging.getLogger("mcp.agentmd.page_target")


class ActionExecutionError(Exception):
    """Raised when page-side code throws or produces no value."""


class CdpConnection:
    """Low-level CDP WebSocket connection (blocking)."""

    def __init__(self, ws_url: str, timeout: float = 5.0):
        self.ws = websocket.create_connection(ws_url, timeout=timeout)
        self.ws_url = ws_url
        self.timeout = timeout
        self._next_id = 1

    def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        msg_id = self._next_id
        self._next_id += 1
        payload: dict[str, Any] = {"id": msg_id, "method": method}
        if params:
            payload["params"] = params
        self.ws.send(json.dumps(payload))

        while True:
            raw = self.ws.recv()
            try:
                data = json.loads(raw)
            except ValueError:
                continue
            if not isinstance(data, dict) or data.get("id") != msg_id:
                # Events and stale replies are not interesting here.
                continue
            if "error" in data:
                err = data.get("error") or {}
                raise HttpClientError(f"CDP {method} failed: {err.get('message') or err}")
            result = data.get("result")
            return result if isinstance(result, dict) else {}

    def close(self) -> None:
        with suppress(Exception):
            self.ws.close()

    def __enter__(self) -> CdpConnection:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def _registry_expr(registry_name: str) -> str:
    return f"globalThis[{json.dumps(registry_name)}]"


def _list_actions_script(registry_name: str) -> str:
    reg = _registry_expr(registry_name)
    return (
        "(() => {"
        f"const reg = {reg};"
        "if (!reg) return null;"
        "return Object.keys(reg).filter((k) => typeof reg[k] === 'function');"
        "})()"
    )


def _call_action_script(registry_name: str, action_name: str, args: dict[str, Any]) -> str:
    reg = _registry_expr(registry_name)
    return f"(async () => {reg}[{json.dumps(action_name)}]({json.dumps(args, ensure_ascii=False)}))()"


_DEFAULT_PORTS = {"http": 80, "https": 443}


def origin_of(url: str) -> str | None:
    """Return ``scheme://host[:port]`` for http(s) URLs, without credentials or a default port."""
    try:
        parts = urlsplit(url or "")
        port = parts.port
    except ValueError:
        return None
    scheme = parts.scheme.lower()
    if scheme not in _DEFAULT_PORTS or not parts.hostname:
        return None
    host = parts.hostname
    if ":" in host:
        host = f"[{host}]"
    if port is None or port == _DEFAULT_PORTS[scheme]:
        return f"{scheme}://{host}"
    return f"{scheme}://{host}:{port}"


class PageActionRegistry:
    """Registry proxy over the functions the page exposes."""

    def __init__(self, target: PageTarget, names: list[str]) -> None:
        self._target = target
        self.names = list(names)

    def get(self, name: str) -> ActionCallable | None:
        if name not in self.names:
            return None

        async def _call(args: dict[str, Any]) -> Any:
            return await self._target.call_action(name, args)

        return _call


class PageTarget:
    def __init__(self, config: BridgeConfig, *, target_id: str, url: str, ws_url: str) -> None:
        self.config = config
        self.target_id = target_id
        self._url = url
        self.ws_url = ws_url

    @property
    def url(self) -> str:
        return self._url

    @property
    def origin(self) -> str | None:
        return origin_of(self._url)

    def _evaluate(self, expression: str) -> dict[str, Any]:
        with CdpConnection(self.ws_url, timeout=self.config.request_timeout) as conn:
            return conn.send(
                "Runtime.evaluate",
                {"expression": expression, "awaitPromise": True, "returnByValue": True},
            )

    async def action_registry(self) -> PageActionRegistry | None:
        reply = await asyncio.to_thread(self._evaluate, _list_actions_script(self.config.registry_name))
        if reply.get("exceptionDetails"):
            return None
        names = (reply.get("result") or {}).get("value")
        if not isinstance(names, list):
            return None
        return PageActionRegistry(self, [str(n) for n in names])

    async def call_action(self, action_name: str, args: dict[str, Any]) -> Any:
        script = _call_action_script(self.config.registry_name, action_name, args)
        reply = await asyncio.to_thread(self._evaluate, script)
        details = reply.get("exceptionDetails")
        if isinstance(details, dict):
            exc = details.get("exception") or {}
            message = exc.get("description") or details.get("text") or "Action threw"
            # V8 descriptions carry the stack; the first line is the message.
            raise ActionExecutionError(str(message).splitlines()[0].removeprefix("Error: "))
        result = reply.get("result") or {}
        if "value" not in result:
            raise ActionExecutionError("Script execution failed")
        return result["value"]


class PageTargetProvider:
    """Resolves the active tab from the DevTools target list."""

    def __init__(self, config: BridgeConfig) -> None:
        self.config = config

    def _list_targets(self) -> list[dict[str, Any]]:
        data = http_get_json(f"{self.config.cdp_base_url}/json/list", timeout=self.config.http_timeout)
        return [t for t in data if isinstance(t, dict)] if isinstance(data, list) else []

    async def active_target(self) -> PageTarget | None:
        try:
            targets = await asyncio.to_thread(self._list_targets)
        except HttpClientError as exc:
            logger.info("cdp_unreachable base=%s reason=%s", self.config.cdp_base_url, exc)
            return None
        for entry in targets:
            if entry.get("type") != "page" or not entry.get("webSocketDebuggerUrl"):
                continue
            return PageTarget(
                self.config,
                target_id=str(entry.get("id") or ""),
                url=str(entry.get("url") or ""),
                ws_url=str(entry["webSocketDebuggerUrl"]),
            )
        return None
