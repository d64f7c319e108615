"""Minimal MCP client that speaks newline-delimited JSON-RPC to a bridge process."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Mapping, Sequence
from typing import Any

from .framing import LineDecoder, encode_line
from .pending import BridgeDisconnected, PendingRequests
from .server.contract import PROTOCOL_VERSION

logger = logging.getLogger("mcp.agentmd.client")

CLIENT_INFO = {"name": "agentmd-client", "version": "0.1.0"}


class McpError(Exception):
    def __init__(self, message: str, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


class McpStdioClient:
    def __init__(
        self,
        command: Sequence[str],
        *,
        timeout: float = 10.0,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.command = list(command)
        self.env = dict(env) if env is not None else None
        self.pending = PendingRequests(timeout=timeout)
        self._proc: asyncio.subprocess.Process | None = None
        self._reader_task: asyncio.Task | None = None

    async def connect(self) -> dict[str, Any]:
        self._proc = await asyncio.create_subprocess_exec(
            *self.command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            env=self.env,
        )
        self._reader_task = asyncio.create_task(self._read_loop(), name="agentmd-client-reader")
        return await self.initialize()

    async def _read_loop(self) -> None:
        proc = self._proc
        assert proc is not None and proc.stdout is not None
        decoder = LineDecoder()
        try:
            while True:
                chunk = await proc.stdout.read(65536)
                if not chunk:
                    break
                for msg in decoder.feed(chunk):
                    if not self.pending.resolve(msg.get("id"), msg):
                        logger.info("client_response_unmatched id=%r", msg.get("id"))
        finally:
            self.pending.reject_all(BridgeDisconnected("MCP server exited"))

    async def request(self, method: str, params: dict[str, Any] | None = None) -> Any:
        proc = self._proc
        if proc is None or proc.stdin is None:
            raise BridgeDisconnected("Client is not connected")
        entry = self.pending.open(method)
        msg = {"jsonrpc": "2.0", "id": entry.request_id, "method": method, "params": params or {}}
        try:
            proc.stdin.write(encode_line(msg))
            await proc.stdin.drain()
        except (ConnectionError, OSError) as exc:
            self.pending.reject(entry.request_id, BridgeDisconnected(str(exc)))
        response = await entry.future
        err = response.get("error")
        if isinstance(err, dict):
            raise McpError(str(err.get("message") or "MCP error"), code=err.get("code"))
        return response.get("result")

    async def initialize(self) -> dict[str, Any]:
        return await self.request(
            "initialize",
            {"protocolVersion": PROTOCOL_VERSION, "capabilities": {}, "clientInfo": CLIENT_INFO},
        )

    async def list_tools(self) -> list[dict[str, Any]]:
        result = await self.request("tools/list")
        tools = result.get("tools") if isinstance(result, dict) else None
        return tools if isinstance(tools, list) else []

    async def call_tool(self, name: str, args: dict[str, Any] | None = None) -> Any:
        result = await self.request("tools/call", {"name": name, "arguments": args or {}})
        content = result.get("content") if isinstance(result, dict) else None
        if isinstance(content, list) and content and isinstance(content[0], dict) and content[0].get("text"):
            text = content[0]["text"]
            try:
                return json.loads(text)
            except ValueError:
                return text
        return result

    async def close(self) -> None:
        proc = self._proc
        self._proc = None
        if proc is None:
            return
        if proc.stdin is not None:
            with contextlib.suppress(Exception):
                proc.stdin.close()
        try:
            await asyncio.wait_for(proc.wait(), timeout=2.0)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
        if self._reader_task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader_task

    async def __aenter__(self) -> McpStdioClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()
