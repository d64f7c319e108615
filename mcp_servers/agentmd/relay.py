"""Host-side relay: MCP client (stdio, NDJSON) <-> bridge service (Unix socket, frames).

Requests from the client are forwarded with a relay-local id and tracked in a
pending table; the client's own id is restored on the way back. The inner
connection is re-established after a fixed delay whenever it drops, forever.
On every disconnect all pending requests are rejected so that nothing waits on
a dead channel.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from collections.abc import Awaitable, Callable
from typing import Any

from .config import BridgeConfig
from .framing import FrameDecoder, FrameTooLarge, LineDecoder, encode_frame, encode_line
from .pending import BridgeDisconnected, PendingRequests, RequestTimeout
from .server.contract import BRIDGE_DISCONNECTED, REQUEST_TIMEOUT, error_response

logger = logging.getLogger("mcp.agentmd.relay")

_READ_CHUNK = 65536

OuterWriter = Callable[[dict[str, Any]], Awaitable[None]]
Connector = Callable[[], Awaitable[tuple[asyncio.StreamReader, asyncio.StreamWriter]]]


class BridgeRelay:
    def __init__(
        self,
        config: BridgeConfig,
        write_outer: OuterWriter,
        *,
        connect: Connector | None = None,
    ) -> None:
        self.config = config
        self._write_outer = write_outer
        self._connect = connect or self._open_unix
        self.pending = PendingRequests(timeout=config.request_timeout)
        self._writer: asyncio.StreamWriter | None = None
        self._write_lock = asyncio.Lock()
        self._connected = asyncio.Event()
        self._stopping = False
        self._background: set[asyncio.Task] = set()
        self.connect_attempts = 0

    # ─────────────────────────────────────────────────────────────────────────
    # Inner channel lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def connected(self) -> bool:
        return self._connected.is_set()

    async def wait_connected(self, timeout: float) -> bool:
        try:
            await asyncio.wait_for(self._connected.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def _open_unix(self) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        return await asyncio.open_unix_connection(self.config.socket_path)

    async def run_inner(self) -> None:
        """Connect, read until the channel drops, wait the fixed delay, repeat."""
        while not self._stopping:
            self.connect_attempts += 1
            try:
                reader, writer = await self._connect()
            except OSError as exc:
                logger.info("bridge_connect_failed socket=%s reason=%s", self.config.socket_path, exc)
            else:
                self._writer = writer
                self._connected.set()
                logger.info("bridge_connected socket=%s", self.config.socket_path)
                try:
                    await self._read_inner(reader)
                finally:
                    self._drop_connection(writer)
            if self._stopping:
                break
            await asyncio.sleep(self.config.reconnect_delay)

    async def _read_inner(self, reader: asyncio.StreamReader) -> None:
        decoder = FrameDecoder()
        while True:
            try:
                data = await reader.read(_READ_CHUNK)
            except (ConnectionError, OSError) as exc:
                logger.info("bridge_read_failed: %s", exc)
                return
            if not data:
                return
            try:
                messages = decoder.feed(data)
            except FrameTooLarge as exc:
                logger.error("bridge_frame_rejected: %s", exc)
                return
            for msg in messages:
                self._on_inner_message(msg)

    def _drop_connection(self, writer: asyncio.StreamWriter) -> None:
        self._connected.clear()
        self._writer = None
        with contextlib.suppress(Exception):
            writer.close()
        rejected = self.pending.reject_all(BridgeDisconnected("Bridge disconnected"))
        logger.info("bridge_disconnected rejected=%d", rejected)

    def _on_inner_message(self, msg: dict[str, Any]) -> None:
        if "id" not in msg:
            # Server-initiated notifications pass straight through.
            task = asyncio.get_running_loop().create_task(self._write_outer(msg))
            self._background.add(task)
            task.add_done_callback(self._on_background_done)
            return
        if not self.pending.resolve(msg.get("id"), msg):
            logger.info("bridge_response_unmatched id=%r", msg.get("id"))

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("notification_write_failed: %s", exc)

    async def _send_inner(self, msg: dict[str, Any]) -> None:
        writer = self._writer
        if writer is None:
            raise BridgeDisconnected("Bridge not connected")
        async with self._write_lock:
            writer.write(encode_frame(msg))
            await writer.drain()

    async def stop(self) -> None:
        self._stopping = True
        writer = self._writer
        if writer is not None:
            self._drop_connection(writer)

    # ─────────────────────────────────────────────────────────────────────────
    # Outer -> inner
    # ─────────────────────────────────────────────────────────────────────────

    async def forward(self, message: dict[str, Any]) -> None:
        if "id" not in message:
            try:
                await self._send_inner(message)
            except (BridgeDisconnected, ConnectionError, OSError) as exc:
                logger.info("notification_dropped method=%s reason=%s", message.get("method"), exc)
            return

        client_id = message.get("id")
        method = str(message.get("method") or "")
        if not self.connected:
            await self.wait_connected(min(1.5, self.config.request_timeout))
        entry = self.pending.open(method)
        try:
            await self._send_inner({**message, "id": entry.request_id})
            response = await entry.future
        except RequestTimeout as exc:
            await self._write_outer(error_response(client_id, REQUEST_TIMEOUT, str(exc)))
            return
        except (BridgeDisconnected, ConnectionError, OSError) as exc:
            self.pending.reject(entry.request_id, BridgeDisconnected(str(exc)))
            await self._write_outer(error_response(client_id, BRIDGE_DISCONNECTED, str(exc) or "Bridge disconnected"))
            return
        await self._write_outer({**response, "id": client_id})


async def _stdout_write(msg: dict[str, Any]) -> None:
    line = encode_line(msg)

    def _write() -> None:
        sys.stdout.buffer.write(line)
        sys.stdout.buffer.flush()

    await asyncio.to_thread(_write)


async def run_stdio_relay(config: BridgeConfig) -> int:
    """Relay between this process's stdin/stdout and the bridge service."""
    out_lock = asyncio.Lock()

    async def write_outer(msg: dict[str, Any]) -> None:
        async with out_lock:
            await _stdout_write(msg)

    relay = BridgeRelay(config, write_outer)
    inner = asyncio.create_task(relay.run_inner(), name="agentmd-relay-inner")
    in_flight: set[asyncio.Task] = set()
    decoder = LineDecoder()
    try:
        while True:
            chunk = await asyncio.to_thread(sys.stdin.buffer.read1, _READ_CHUNK)
            if not chunk:
                break
            for msg in decoder.feed(chunk):
                task = asyncio.create_task(relay.forward(msg))
                in_flight.add(task)
                task.add_done_callback(in_flight.discard)
        if in_flight:
            await asyncio.wait(in_flight, timeout=config.request_timeout + 1.0)
    finally:
        await relay.stop()
        inner.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await inner
    return 0
