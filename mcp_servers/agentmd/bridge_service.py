"""Bridge service: serves the JSON-RPC dispatcher on a local Unix socket.

Relays connect here and speak length-prefixed JSON frames. Every frame is
dispatched as its own task, so slow tool calls do not hold up other requests
on the same connection. Logs go to stderr only.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from pathlib import Path
from typing import Any

from .config import BridgeConfig
from .framing import FrameDecoder, FrameTooLarge, encode_frame
from .session import BridgeSession

logger = logging.getLogger("mcp.agentmd.bridge_service")

_READ_CHUNK = 65536


class BridgeService:
    def __init__(self, session: BridgeSession, socket_path: str | Path | None = None) -> None:
        self.session = session
        self.socket_path = Path(socket_path or session.config.socket_path)
        self._server: asyncio.AbstractServer | None = None
        self._writers: set[asyncio.StreamWriter] = set()
        self.connections = 0

    async def _send(self, writer: asyncio.StreamWriter, lock: asyncio.Lock, payload: dict[str, Any]) -> None:
        async with lock:
            writer.write(encode_frame(payload))
            await writer.drain()

    async def _handle_message(self, msg: dict[str, Any], writer: asyncio.StreamWriter, lock: asyncio.Lock) -> None:
        response = await self.session.dispatcher.handle(msg)
        if response is None:
            return
        try:
            await self._send(writer, lock, response)
        except (ConnectionError, OSError) as exc:
            logger.info("response_dropped id=%r reason=%s", response.get("id"), exc)

    async def _handle_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections += 1
        self._writers.add(writer)
        logger.info("relay_connected connections=%d", self.connections)
        decoder = FrameDecoder()
        write_lock = asyncio.Lock()
        tasks: set[asyncio.Task] = set()
        try:
            while True:
                data = await reader.read(_READ_CHUNK)
                if not data:
                    break
                try:
                    messages = decoder.feed(data)
                except FrameTooLarge as exc:
                    logger.error("relay_frame_rejected: %s", exc)
                    break
                for msg in messages:
                    task = asyncio.create_task(self._handle_message(msg, writer, write_lock))
                    tasks.add(task)
                    task.add_done_callback(tasks.discard)
        except (ConnectionError, OSError) as exc:
            logger.info("relay_read_failed: %s", exc)
        finally:
            self.connections -= 1
            self._writers.discard(writer)
            # In-flight actions keep running; their responses have nowhere to go.
            with contextlib.suppress(Exception):
                writer.close()
            logger.info("relay_disconnected in_flight=%d", len(tasks))

    def _prepare_socket_path(self) -> None:
        self.socket_path.parent.mkdir(parents=True, exist_ok=True)
        # Best-effort cleanup of a stale socket from a previous run.
        with contextlib.suppress(FileNotFoundError):
            self.socket_path.unlink()

    async def start(self) -> asyncio.AbstractServer:
        self._prepare_socket_path()
        self._server = await asyncio.start_unix_server(self._handle_connection, path=str(self.socket_path))
        self.session.init()
        logger.info("bridge_service_listening socket=%s", self.socket_path)
        return self._server

    async def stop(self) -> None:
        server = self._server
        self._server = None
        if server is not None:
            server.close()
            for writer in list(self._writers):
                writer.close()
            with contextlib.suppress(Exception):
                await server.wait_closed()
        self.session.teardown()
        with contextlib.suppress(FileNotFoundError):
            self.socket_path.unlink()

    async def run(self) -> int:
        server = await self.start()
        try:
            await server.serve_forever()
        finally:
            await self.stop()
        return 0


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    config = BridgeConfig.from_env()
    service = BridgeService(BridgeSession(config))
    try:
        raise SystemExit(asyncio.run(service.run()))
    except KeyboardInterrupt:
        raise SystemExit(0) from None


if __name__ == "__main__":
    main()
