"""
MCP entry point for the agent.md bridge.

Speaks newline-delimited JSON-RPC on stdin/stdout. In ``relay`` mode (default)
requests are relayed to the bridge service over its Unix socket; in ``direct``
mode a bridge session runs in this process. stdout carries protocol messages
only; logs go to stderr.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from typing import Any

from .config import BridgeConfig
from .framing import LineDecoder, encode_line
from .relay import run_stdio_relay
from .session import BridgeSession

logger = logging.getLogger("mcp.agentmd")

__all__ = ["main", "serve_stdio_direct"]


def _write_message(payload: dict[str, Any]) -> None:
    """Write JSON-RPC message to stdout."""
    sys.stdout.buffer.write(encode_line(payload))
    sys.stdout.buffer.flush()


async def serve_stdio_direct(session: BridgeSession) -> int:
    """Answer stdin requests with an in-process dispatcher."""
    out_lock = asyncio.Lock()
    in_flight: set[asyncio.Task] = set()
    decoder = LineDecoder()

    async def _respond(message: dict[str, Any]) -> None:
        response = await session.dispatcher.handle(message)
        if response is None:
            return
        async with out_lock:
            await asyncio.to_thread(_write_message, response)

    session.init()
    try:
        while True:
            chunk = await asyncio.to_thread(sys.stdin.buffer.read1, 65536)
            if not chunk:
                break
            for message in decoder.feed(chunk):
                task = asyncio.create_task(_respond(message))
                in_flight.add(task)
                task.add_done_callback(in_flight.discard)
        if in_flight:
            await asyncio.wait(in_flight, timeout=session.config.request_timeout + 1.0)
    finally:
        for task in list(in_flight):
            task.cancel()
        session.teardown()
    return 0


def main() -> None:
    """Main entry point for the MCP bridge."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    config = BridgeConfig.from_env()
    logger.info("agentmd_bridge_start mode=%s socket=%s", config.mode, config.socket_path)
    if config.mode == "direct":
        runner = serve_stdio_direct(BridgeSession(config))
    else:
        runner = run_stdio_relay(config)
    code = 0
    with contextlib.suppress(KeyboardInterrupt):
        code = asyncio.run(runner)
    raise SystemExit(code)


if __name__ == "__main__":
    main()
