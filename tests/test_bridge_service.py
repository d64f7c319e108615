from __future__ import annotations

import asyncio
import contextlib
import json
import struct
from pathlib import Path
from typing import Any

from agentmd_fakes import make_config, todo_session

from mcp_servers.agentmd.bridge_service import BridgeService
from mcp_servers.agentmd.framing import FrameDecoder, encode_frame
from mcp_servers.agentmd.relay import BridgeRelay
from mcp_servers.agentmd.session import BridgeSession


def _service(tmp_path: Path) -> tuple[BridgeService, BridgeSession]:
    session, _ = todo_session()
    return BridgeService(session, socket_path=tmp_path / "svc.sock"), session


async def _read_frames(reader: asyncio.StreamReader, count: int) -> list[dict[str, Any]]:
    decoder = FrameDecoder()
    out: list[dict[str, Any]] = []
    while len(out) < count:
        data = await asyncio.wait_for(reader.read(65536), timeout=2.0)
        if not data:
            break
        out.extend(decoder.feed(data))
    return out


def test_service_answers_frames(tmp_path: Path) -> None:
    service, session = _service(tmp_path)

    async def _main() -> list[dict[str, Any]]:
        await service.start()
        try:
            assert session.active is True
            reader, writer = await asyncio.open_unix_connection(str(service.socket_path))
            writer.write(encode_frame({"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {}}))
            writer.write(encode_frame({"jsonrpc": "2.0", "method": "notifications/initialized"}))
            writer.write(encode_frame({"jsonrpc": "2.0", "id": 2, "method": "tools/list"}))
            writer.write(
                encode_frame(
                    {
                        "jsonrpc": "2.0",
                        "id": 3,
                        "method": "tools/call",
                        "params": {"name": "agentmd_add_todo", "arguments": {"title": "Buy milk"}},
                    }
                )
            )
            await writer.drain()
            responses = await _read_frames(reader, 3)
            writer.close()
            return responses
        finally:
            await service.stop()

    responses = {msg["id"]: msg for msg in asyncio.run(_main())}
    assert sorted(responses) == [1, 2, 3]
    assert responses[1]["result"]["serverInfo"]["name"] == "agentmd-bridge"
    assert [t["name"] for t in responses[2]["result"]["tools"]] == ["agentmd_list_todos", "agentmd_add_todo"]
    assert json.loads(responses[3]["result"]["content"][0]["text"])["title"] == "Buy milk"
    assert not service.socket_path.exists()
    assert session.active is False


def test_oversized_frame_closes_connection(tmp_path: Path) -> None:
    service, _ = _service(tmp_path)

    async def _main() -> bytes:
        await service.start()
        try:
            reader, writer = await asyncio.open_unix_connection(str(service.socket_path))
            writer.write(struct.pack("<I", 8_000_001))
            await writer.drain()
            data = await asyncio.wait_for(reader.read(), timeout=2.0)
            writer.close()
            return data
        finally:
            await service.stop()

    assert asyncio.run(_main()) == b""


def test_stale_socket_file_is_replaced(tmp_path: Path) -> None:
    service, _ = _service(tmp_path)
    service.socket_path.write_text("stale")

    async def _main() -> None:
        await service.start()
        try:
            _, writer = await asyncio.open_unix_connection(str(service.socket_path))
            writer.close()
        finally:
            await service.stop()

    asyncio.run(_main())


def test_relay_through_service(tmp_path: Path) -> None:
    service, _ = _service(tmp_path)
    outer: list[dict[str, Any]] = []

    async def write_outer(msg: dict[str, Any]) -> None:
        outer.append(msg)

    async def _main() -> None:
        await service.start()
        relay = BridgeRelay(make_config(socket_path=str(service.socket_path)), write_outer)
        inner = asyncio.create_task(relay.run_inner())
        try:
            assert await relay.wait_connected(2.0)
            await asyncio.gather(
                relay.forward({"jsonrpc": "2.0", "id": "list", "method": "tools/list"}),
                relay.forward(
                    {
                        "jsonrpc": "2.0",
                        "id": "add",
                        "method": "tools/call",
                        "params": {"name": "agentmd_add_todo", "arguments": {"title": "Buy milk"}},
                    }
                ),
                relay.forward({"jsonrpc": "2.0", "id": "bad", "method": "prompts/list"}),
            )
        finally:
            await relay.stop()
            inner.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await inner
            await service.stop()

    asyncio.run(_main())
    by_id = {msg["id"]: msg for msg in outer}
    assert len(by_id["list"]["result"]["tools"]) == 2
    assert by_id["add"]["result"]["isError"] is False
    assert by_id["bad"]["error"]["code"] == -32601
