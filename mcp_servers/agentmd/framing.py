"""Wire framing for both sides of the bridge.

- Outer side (MCP client): newline-delimited JSON, one message per line.
- Inner side (bridge service): ``[4 bytes little-endian length][UTF-8 JSON]``.

Decoders are incremental: ``feed()`` accepts whatever a read returned and yields
zero or more complete messages, buffering the rest. Undecodable messages are
logged and dropped; only an oversized frame header is fatal, because the
stream cannot be resynchronised after it.
"""

from __future__ import annotations

import json
import logging
import struct
from typing import Any

logger = logging.getLogger("mcp.agentmd.framing")

MAX_FRAME_BYTES = 8_000_000
_HEADER = struct.Struct("<I")


class FrameTooLarge(Exception):
    pass


def _dumps(msg: dict[str, Any]) -> bytes:
    return json.dumps(msg, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def encode_frame(msg: dict[str, Any]) -> bytes:
    raw = _dumps(msg)
    return _HEADER.pack(len(raw)) + raw


def encode_line(msg: dict[str, Any]) -> bytes:
    return _dumps(msg) + b"\n"


def _decode_object(raw: bytes, *, source: str) -> dict[str, Any] | None:
    try:
        obj = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        logger.warning("%s_decode_failed: %s (%r)", source, exc, raw[:100])
        return None
    if not isinstance(obj, dict):
        logger.warning("%s_not_an_object: %r", source, raw[:100])
        return None
    return obj


class LineDecoder:
    def __init__(self) -> None:
        self._buf = bytearray()

    @property
    def pending_bytes(self) -> int:
        return len(self._buf)

    def feed(self, data: bytes) -> list[dict[str, Any]]:
        self._buf.extend(data)
        messages: list[dict[str, Any]] = []
        while True:
            idx = self._buf.find(b"\n")
            if idx < 0:
                break
            line = bytes(self._buf[:idx]).strip()
            del self._buf[: idx + 1]
            if not line:
                continue
            msg = _decode_object(line, source="line")
            if msg is not None:
                messages.append(msg)
        return messages


class FrameDecoder:
    def __init__(self, *, max_frame_bytes: int = MAX_FRAME_BYTES) -> None:
        self._buf = bytearray()
        self._max_frame_bytes = max_frame_bytes

    @property
    def pending_bytes(self) -> int:
        return len(self._buf)

    def feed(self, data: bytes) -> list[dict[str, Any]]:
        self._buf.extend(data)
        messages: list[dict[str, Any]] = []
        while len(self._buf) >= _HEADER.size:
            (length,) = _HEADER.unpack_from(self._buf, 0)
            if length > self._max_frame_bytes:
                raise FrameTooLarge(f"frame of {length} bytes exceeds {self._max_frame_bytes}")
            end = _HEADER.size + length
            if len(self._buf) < end:
                break
            raw = bytes(self._buf[_HEADER.size : end])
            del self._buf[:end]
            msg = _decode_object(raw, source="frame")
            if msg is not None:
                messages.append(msg)
        return messages
