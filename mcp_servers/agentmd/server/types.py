"""
Type definitions for tool call results.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class ToolContent:
    """Single content item in tool response."""

    type: str
    text: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "text": self.text}


@dataclass(slots=True)
class ToolResult:
    """Result of a tool call, wrapping the invoker's `{ok, ...}` object."""

    content: list[ToolContent] = field(default_factory=list)
    is_error: bool = False

    @classmethod
    def from_action_result(cls, result: Any) -> ToolResult:
        text = json.dumps(result, ensure_ascii=False, separators=(",", ":"))
        # Payload-level failure flag; not a JSON-RPC error.
        is_error = isinstance(result, dict) and result.get("ok") is False
        return cls(content=[ToolContent(type="text", text=text)], is_error=is_error)

    def to_content_list(self) -> list[dict[str, Any]]:
        return [c.to_dict() for c in self.content]

    def to_dict(self) -> dict[str, Any]:
        return {"content": self.to_content_list(), "isError": self.is_error}
