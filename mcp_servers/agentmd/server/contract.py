"""Protocol constants and tool projection.

Single source of truth for the server identity advertised by ``initialize``,
the tool-name namespace and the Action -> Tool mapping used by ``tools/list``.
"""

from __future__ import annotations

import re
from typing import Any

from ..manifest import Action, Contract
from ..schema import build_input_schema

SERVER_INFO: dict[str, str] = {"name": "agentmd-bridge", "version": "0.1.0"}

PROTOCOL_VERSION = "2024-11-05"

CAPABILITIES: dict[str, Any] = {"tools": {}}

TOOL_PREFIX = "agentmd_"
_TOOL_PREFIX_RE = re.compile(rf"^{re.escape(TOOL_PREFIX)}")

METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603
BRIDGE_DISCONNECTED = -32000
REQUEST_TIMEOUT = -32001


def initialize_result() -> dict[str, Any]:
    return {
        "protocolVersion": PROTOCOL_VERSION,
        "capabilities": CAPABILITIES,
        "serverInfo": SERVER_INFO,
    }


def tool_name(action_name: str) -> str:
    return f"{TOOL_PREFIX}{action_name}"


def action_name_from_tool(name: str) -> str:
    return _TOOL_PREFIX_RE.sub("", name or "", count=1)


def tool_definition(contract: Contract, action: Action) -> dict[str, Any]:
    return {
        "name": tool_name(action.name),
        "description": f"[{contract.app_name}] {action.description}",
        "inputSchema": build_input_schema(action),
    }


def tools_list(contract: Contract | None) -> list[dict[str, Any]]:
    if contract is None:
        return []
    return [tool_definition(contract, action) for action in contract.actions]


def error_response(request_id: Any, code: int, message: str) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


def result_response(request_id: Any, result: Any) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}
