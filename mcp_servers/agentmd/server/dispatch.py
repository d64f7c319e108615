"""
JSON-RPC dispatcher for the bridge session.

Handles ``initialize``, ``ping``, ``tools/list`` and ``tools/call``. The
dispatcher keeps no state of its own; contracts live in the session cache.
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any

from .contract import (
    INTERNAL_ERROR,
    METHOD_NOT_FOUND,
    action_name_from_tool,
    error_response,
    initialize_result,
    result_response,
    tools_list,
)
from .types import ToolResult

if TYPE_CHECKING:
    from ..session import BridgeSession

logger = logging.getLogger("mcp.agentmd.dispatch")


class RpcDispatcher:
    def __init__(self, session: BridgeSession) -> None:
        self.session = session

    async def handle_list_tools(self) -> dict[str, Any]:
        contract, origin = await self.session.active_contract()
        tools = tools_list(contract)
        logger.info("tools_list origin=%s tools=%d", origin, len(tools))
        return {"tools": tools}

    async def handle_call_tool(self, params: dict[str, Any]) -> dict[str, Any]:
        name = params.get("name")
        arguments = params.get("arguments")
        action = action_name_from_tool(name if isinstance(name, str) else "")
        args = arguments if isinstance(arguments, dict) else {}
        logger.info("tool=%s action=%s", name, action)

        target = await self.session.active_target()
        result = await self.session.invoker.invoke(target, action, args)
        return ToolResult.from_action_result(result).to_dict()

    async def handle(self, message: Any) -> dict[str, Any] | None:
        """Return the response for one JSON-RPC message, or None for notifications."""
        if not isinstance(message, dict):
            return None
        if os.environ.get("MCP_TRACE"):
            logger.info("recv %s", message)

        method = message.get("method")
        if "id" not in message:
            # Notifications (e.g. notifications/initialized) never get a response.
            return None
        request_id = message.get("id")
        raw_params = message.get("params")
        params: dict[str, Any] = raw_params if isinstance(raw_params, dict) else {}

        if method == "initialize":
            return result_response(request_id, initialize_result())
        if method == "ping":
            return result_response(request_id, {})
        try:
            if method == "tools/list":
                return result_response(request_id, await self.handle_list_tools())
            if method == "tools/call":
                return result_response(request_id, await self.handle_call_tool(params))
        except Exception as exc:  # noqa: BLE001
            logger.exception("dispatch_failed method=%s", method)
            return error_response(request_id, INTERNAL_ERROR, str(exc))
        return error_response(request_id, METHOD_NOT_FOUND, f"Method not found: {method}")
