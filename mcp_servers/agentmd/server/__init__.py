"""JSON-RPC surface of the agent.md bridge.

Keep this package import light: the dispatcher is pulled in lazily so that
``mcp_servers.agentmd.server.contract`` can be imported without the session.
"""

from __future__ import annotations

from typing import Any

__all__ = ["RpcDispatcher"]


def __getattr__(name: str) -> Any:  # pragma: no cover
    if name == "RpcDispatcher":
        from .dispatch import RpcDispatcher

        return RpcDispatcher
    raise AttributeError(name)
