"""Action invocation against a live execution target.

The target is anything that can hand out the page's action registry: a CDP
page in production (see ``page_target.py``), an in-memory fake in tests.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

logger = logging.getLogger("mcp.agentmd.invoker")

ActionCallable = Callable[[dict[str, Any]], Awaitable[Any]]


class ActionRegistry(Protocol):
    """Named async operations exposed by the execution context."""

    def get(self, name: str) -> ActionCallable | None: ...


class ExecutionTarget(Protocol):
    """A live execution context (one browser tab)."""

    @property
    def url(self) -> str: ...

    async def action_registry(self) -> ActionRegistry | None: ...


def failure(error: str) -> dict[str, Any]:
    return {"ok": False, "error": error}


class ActionInvoker:
    """Resolve and run one action; never raises for resolution or execution failures.

    Each call runs the remote action at most once. There is no retry and no
    locking between concurrent calls; ordering is up to the page.
    """

    def __init__(self, *, registry_label: str = "window.__agent") -> None:
        self.registry_label = registry_label

    async def invoke(self, target: ExecutionTarget | None, action_name: str, args: dict[str, Any]) -> Any:
        if target is None:
            return failure("No active tab")

        try:
            registry = await target.action_registry()
        except Exception as exc:  # noqa: BLE001
            logger.info("registry_lookup_failed url=%s reason=%s", target.url, exc)
            return failure(str(exc))
        if registry is None:
            return failure(f"{self.registry_label} is not available on this page")

        action = registry.get(action_name)
        if action is None or not callable(action):
            return failure(f'Action "{action_name}" not found on {self.registry_label}')

        try:
            return await action(args)
        except Exception as exc:  # noqa: BLE001
            logger.info("action_failed action=%s reason=%s", action_name, exc)
            return failure(str(exc))
