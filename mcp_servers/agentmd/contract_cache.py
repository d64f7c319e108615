from __future__ import annotations

import logging

from .manifest import Contract

logger = logging.getLogger("mcp.agentmd.contract_cache")


class ContractCache:
    """Parsed contracts keyed by origin.

    Keys are used exactly as given (``http://localhost:3000`` and
    ``http://127.0.0.1:3000`` are different origins). Entries are replaced
    wholesale, never mutated; concurrent misses may both write, last write wins.
    """

    def __init__(self) -> None:
        self._entries: dict[str, Contract] = {}

    def get(self, origin: str) -> Contract | None:
        return self._entries.get(origin)

    def put(self, origin: str, contract: Contract) -> None:
        self._entries[origin] = contract

    def invalidate(self) -> None:
        if self._entries:
            logger.info("contract_cache_invalidated entries=%d", len(self._entries))
        self._entries.clear()

    def __contains__(self, origin: object) -> bool:
        return origin in self._entries

    def __len__(self) -> int:
        return len(self._entries)
