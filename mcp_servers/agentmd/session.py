"""Bridge session: the single owner of contract cache, targets and dispatcher."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any, Protocol

from .config import BridgeConfig
from .contract_cache import ContractCache
from .http_client import HttpClientError, fetch_manifest
from .invoker import ActionInvoker, ExecutionTarget
from .manifest import Contract, parse_manifest
from .page_target import PageTargetProvider, origin_of
from .server.dispatch import RpcDispatcher

logger = logging.getLogger("mcp.agentmd.session")

ManifestFetcher = Callable[[str, BridgeConfig], str]


class TargetProvider(Protocol):
    async def active_target(self) -> ExecutionTarget | None: ...


class BridgeSession:
    def __init__(
        self,
        config: BridgeConfig | None = None,
        *,
        targets: TargetProvider | None = None,
        fetcher: ManifestFetcher | None = None,
    ) -> None:
        self.config = config or BridgeConfig.from_env()
        self.cache = ContractCache()
        self.targets: TargetProvider = targets or PageTargetProvider(self.config)
        self.fetcher: ManifestFetcher = fetcher or fetch_manifest
        self.invoker = ActionInvoker(registry_label=f"window.{self.config.registry_name}")
        self.dispatcher = RpcDispatcher(self)
        self.active = False

    def init(self) -> BridgeSession:
        self.active = True
        logger.info("session_started cdp=%s registry=%s", self.config.cdp_base_url, self.config.registry_name)
        return self

    def teardown(self) -> None:
        self.cache.invalidate()
        self.active = False
        logger.info("session_stopped")

    # ─────────────────────────────────────────────────────────────────────────
    # Contracts
    # ─────────────────────────────────────────────────────────────────────────

    async def active_target(self) -> ExecutionTarget | None:
        return await self.targets.active_target()

    async def resolve_contract(self, origin: str) -> Contract | None:
        cached = self.cache.get(origin)
        if cached is not None:
            return cached
        try:
            text = await asyncio.to_thread(self.fetcher, origin, self.config)
        except HttpClientError as exc:
            logger.info("manifest_unavailable origin=%s reason=%s", origin, exc)
            return None
        contract = parse_manifest(text)
        self.cache.put(origin, contract)
        logger.info("manifest_parsed origin=%s app=%s actions=%d", origin, contract.app_name, len(contract.actions))
        return contract

    async def active_contract(self) -> tuple[Contract | None, str | None]:
        target = await self.active_target()
        if target is None:
            return None, None
        origin = origin_of(target.url)
        if origin is None:
            return None, None
        return await self.resolve_contract(origin), origin

    # ─────────────────────────────────────────────────────────────────────────
    # Control operations (status popup equivalents)
    # ─────────────────────────────────────────────────────────────────────────

    async def contract_status(self) -> dict[str, Any]:
        contract, origin = await self.active_contract()
        return {"contract": contract.to_dict() if contract else None, "origin": origin}

    async def call_action(self, action: str, params: dict[str, Any] | None = None) -> Any:
        target = await self.active_target()
        return await self.invoker.invoke(target, action, params or {})

    def invalidate_cache(self) -> dict[str, Any]:
        self.cache.invalidate()
        return {"ok": True}
