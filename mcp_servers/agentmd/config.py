from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


def expand_path(raw: str) -> str:
    return str(Path(raw).expanduser())


def default_runtime_dir() -> Path:
    raw = os.environ.get("MCP_AGENTMD_RUNTIME_DIR")
    if isinstance(raw, str) and raw.strip():
        return Path(raw.strip()).expanduser()

    xdg = os.environ.get("XDG_RUNTIME_DIR")
    if isinstance(xdg, str) and xdg.strip():
        return Path(xdg.strip()).expanduser() / "agentmd-bridge"

    try:
        uid = os.getuid()
    except AttributeError:
        uid = None
    suffix = str(uid) if isinstance(uid, int) and uid >= 0 else "user"
    return Path("/tmp") / f"agentmd-bridge-{suffix}"


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name) or default)
    except ValueError:
        return default


@dataclass
class BridgeConfig:
    socket_path: str
    mode: str = "relay"
    cdp_host: str = "127.0.0.1"
    cdp_port: int = 9222
    registry_name: str = "__agent"
    manifest_path: str = "/agent.md"
    request_timeout: float = 10.0
    reconnect_delay: float = 2.0
    allow_hosts: list[str] = field(default_factory=list)
    http_timeout: float = 10.0
    http_max_bytes: int = 1_000_000

    @staticmethod
    def normalize_mode(raw: str | None) -> str:
        mode = (raw or "").strip().lower()
        if mode in {"direct", "inline", "local"}:
            return "direct"
        return "relay"

    @classmethod
    def from_env(cls) -> BridgeConfig:
        mode = cls.normalize_mode(os.environ.get("MCP_AGENTMD_MODE"))
        socket_raw = (os.environ.get("MCP_AGENTMD_SOCKET") or "").strip()
        socket_path = expand_path(socket_raw) if socket_raw else str(default_runtime_dir() / "bridge.sock")
        port = int(os.environ.get("MCP_AGENTMD_CDP_PORT", "9222"))
        host = (os.environ.get("MCP_AGENTMD_CDP_HOST") or "127.0.0.1").strip() or "127.0.0.1"
        registry = (os.environ.get("MCP_AGENTMD_REGISTRY") or "__agent").strip() or "__agent"
        manifest_path = (os.environ.get("MCP_AGENTMD_MANIFEST_PATH") or "/agent.md").strip() or "/agent.md"
        if not manifest_path.startswith("/"):
            manifest_path = "/" + manifest_path
        allow_raw = os.environ.get("MCP_ALLOW_HOSTS", "")
        allow_hosts = [item.strip().lower() for item in allow_raw.split(",") if item.strip() and item.strip() != "*"]
        return cls(
            socket_path=socket_path,
            mode=mode,
            cdp_host=host,
            cdp_port=port,
            registry_name=registry,
            manifest_path=manifest_path,
            request_timeout=max(0.1, _env_float("MCP_AGENTMD_REQUEST_TIMEOUT", 10.0)),
            reconnect_delay=max(0.05, _env_float("MCP_AGENTMD_RECONNECT_DELAY", 2.0)),
            allow_hosts=allow_hosts,
            http_timeout=_env_float("MCP_HTTP_TIMEOUT", 10.0),
            http_max_bytes=int(os.environ.get("MCP_HTTP_MAX_BYTES", "1000000")),
        )

    @property
    def cdp_base_url(self) -> str:
        return f"http://{self.cdp_host}:{self.cdp_port}"

    def is_host_allowed(self, host: str) -> bool:
        host = (host or "").strip().lower().rstrip(".")
        if not self.allow_hosts:
            return True
        for raw_allowed in self.allow_hosts:
            allowed = (raw_allowed or "").strip().lower().lstrip(".").rstrip(".")
            if not allowed:
                continue
            if host == allowed:
                return True
            if host.endswith("." + allowed):
                return True
        return False
