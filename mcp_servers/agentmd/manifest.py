"""agent.md manifest parsing.

A manifest is an informally structured Markdown document served by a web app:

    # SimpleTodo
    > A minimal todo list.

    ## Auth
    - type: session
    - note: uses the page's own login

    ## Actions
    ### add_todo
    - description: Creates a new todo item
    - params:
      - title (string, required): Text of the todo
    - returns: the created todo

The parser never raises on malformed input. Lines it cannot interpret are
dropped (optionally reported through ``on_skip``) and whatever could be
extracted is returned as a :class:`Contract`.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

logger = logging.getLogger("mcp.agentmd.manifest")

SkipCallback = Callable[[int, str], None]

_PARAM_RE = re.compile(r"^- (\w+) \((.+?),\s*(required|optional)\):\s*(.*)")
_NO_PARAMS_MARKER = "- params: none"
_ACTION_PROPERTIES = ("description", "returns", "example")
_AUTH_PROPERTIES = ("type", "note")


@dataclass(slots=True, frozen=True)
class Param:
    name: str
    type: str
    required: bool
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "type": self.type, "required": self.required, "description": self.description}


@dataclass(slots=True, frozen=True)
class Action:
    name: str
    description: str = ""
    params: tuple[Param, ...] = ()
    returns: str = ""
    example: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "params": [p.to_dict() for p in self.params],
            "returns": self.returns,
            "example": self.example,
        }


@dataclass(slots=True, frozen=True)
class Contract:
    app_name: str = ""
    description: str = ""
    auth: MappingProxyType = field(default_factory=lambda: MappingProxyType({}))
    actions: tuple[Action, ...] = ()

    def find_action(self, name: str) -> Action | None:
        """Return the last action declared under ``name`` (later declarations shadow earlier ones)."""
        for action in reversed(self.actions):
            if action.name == name:
                return action
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "appName": self.app_name,
            "description": self.description,
            "auth": dict(self.auth),
            "actions": [a.to_dict() for a in self.actions],
        }


class ScanState(Enum):
    SEEKING_TITLE = "seeking-title"
    IN_SECTION = "in-section"
    IN_ACTION = "in-action"


@dataclass
class _ActionDraft:
    name: str
    description: str = ""
    params: list[Param] = field(default_factory=list)
    returns: str = ""
    example: str = ""

    def freeze(self) -> Action:
        return Action(
            name=self.name,
            description=self.description,
            params=tuple(self.params),
            returns=self.returns,
            example=self.example,
        )


def _property_value(stripped: str, key: str) -> str | None:
    prefix = f"- {key}:"
    if stripped.startswith(prefix):
        return stripped[len(prefix) :].strip()
    return None


class ManifestScanner:
    """Single left-to-right scan over manifest lines.

    State is the current top-level section, the in-progress action (if any) and
    whether the title/description singletons were captured.
    """

    def __init__(self, *, on_skip: SkipCallback | None = None) -> None:
        self._on_skip = on_skip
        self.state = ScanState.SEEKING_TITLE
        self.section: str | None = None
        self.app_name = ""
        self.description = ""
        self.description_captured = False
        self.auth: dict[str, str] = {}
        self.actions: list[Action] = []
        self._current: _ActionDraft | None = None

    def feed(self, lines: Iterable[str]) -> Contract:
        for lineno, line in enumerate(lines, start=1):
            self._scan_line(lineno, line.rstrip("\r"))
        self._flush()
        return Contract(
            app_name=self.app_name,
            description=self.description,
            auth=MappingProxyType(dict(self.auth)),
            actions=tuple(self.actions),
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Line classification
    # ─────────────────────────────────────────────────────────────────────────

    def _scan_line(self, lineno: int, line: str) -> None:
        if line.startswith("# ") and not self.app_name:
            self.app_name = line[2:].strip()
            return

        if line.startswith("> ") and not self.description_captured and self.section is None:
            self.description = line[2:].strip()
            self.description_captured = True
            return

        if line.startswith("## "):
            self._flush()
            self.section = line[3:].strip().lower()
            self.state = ScanState.IN_SECTION
            return

        if line.startswith("### ") and self.section == "actions":
            self._flush()
            self._current = _ActionDraft(name=line[4:].strip())
            self.state = ScanState.IN_ACTION
            return

        if self._current is not None:
            self._scan_action_line(lineno, line.strip())
        elif self.section == "auth":
            self._scan_auth_line(lineno, line.strip())

    def _scan_action_line(self, lineno: int, stripped: str) -> None:
        action = self._current
        assert action is not None
        for key in _ACTION_PROPERTIES:
            value = _property_value(stripped, key)
            if value is not None:
                setattr(action, key, value)
                return

        if stripped == _NO_PARAMS_MARKER:
            action.params = []
            return

        match = _PARAM_RE.match(stripped)
        if match:
            action.params.append(
                Param(
                    name=match.group(1),
                    type=match.group(2).strip(),
                    required=match.group(3) == "required",
                    description=match.group(4).strip(),
                )
            )
            return

        if stripped.startswith("- ") and not stripped.startswith("- params:"):
            self._skip(lineno, stripped)

    def _scan_auth_line(self, lineno: int, stripped: str) -> None:
        for key in _AUTH_PROPERTIES:
            value = _property_value(stripped, key)
            if value is not None:
                self.auth[key] = value
                return
        if stripped.startswith("- "):
            self._skip(lineno, stripped)

    def _flush(self) -> None:
        if self._current is not None:
            self.actions.append(self._current.freeze())
            self._current = None
        if self.state is ScanState.IN_ACTION:
            self.state = ScanState.IN_SECTION

    def _skip(self, lineno: int, line: str) -> None:
        logger.debug("manifest_line_skipped line=%d text=%r", lineno, line)
        if self._on_skip is not None:
            self._on_skip(lineno, line)


def parse_manifest(text: str, *, on_skip: SkipCallback | None = None) -> Contract:
    """Parse manifest text into a best-effort :class:`Contract`."""
    return ManifestScanner(on_skip=on_skip).feed((text or "").split("\n"))
