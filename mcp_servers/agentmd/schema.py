"""Tool input schemas derived from manifest actions."""

from __future__ import annotations

from typing import Any

from .manifest import Action

_TYPE_MAP: dict[str, str] = {
    "string": "string",
    "number": "number",
    "integer": "number",
    "boolean": "boolean",
}


def map_type(raw: str) -> str:
    # Unknown manifest types are passed to the model as free text.
    return _TYPE_MAP.get(raw, "string")


def build_input_schema(action: Action) -> dict[str, Any]:
    if not action.params:
        return {"type": "object", "properties": {}, "required": []}

    properties: dict[str, Any] = {}
    required: list[str] = []
    for param in action.params:
        properties[param.name] = {"type": map_type(param.type), "description": param.description}
        if param.required:
            required.append(param.name)
    return {"type": "object", "properties": properties, "required": required}
