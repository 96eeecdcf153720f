"""JSON schema inspection for tool parameter declarations."""

from __future__ import annotations

from typing import Any


def _unescape(segment: str) -> str:
    return segment.replace("~1", "/").replace("~0", "~")


def _resolve_ref(root: Any, ref: str) -> Any:
    if ref == "#":
        return root
    if not ref.startswith("#/"):
        return None
    node = root
    for segment in ref[2:].split("/"):
        key = _unescape(segment)
        if isinstance(node, dict) and key in node:
            node = node[key]
        else:
            return None
    return node


def has_cycle_in_schema(schema: Any) -> bool:
    """Return True when following local ``$ref`` pointers can loop forever."""

    def walk(node: Any, visiting: frozenset[str]) -> bool:
        if isinstance(node, list):
            return any(walk(item, visiting) for item in node)
        if not isinstance(node, dict):
            return False
        ref = node.get("$ref")
        if isinstance(ref, str):
            if ref in visiting:
                return True
            target = _resolve_ref(schema, ref)
            if target is not None and walk(target, visiting | {ref}):
                return True
        return any(walk(value, visiting) for key, value in node.items() if key != "$ref")

    return walk(schema, frozenset())
