"""Variable state and prompt templating for sub-agents."""

from __future__ import annotations

import re
from typing import Any

from burrow.errors import TemplateError

_PLACEHOLDER_RE = re.compile(r"\$\{(\w+)\}")


class ContextState:
    """Key/value state that seeds a sub-agent's prompt."""

    def __init__(self, values: dict[str, Any] | None = None) -> None:
        self._state: dict[str, Any] = dict(values or {})

    def get(self, key: str) -> Any:
        return self._state.get(key)

    def set(self, key: str, value: Any) -> None:
        self._state[key] = value

    def keys(self) -> list[str]:
        return list(self._state)

    def __contains__(self, key: object) -> bool:
        return key in self._state


def template_string(template: str, context: ContextState) -> str:
    """Replace ``${name}`` placeholders with values from ``context``.

    Every placeholder must have a value; the error lists all that do not.
    """
    required = _PLACEHOLDER_RE.findall(template)
    missing = sorted({key for key in required if key not in context})
    if missing:
        raise TemplateError(f"Missing context values for the following keys: {', '.join(missing)}")
    return _PLACEHOLDER_RE.sub(lambda match: str(context.get(match.group(1))), template)
