"""
Common utilities.
"""

from collections.abc import Mapping
from typing import Any

__all__ = [
    "STATE_KEY",
    "TEMPLATE_KEY",
    "MARKER_KEYS",
    "merge_deep",
    "strip_markers",
]

STATE_KEY = "_STATE"
"""
Key holding the lifecycle state of an edited node.
"""

TEMPLATE_KEY = "_TEMPLATE"
"""
Key set to `True` on entries created by {obj}`EntityStorage.add_template`.
"""

MARKER_KEYS = frozenset({STATE_KEY, TEMPLATE_KEY})
"""
Keys used internally in the edits tree which are not entity properties.
"""


def merge_deep(target: Mapping, source: Mapping) -> dict:
    """
    Return a new dict with `source` merged into `target`. Nested mappings are
    merged recursively; any other value in `source` replaces the one in
    `target`.
    """
    output = dict(target)

    for key, value in source.items():
        if isinstance(value, Mapping) and isinstance(output.get(key), Mapping):
            output[key] = merge_deep(output[key], value)
        else:
            output[key] = value

    return output


def strip_markers(value: Any) -> Any:
    """
    Return a copy of `value` with marker keys removed at every depth.
    """
    if isinstance(value, Mapping):
        return {
            k: strip_markers(v) for k, v in value.items() if k not in MARKER_KEYS
        }
    if isinstance(value, list):
        return [strip_markers(v) for v in value]
    return value
