from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any

from rich.markup import escape

from ..exceptions import InvalidStateError
from ..utils import STATE_KEY

__all__ = [
    "State",
    "ActionType",
    "MergeStrategy",
    "ComparisonStrategy",
    "get_state",
]


class State(str, Enum):
    """
    Lifecycle state of an edited node. Stored in the edits tree under
    `_STATE`; being a `str` enum keeps the tree JSON-serializable.
    """

    INSERTED = "INSERTED"
    """Pending insert"""

    UPDATED = "UPDATED"
    """Pending update"""

    DELETED = "DELETED"
    """Pending delete"""

    def __str__(self) -> str:
        return self.value

    @property
    def markup(self) -> str:
        """
        Rich markup for console output.
        """
        color_map = {
            State.INSERTED: "bright_green",
            State.UPDATED: "bright_yellow",
            State.DELETED: "red",
        }

        start = escape("[")
        end = escape("]")
        return f"{start}[{color_map[self]}]{self.name}[/{color_map[self]}]{end}"


class ActionType(str, Enum):
    """
    Action requested by {obj}`EntityStorage.edit`.
    """

    UPDATE = "UPDATE"
    """Set a value; behavior depends on whether an edit already exists"""

    REJECT = "REJECT"
    """Discard local changes"""

    DELETE = "DELETE"
    """Mark an entity for deletion"""

    INSERT = "INSERT"
    """Insert a new entity, e.g. into a collection"""


class MergeStrategy(str, Enum):
    """
    How edited values are merged with original ones upon read.
    """

    DEEP_SIMPLE = "DEEP_SIMPLE"
    """Edits are merged into the respective original entities"""


class ComparisonStrategy(str, Enum):
    """
    How entities are compared by {obj}`EntityStorage.entity_equals`.
    """

    DEEP_SIMPLE = "DEEP_SIMPLE"
    """Structural comparison"""


def get_state(node: Any) -> State | None:
    """
    Get state of an edited node, or `None` if it has none.

    :raises InvalidStateError: If the node carries an unrecognized state
    """
    if not isinstance(node, Mapping):
        return None

    value = node.get(STATE_KEY)
    if value is None:
        return None

    try:
        return State(value)
    except ValueError:
        raise InvalidStateError(f"Unrecognized entity state <{value}>") from None
