from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..exceptions import SyncActionError
from ..storage.types import State

if TYPE_CHECKING:
    from .transport import SyncedPropertyTypeObject

__all__ = [
    "SyncAction",
]


@dataclass
class SyncAction:
    """
    One outbound write derived from the edits tree.
    """

    prop_type: SyncedPropertyTypeObject
    """Type of entity written"""

    action_type: State
    """Selects transport verb: insert, update or delete"""

    payload: dict
    """Entity sent to the transport"""

    location: str = ""
    """Location of the entity within its storage"""

    def __post_init__(self):
        self.action_type = State(self.action_type)

    def __str__(self) -> str:
        location = f" at '{self.location}'" if self.location else ""
        return f"{self.action_type.value} <{self.prop_type.type_name}>{location}"

    async def execute(self) -> Any:
        """
        Invoke the transport verb matching this action.

        :raises SyncActionError: If the transport returns a falsy result
        """
        result: Any

        match self.action_type:
            case State.DELETED:
                result = await self.prop_type.delete(self.payload)
            case State.UPDATED:
                result = await self.prop_type.update(self.payload)
            case State.INSERTED:
                result = await self.prop_type.insert(self.payload)

        if not result:
            raise SyncActionError(self, f"transport returned {result!r}")

        return result
