from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .sync.action import SyncAction

__all__ = [
    "EntitySyncError",
    "InvalidTypeError",
    "InvalidStateError",
    "IllegalParallelEditError",
    "ContractNotImplementedError",
    "SyncActionError",
]


class EntitySyncError(Exception):
    """
    Base class of errors raised by this package.
    """


class InvalidTypeError(EntitySyncError, TypeError):
    """
    Raised when a value or schema argument has the wrong shape.

    Examples:

    - Storage created with something other than a {obj}`PropertyTypeCollection`
    - Original collection which is not a list
    - Value passed where a collection member was expected
    """


class InvalidStateError(EntitySyncError):
    """
    Raised when an operation can't be carried out in the current state.

    Examples:

    - Named location can't be resolved where resolution is required
    - Identity property missing from an entity
    - Unrecognized `_STATE` encountered during patch extraction
    - Property defined on an already compiled type
    """


class IllegalParallelEditError(EntitySyncError):
    """
    Raised when parallel edits are disabled for a storage and an edit is
    attempted at a location other than the one currently being edited.
    """

    location: str
    """Location of the rejected edit"""

    locked_location: str
    """Location currently being edited"""

    def __init__(self, location: str, locked_location: str):
        self.location = location
        self.locked_location = locked_location
        super().__init__(
            f"Attempt to edit '{location}' while '{locked_location}' is being edited"
        )


class ContractNotImplementedError(EntitySyncError, NotImplementedError):
    """
    Raised when an abstract contract method, such as a schema validator or a
    transport verb, is invoked without being provided by a collaborator.
    """


class SyncActionError(EntitySyncError):
    """
    Raised by {obj}`SyncAction.execute` when the transport reports failure.
    """

    action: SyncAction

    def __init__(self, action: SyncAction, reason: str):
        self.action = action
        super().__init__(f"Sync action failed: {action}: {reason}")
