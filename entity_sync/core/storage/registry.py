"""
Registry of storages, keyed by collection type name.
"""

from __future__ import annotations

import logging
from logging import Logger
from typing import TYPE_CHECKING, Any

from ..exceptions import InvalidStateError

if TYPE_CHECKING:
    from ..schema.property_type import PropertyTypeCollection
    from .storage import EntityStorage

__all__ = [
    "StorageRegistry",
]


class StorageRegistry:
    """
    Holds at most one {obj}`EntityStorage` per collection type. Intended to be
    created by the application and passed to each storage, keeping
    references between storages of connected types consistent.
    """

    storages: dict[str, EntityStorage]
    """Mapping of alias (collection type name by default) to storage"""

    _logger: Logger
    """Logger used by this registry and its storages"""

    def __init__(self, *, logger: Logger | None = None):
        """
        :param logger: Logger to use, or `None` to use the `entity-sync` logger
        """
        self._logger = logger or logging.getLogger("entity-sync")
        self.storages = dict()

    def __str__(self) -> str:
        return f"StorageRegistry: storages={list(self.storages.keys())}"

    def __contains__(self, alias: str) -> bool:
        return alias in self.storages

    def __len__(self) -> int:
        return len(self.storages)

    @property
    def logger(self) -> Logger:
        return self._logger

    def get(self, alias: str) -> EntityStorage | None:
        """
        Get storage by alias, or `None` if not registered.
        """
        return self.storages.get(alias)

    def add_storage(
        self, storage: EntityStorage, alias: str | None = None
    ) -> StorageRegistry:
        """
        Register storage under alias, defaulting to its collection type name.

        :raises InvalidStateError: If alias is already registered
        """
        if alias is None:
            alias = storage.collection_type.type_name

        if alias in self.storages:
            raise InvalidStateError(f"Storage <{alias}> already registered")

        self.storages[alias] = storage
        self._logger.debug(f"Registered storage <{alias}>")

        return self

    def get_or_create(
        self,
        collection_type: PropertyTypeCollection,
        original_collection: list[dict] | None = None,
        *,
        storage_cls: type[EntityStorage] | None = None,
        **kwargs: Any,
    ) -> EntityStorage:
        """
        Get storage of the collection type, creating it if needed.

        :param collection_type: Collection type managed by storage
        :param original_collection: Original entities, only used upon creation
        :param storage_cls: Class to instantiate, {obj}`EntityStorage` by default
        :param kwargs: Passed to storage upon creation
        """
        from .storage import EntityStorage

        cls = storage_cls or EntityStorage
        return cls(collection_type, original_collection, registry=self, **kwargs)
