"""
Transport contract and the entity type bound to it.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from ..exceptions import ContractNotImplementedError
from ..schema.property_type import PropertyDefinition, PropertyType, PropertyTypeObject

__all__ = [
    "Transport",
    "SyncedPropertyTypeObject",
]


class Transport:
    """
    Protocol-agnostic access to the remote side of an entity type. Subclass
    and override the verbs supported by the remote end; verbs not overridden
    raise {obj}`ContractNotImplementedError`.

    Write verbs return a truthy value upon success.
    """

    async def fetch_by_id(
        self, prop_type: SyncedPropertyTypeObject, entity_id: Any
    ) -> dict | None:
        raise ContractNotImplementedError(
            f"fetch_by_id not provided for <{prop_type.type_name}>"
        )

    async def fetch_by_search(
        self,
        prop_type: SyncedPropertyTypeObject,
        search_term: str,
        search_options: Mapping[str, Any] | None = None,
    ) -> list[dict]:
        raise ContractNotImplementedError(
            f"fetch_by_search not provided for <{prop_type.type_name}>"
        )

    async def insert(
        self, prop_type: SyncedPropertyTypeObject, entity: dict
    ) -> Any:
        """
        Create entity; should return the created entity.
        """
        raise ContractNotImplementedError(
            f"insert not provided for <{prop_type.type_name}>"
        )

    async def update(
        self, prop_type: SyncedPropertyTypeObject, entity: dict
    ) -> Any:
        """
        Update entity, which carries its identity; should return the updated
        entity.
        """
        raise ContractNotImplementedError(
            f"update not provided for <{prop_type.type_name}>"
        )

    async def delete(
        self, prop_type: SyncedPropertyTypeObject, entity: dict
    ) -> Any:
        """
        Delete entity, which carries its identity; should return `True`.
        """
        raise ContractNotImplementedError(
            f"delete not provided for <{prop_type.type_name}>"
        )


class SyncedPropertyTypeObject(PropertyTypeObject):
    """
    Object type whose entities can be written to a remote end through a
    {obj}`Transport`.
    """

    transport: Transport | None

    def __init__(
        self,
        type_name: str,
        properties: (
            Mapping[str, PropertyType | str | PropertyDefinition] | None
        ) = None,
        *,
        id_property: str = "id",
        transport: Transport | None = None,
    ):
        super().__init__(type_name, properties, id_property=id_property)
        self.transport = transport

    async def fetch_by_id(self, entity_id: Any) -> dict | None:
        return await self._get_transport("fetch_by_id").fetch_by_id(
            self, entity_id
        )

    async def fetch_by_search(
        self,
        search_term: str,
        search_options: Mapping[str, Any] | None = None,
    ) -> list[dict]:
        return await self._get_transport("fetch_by_search").fetch_by_search(
            self, search_term, search_options
        )

    async def insert(self, entity: dict) -> Any:
        return await self._get_transport("insert").insert(self, entity)

    async def update(self, entity: dict) -> Any:
        return await self._get_transport("update").update(self, entity)

    async def delete(self, entity: dict) -> Any:
        return await self._get_transport("delete").delete(self, entity)

    def _get_transport(self, verb: str) -> Transport:
        if self.transport is None:
            raise ContractNotImplementedError(
                f"{verb} of <{self.type_name}> requires a transport"
            )
        return self.transport
