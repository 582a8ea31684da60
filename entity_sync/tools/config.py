"""
Interface to scenarios as persisted in .yaml file: entity types, original
collection and a sequence of edits to replay.
"""

from __future__ import annotations

import copy
import re
from logging import Logger
from typing import Any, Literal, Self

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from ..core import (
    ActionType,
    ItemInListConstraint,
    NumericIdGenerator,
    PropertyConstraint,
    PropertyType,
    PropertyTypeCollection,
    StorageRegistry,
    SyncedEntityStorage,
    SyncedPropertyTypeObject,
    SyncStrategy,
    UuidIdGenerator,
)
from ..core.schema.property_type import get_scalar_type
from .yaml_model import BaseYamlModel

__all__ = [
    "ScenarioConfig",
    "TypeConfig",
    "PropertyConfig",
    "EditConfig",
    "StorageConfig",
]

COLLECTION_PATTERN = re.compile(r"^\[(\w+)\]$")
"""
Property type denoting a collection, e.g. `[Item]`.
"""


class PropertyConfig(BaseModel):
    """
    Declaration of a property.
    """

    model_config = ConfigDict(extra="forbid")

    type: str
    """Scalar type name, name of an entity type or `[EntityType]`"""

    default: Any = None
    """Default value for new entities, only applied if set"""

    empty: Any = None
    """Value representing "absent", only applied if set"""

    nullable: bool = False

    id_generator: Literal["numeric", "uuid"] | None = None
    """Generate default values, typically for the identity property"""

    choices: list[Any] | None = None
    """Allowed values"""

    max_members: int | None = None
    """Maximum number of members, for collections"""

    def create_default(self) -> Any:
        match self.id_generator:
            case "numeric":
                return NumericIdGenerator()
            case "uuid":
                return UuidIdGenerator()

        return self.default

    def create_constraints(self) -> list[PropertyConstraint]:
        if self.choices is None:
            return []
        return [ItemInListConstraint(self.choices)]


class TypeConfig(BaseModel):
    """
    Declaration of an entity type.
    """

    model_config = ConfigDict(extra="forbid")

    id_property: str = "id"

    properties: dict[str, PropertyConfig]

    @field_validator("properties", mode="before")
    def validate_properties(cls, value: Any) -> Any:
        # allow shorthand of type name only
        if isinstance(value, dict):
            return {
                name: {"type": prop} if isinstance(prop, str) else prop
                for name, prop in value.items()
            }
        return value

    @model_validator(mode="after")
    def validate_id_property(self) -> Self:
        if self.id_property not in self.properties:
            raise ValueError(
                f"identity property '{self.id_property}' not declared"
            )
        return self


class EditConfig(BaseModel):
    """
    One edit to replay.
    """

    model_config = ConfigDict(extra="forbid")

    location: str = ""
    action: ActionType = ActionType.UPDATE
    value: Any = None


class StorageConfig(BaseModel):
    """
    Options of created storage.
    """

    model_config = ConfigDict(extra="forbid")

    allow_parallel_edits: bool = True
    sync_strategy: SyncStrategy = SyncStrategy.FULL_TREE


class ScenarioConfig(BaseYamlModel):
    """
    Encapsulates a scenario for use in tools.
    """

    root: str
    """Name of entity type of the root collection"""

    types: dict[str, TypeConfig]
    """Mapping of type names to declarations"""

    original: list[dict[str, Any]] = []
    """Original collection"""

    edits: list[EditConfig] = []
    """Edits to replay, in order"""

    storage: StorageConfig = StorageConfig()

    @model_validator(mode="after")
    def validate_types(self) -> Self:
        if self.root not in self.types:
            raise ValueError(f"root type '{self.root}' not declared")

        for type_name, type_config in self.types.items():
            for name, prop in type_config.properties.items():
                target = _get_target(prop.type)
                if target in self.types:
                    continue

                try:
                    get_scalar_type(target)
                except TypeError:
                    raise ValueError(
                        f"unknown type '{prop.type}' of property '{type_name}.{name}'"
                    ) from None

        return self

    def build_types(self) -> dict[str, SyncedPropertyTypeObject]:
        """
        Create and compile entity types. Types may refer to each other.
        """
        types = {
            type_name: SyncedPropertyTypeObject(
                type_name, id_property=type_config.id_property
            )
            for type_name, type_config in self.types.items()
        }

        for type_name, type_config in self.types.items():
            for name, prop in type_config.properties.items():
                kwargs: dict[str, Any] = {}

                if prop.id_generator or "default" in prop.model_fields_set:
                    kwargs["default"] = prop.create_default()
                if "empty" in prop.model_fields_set:
                    kwargs["empty"] = prop.empty

                types[type_name].define_property(
                    name,
                    self._resolve_type(types, prop),
                    constraints=prop.create_constraints(),
                    nullable=prop.nullable,
                    **kwargs,
                )

        for prop_type in types.values():
            prop_type.compile()

        return types

    def create_storage(
        self,
        *,
        registry: StorageRegistry | None = None,
        logger: Logger | None = None,
    ) -> SyncedEntityStorage:
        """
        Create storage holding the original collection, without edits.
        """
        types = self.build_types()

        return SyncedEntityStorage(
            PropertyTypeCollection(types[self.root]),
            copy.deepcopy(self.original),
            registry=(
                registry
                if registry is not None
                else StorageRegistry(logger=logger)
            ),
            allow_parallel_edits=self.storage.allow_parallel_edits,
            sync_strategy=self.storage.sync_strategy,
        )

    def apply_edits(self, storage: SyncedEntityStorage):
        """
        Replay edits in order.
        """
        for edit in self.edits:
            storage.edit(edit.location, copy.deepcopy(edit.value), edit.action)

    def _resolve_type(
        self, types: dict[str, SyncedPropertyTypeObject], prop: PropertyConfig
    ) -> PropertyType | str:
        if match := COLLECTION_PATTERN.match(prop.type):
            return PropertyTypeCollection(
                types[match.group(1)], max_members=prop.max_members
            )

        if prop.type in types:
            return types[prop.type]

        return prop.type


def _get_target(type_spec: str) -> str:
    """
    Get name of type referenced by property type.
    """
    if match := COLLECTION_PATTERN.match(type_spec):
        return match.group(1)
    return type_spec
