"""
Classification of edited entities and extraction of outbound payloads.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from ..exceptions import InvalidStateError
from ..schema.property_type import (
    PropertyKind,
    PropertyType,
    PropertyTypeCollection,
    PropertyTypeObject,
)
from ..storage.location import find_member
from ..storage.types import State, get_state
from ..utils import merge_deep

__all__ = [
    "AlteredState",
    "get_altered_state",
    "extend_patch_object",
    "extract_own_properties",
]

logger = logging.getLogger("entity-sync")


@dataclass
class AlteredState:
    """
    Properties present in an edited entity, grouped by how they are synced.
    """

    own_properties: list[tuple[str, PropertyType]] = field(
        default_factory=list
    )
    """Scalars and references to other entities"""

    sub_entities: list[tuple[str, PropertyTypeObject]] = field(
        default_factory=list
    )
    """Related entities edited in place"""

    sub_collections: list[tuple[str, PropertyTypeCollection]] = field(
        default_factory=list
    )
    """Collections with edited members"""


def get_altered_state(
    prop_type: PropertyTypeObject, diff_node: Mapping
) -> AlteredState:
    """
    Classify each non-identity property present in `diff_node`.

    An object-typed property carrying the child's identity is a reference
    (own property): a different entity was attached. Without identity, the
    same entity was edited in place (sub-entity). New entities are always
    sub-entities, while deleted ones are own properties which detach the
    relation.
    """
    altered = AlteredState()

    for name in prop_type.defined_properties_without_id():
        if name not in diff_node:
            continue

        child_type = prop_type.properties[name]

        match child_type.kind:
            case PropertyKind.COLLECTION:
                assert isinstance(child_type, PropertyTypeCollection)
                altered.sub_collections.append((name, child_type))
            case PropertyKind.OBJECT:
                assert isinstance(child_type, PropertyTypeObject)
                if _is_sub_entity(child_type, diff_node[name]):
                    altered.sub_entities.append((name, child_type))
                else:
                    altered.own_properties.append((name, child_type))
            case _:
                altered.own_properties.append((name, child_type))

    return altered


def extract_own_properties(
    prop_type: PropertyTypeObject,
    diff_node: Mapping,
    source_node: Mapping | None = None,
    altered: AlteredState | None = None,
) -> dict:
    """
    Get payload holding identity and own properties only.
    """
    altered = altered or get_altered_state(prop_type, diff_node)
    patch = _identity(prop_type, diff_node, source_node)

    for name, child_type in altered.own_properties:
        patch[name] = _own_value(child_type, diff_node[name])

    return patch


def extend_patch_object(
    prop_type: PropertyTypeObject,
    diff_node: Mapping,
    source_node: Mapping | None = None,
    altered: AlteredState | None = None,
) -> dict:
    """
    Build outbound payload for an edited entity, recursing into sub-entities
    and reconciling sub-collections against the original members.

    References are sent by identity. Collections are sent in full, since they
    can't be diffed by the remote end; their members are sent without
    identity.

    :param prop_type: Type of entity
    :param diff_node: Edit entry of entity
    :param source_node: Original entity, if any
    :param altered: Classification of `diff_node`, computed if not provided
    :raises InvalidStateError: If an original collection member has no state,
        or a member has an unknown state
    """
    altered = altered or get_altered_state(prop_type, diff_node)
    patch = extract_own_properties(prop_type, diff_node, source_node, altered)
    source = source_node if isinstance(source_node, Mapping) else {}

    for name, child_type in altered.sub_entities:
        patch[name] = extend_patch_object(
            child_type, diff_node[name], source.get(name)
        )

    for name, coll_type in altered.sub_collections:
        patch[name] = _reconcile(coll_type, diff_node[name], source.get(name))

    return patch


def _reconcile(
    coll_type: PropertyTypeCollection,
    diff_members: list,
    source_members: list | None,
) -> list[dict]:
    entity_type = coll_type.entity_type
    id_property = entity_type.id_property

    originals = source_members if isinstance(source_members, list) else []
    members = [_patch_original(entity_type, m) for m in originals]

    for edited in diff_members:
        state = get_state(edited)
        identity = edited.get(id_property)

        # nested members of inserted entities carry no state
        if state is None and (
            identity is None
            or find_member(originals, id_property, identity) is None
        ):
            state = State.INSERTED

        match state:
            case State.UPDATED | State.DELETED:
                index = (
                    find_member(members, id_property, identity)
                    if identity is not None
                    else None
                )

                if index is None:
                    logger.warning(
                        f"Skipping change of <{entity_type.type_name}> {id_property}={identity!r}: not present in original collection"
                    )
                    continue

                if state is State.DELETED:
                    del members[index]
                else:
                    source_index = find_member(originals, id_property, identity)
                    members[index] = merge_deep(
                        members[index],
                        extend_patch_object(
                            entity_type,
                            edited,
                            (
                                originals[source_index]
                                if source_index is not None
                                else None
                            ),
                        ),
                    )

            case State.INSERTED:
                members.append(extend_patch_object(entity_type, edited))

            case None:
                raise InvalidStateError(
                    f"Member of <{coll_type.type_name}> without state, indicating nothing changed"
                )

    for member in members:
        member.pop(id_property, None)

    return members


def _patch_original(entity_type: PropertyTypeObject, entity: Mapping) -> dict:
    """
    Convert original entity to payload form: declared properties only,
    references by identity, nested collection members without identity.
    """
    patch: dict[str, Any] = {}

    for name, value in entity.items():
        child_type = entity_type.properties.get(name)
        if child_type is None:
            continue

        if child_type.kind is PropertyKind.COLLECTION and isinstance(
            value, list
        ):
            assert isinstance(child_type, PropertyTypeCollection)
            member_type = child_type.entity_type
            members = [_patch_original(member_type, m) for m in value]
            for member in members:
                member.pop(member_type.id_property, None)
            patch[name] = members
        elif isinstance(child_type, PropertyTypeObject) and _is_sub_entity(
            child_type, value
        ):
            patch[name] = _patch_original(child_type, value)
        else:
            patch[name] = _own_value(child_type, value)

    return patch


def _identity(
    prop_type: PropertyTypeObject,
    diff_node: Mapping,
    source_node: Mapping | None,
) -> dict:
    id_property = prop_type.id_property

    if id_property in diff_node:
        return {id_property: diff_node[id_property]}
    if isinstance(source_node, Mapping) and id_property in source_node:
        return {id_property: source_node[id_property]}
    return {}


def _is_sub_entity(child_type: PropertyTypeObject, value: Any) -> bool:
    if not isinstance(value, Mapping):
        return False

    state = get_state(value)
    if state is State.DELETED:
        return False
    if state is State.INSERTED:
        return True
    return child_type.id_property not in value


def _own_value(child_type: PropertyType, value: Any) -> Any:
    if child_type.kind is PropertyKind.OBJECT:
        assert isinstance(child_type, PropertyTypeObject)
        if not isinstance(value, Mapping) or get_state(value) is State.DELETED:
            return None
        return value.get(child_type.id_property)

    return copy.deepcopy(value)
