"""
Named locations: paths addressing a node in a typed entity graph.

A location is a string of segments separated by `.`, or a list of segments:

- `name`: property of an object
- `prop#value`: member of a collection whose `prop` equals `value`
- `~index~#n`: member of a collection at index `n`
- `id#value#name`: shorthand for `id#value` followed by `name`
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, TypeAlias

from ..exceptions import InvalidStateError
from ..schema.property_type import (
    PropertyKind,
    PropertyType,
    PropertyTypeCollection,
    PropertyTypeObject,
    ScalarType,
)

__all__ = [
    "ARRAY_INDEX_IDENTIFIER",
    "Segment",
    "Resolved",
    "Location",
    "parse_location",
    "format_location",
    "resolve",
    "resolve_type",
    "context_resolve",
    "find_member",
]

__rollup__ = [
    "ARRAY_INDEX_IDENTIFIER",
    "Segment",
    "Location",
    "parse_location",
    "format_location",
]

ARRAY_INDEX_IDENTIFIER = "~index~"
"""
Property name in a segment denoting a raw array index, e.g. `~index~#0`.
"""


@dataclass(frozen=True)
class Segment:
    """
    One step of a location.
    """

    name: str
    """Property name, or the property to match for member segments"""

    value: str | None = None
    """Value to match for member segments"""

    def __str__(self) -> str:
        return self.name if self.value is None else f"{self.name}#{self.value}"

    @property
    def is_member(self) -> bool:
        return self.value is not None

    @property
    def is_index(self) -> bool:
        return self.is_member and self.name == ARRAY_INDEX_IDENTIFIER

    @property
    def index(self) -> int:
        """
        Array index of an index segment.
        """
        assert self.is_index
        try:
            return int(str(self.value))
        except ValueError:
            raise InvalidStateError(
                f"Invalid array index in segment '{self}'"
            ) from None


Location: TypeAlias = str | Sequence[str | Segment] | None


@dataclass
class Resolved:
    """
    Result of resolving a location: the node along with the container holding
    it and its key within that container.
    """

    node: Any
    """Resolved value"""

    parent: Any
    """Container holding `node`, or `None` for the root"""

    key: str | int | None
    """Property name or list index of `node` within `parent`"""

    prop_type: PropertyType | None
    """Type of `node`, if known"""


def parse_location(location: Location) -> list[Segment]:
    """
    Split location into segments.
    """
    if location is None:
        return []

    parts: Sequence[str | Segment]
    if isinstance(location, str):
        parts = location.split(".") if location else []
    else:
        parts = location

    segments: list[Segment] = []

    for part in parts:
        if isinstance(part, Segment):
            segments.append(part)
            continue

        part = str(part)
        if not part:
            raise InvalidStateError(f"Empty segment in location {location!r}")

        pieces = part.split("#")
        if len(pieces) == 1:
            segments.append(Segment(part))
        elif len(pieces) == 2:
            segments.append(Segment(pieces[0], pieces[1]))
        elif len(pieces) == 3:
            segments.append(Segment(pieces[0], pieces[1]))
            segments.append(Segment(pieces[2]))
        else:
            raise InvalidStateError(f"Invalid location segment '{part}'")

    return segments


def format_location(location: Location) -> str:
    """
    Get canonical string form of location.
    """
    return ".".join(str(s) for s in parse_location(location))


def find_member(members: list, name: str, value: Any) -> int | None:
    """
    Get index of first member whose property `name` matches `value`. A string
    `value` also matches members whose value has the same text.
    """
    for index, member in enumerate(members):
        if not isinstance(member, Mapping) or name not in member:
            continue

        candidate = member[name]
        if candidate == value:
            return index

        if (
            isinstance(value, str)
            and not isinstance(candidate, str)
            and str(candidate) == value
        ):
            return index

    return None


def resolve(
    root: Any, location: Location, root_type: PropertyType | None = None
) -> Resolved | None:
    """
    Resolve location starting at `root`, or return `None` if it can't be
    resolved.
    """
    return _resolve(
        Resolved(root, None, None, root_type), parse_location(location)
    )


def resolve_type(
    location: Location, root_type: PropertyType | None
) -> PropertyType | None:
    """
    Resolve only the type of the node addressed by location.
    """
    prop_type = root_type

    for segment in parse_location(location):
        if prop_type is None:
            return None
        prop_type = _child_type(prop_type, segment)

    return prop_type


def context_resolve(
    root: Any,
    location: Location,
    return_index: bool = False,
    root_type: PropertyType | None = None,
    return_type: bool = False,
) -> Any:
    """
    Resolve location starting at `root`.

    :param root: Collection or object to start from
    :param location: Location to resolve
    :param return_index: If the node is a collection member, return its index instead of its value
    :param root_type: Type of `root`, used to parse member values and to resolve types
    :param return_type: Return tuple of `(type, node)`
    :returns: Node, index or `(type, node)`; `None` if not resolved
    """
    resolved = resolve(root, location, root_type)
    if resolved is None:
        return None

    if return_index and isinstance(resolved.parent, list):
        return resolved.key

    if return_type:
        return (resolved.prop_type, resolved.node)

    return resolved.node


def _resolve(current: Resolved, segments: list[Segment]) -> Resolved | None:
    if not segments:
        return current

    step = _step(current, segments[0])
    if step is None:
        return None

    return _resolve(step, segments[1:])


def _step(current: Resolved, segment: Segment) -> Resolved | None:
    node = current.node
    child_type = (
        _child_type(current.prop_type, segment)
        if current.prop_type is not None
        else None
    )

    if segment.is_member:
        if not isinstance(node, list):
            return None

        index: int | None
        if segment.is_index:
            index = segment.index
            if not 0 <= index < len(node):
                return None
        else:
            value = _parse_member_value(child_type, segment)
            index = find_member(node, segment.name, value)
            if index is None:
                return None

        return Resolved(node[index], node, index, child_type)

    if not isinstance(node, Mapping) or segment.name not in node:
        return None

    return Resolved(node[segment.name], node, segment.name, child_type)


def _child_type(
    prop_type: PropertyType, segment: Segment
) -> PropertyType | None:
    if segment.is_member:
        if prop_type.kind is PropertyKind.COLLECTION:
            assert isinstance(prop_type, PropertyTypeCollection)
            return prop_type.entity_type
        return None

    if prop_type.kind is PropertyKind.OBJECT:
        assert isinstance(prop_type, PropertyTypeObject)
        return prop_type.properties.get(segment.name)
    return None


def _parse_member_value(
    member_type: PropertyType | None, segment: Segment
) -> Any:
    """
    Parse value of member segment using the declared scalar type, if
    available.
    """
    if member_type is None or member_type.kind is not PropertyKind.OBJECT:
        return segment.value

    assert isinstance(member_type, PropertyTypeObject)
    prop_type = member_type.properties.get(segment.name)
    if not isinstance(prop_type, ScalarType):
        return segment.value

    try:
        return prop_type.parse(segment.value)
    except InvalidStateError:
        return segment.value
