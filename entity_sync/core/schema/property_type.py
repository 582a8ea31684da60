"""
Classes for data model definition.
"""

from __future__ import annotations

import copy
import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum, auto
from types import MappingProxyType
from typing import Any, Callable, Self

from ..exceptions import (
    ContractNotImplementedError,
    InvalidStateError,
    InvalidTypeError,
)
from .constraint import AttachedConstraint, PropertyConstraint
from .id_generator import IdGenerator

__all__ = [
    "MISSING",
    "PropertyKind",
    "PropertyType",
    "ScalarType",
    "PropertyDefinition",
    "PropertyTypeObject",
    "PropertyTypeCollection",
    "STRING",
    "NUMBER",
    "BOOLEAN",
    "get_scalar_type",
    "register_scalar_type",
]

__rollup__ = [
    "PropertyKind",
    "PropertyType",
    "ScalarType",
    "PropertyDefinition",
    "PropertyTypeObject",
    "PropertyTypeCollection",
]

logger = logging.getLogger("entity-sync")


class _Missing:
    """
    Sentinel type for "no value supplied", distinct from `None`.
    """

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


class PropertyKind(Enum):
    """
    Kind of a {obj}`PropertyType`. Engine code dispatches on this rather than
    on the class of a type.
    """

    SCALAR = auto()
    """Primitive value such as a string or number"""

    OBJECT = auto()
    """Nested entity with declared properties"""

    COLLECTION = auto()
    """List of entities of one type"""


class PropertyType:
    """
    Base class for property types.
    """

    type_name: str = "GenericObject"

    kind: PropertyKind

    _compiled: bool = False

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.type_name})"

    @property
    def compiled(self) -> bool:
        return self._compiled

    def compile(self):
        """
        Prepare this type for use. Idempotent.
        """
        self._compiled = True

    def validator(self, value: Any) -> Any:
        """
        May be provided by subclass; should return a truthy value if `value`
        conforms to this type.
        """
        raise ContractNotImplementedError(
            f"Validator of <{self.type_name}> not defined"
        )

    def validate(self, value: Any) -> bool:
        return bool(self.validator(value))


class ScalarType(PropertyType):
    """
    Primitive type identified by its name, e.g. `"string"`.
    """

    kind = PropertyKind.SCALAR

    py_types: tuple[type, ...]
    """Python types accepted by validation"""

    _parser: Callable[[str], Any]

    def __init__(
        self,
        type_name: str,
        py_types: tuple[type, ...],
        parser: Callable[[str], Any],
    ):
        self.type_name = type_name
        self.py_types = py_types
        self._parser = parser
        self._compiled = True

    def validator(self, value: Any) -> bool:
        # bool is a subclass of int; only accept it if explicitly listed
        if isinstance(value, bool) and bool not in self.py_types:
            return False
        return isinstance(value, self.py_types)

    def parse(self, text: Any) -> Any:
        """
        Convert text, e.g. the value part of a location segment, to a value of
        this type. Non-string values are returned as-is.
        """
        if not isinstance(text, str):
            return text

        try:
            return self._parser(text)
        except ValueError:
            raise InvalidStateError(
                f"Can't parse '{text}' as <{self.type_name}>"
            ) from None


def _parse_number(text: str) -> int | float:
    try:
        return int(text)
    except ValueError:
        return float(text)


def _parse_boolean(text: str) -> bool:
    lowered = text.strip().lower()
    if lowered in {"true", "1", "yes"}:
        return True
    if lowered in {"false", "0", "no"}:
        return False
    raise ValueError(text)


STRING = ScalarType("string", (str,), str)
NUMBER = ScalarType("number", (int, float), _parse_number)
BOOLEAN = ScalarType("boolean", (bool,), _parse_boolean)

_scalar_types: dict[str, ScalarType] = {
    t.type_name: t for t in (STRING, NUMBER, BOOLEAN)
}


def register_scalar_type(scalar_type: ScalarType) -> ScalarType:
    """
    Make a scalar type available by name in property definitions.
    """
    if scalar_type.type_name in _scalar_types:
        raise InvalidStateError(
            f"Scalar type <{scalar_type.type_name}> already registered"
        )
    _scalar_types[scalar_type.type_name] = scalar_type
    return scalar_type


def get_scalar_type(type_name: str) -> ScalarType:
    """
    Lookup scalar type by name.
    """
    scalar_type = _scalar_types.get(type_name.lower())
    if scalar_type is None:
        raise InvalidTypeError(f"Unknown scalar type <{type_name}>")
    return scalar_type


@dataclass
class PropertyDefinition:
    """
    Declaration of a property as provided by the user, prior to compilation.
    """

    data_type: PropertyType | str
    """Type, or name of a scalar type"""

    default: Any = MISSING
    """Default value, or an {obj}`IdGenerator`"""

    empty: Any = MISSING
    """Value representing "absent"; 0 if not provided"""

    constraints: list[PropertyConstraint] = field(default_factory=list)

    nullable: bool = False


class _ProjectionError(Exception):
    """
    Raised internally by projection upon any violation; the public interface
    returns `None` instead.
    """


class PropertyTypeObject(PropertyType):
    """
    Named shape of an entity: declared properties, one of which identifies
    the entity.

    Must be compiled before use. {obj}`EntityStorage` compiles all types
    reachable from its collection type.
    """

    kind = PropertyKind.OBJECT

    id_property: str
    """Name of identity property"""

    properties: Mapping[str, PropertyType]
    """Mapping of property name to compiled type"""

    default_values: Mapping[str, Any]

    empty_values: Mapping[str, Any]

    constraints: dict[str, list[PropertyConstraint]]

    nullable: frozenset[str]

    _definitions: dict[str, PropertyDefinition]

    _without_id: list[str]

    def __init__(
        self,
        type_name: str,
        properties: (
            Mapping[str, PropertyType | str | PropertyDefinition] | None
        ) = None,
        *,
        id_property: str = "id",
    ):
        """
        :param type_name: Name of this type
        :param properties: Initial property definitions; more may be added using {obj}`define_property` until compiled
        :param id_property: Name of identity property
        """
        self.type_name = type_name
        self.id_property = id_property
        self._definitions = {}

        self.properties = MappingProxyType({})
        self.default_values = MappingProxyType({})
        self.empty_values = MappingProxyType({})
        self.constraints = {}
        self.nullable = frozenset()
        self._without_id = []

        for name, definition in (properties or {}).items():
            if isinstance(definition, PropertyDefinition):
                self._check_not_compiled(name)
                self._definitions[name] = definition
            else:
                self.define_property(name, definition)

    def define_property(
        self,
        name: str,
        data_type: PropertyType | str,
        default: Any = MISSING,
        empty: Any = MISSING,
        *,
        constraints: list[PropertyConstraint] | None = None,
        nullable: bool = False,
    ) -> Self:
        """
        Register a property.

        :param name: Property name
        :param data_type: Type, or name of a scalar type
        :param default: Default value for new instances, or an {obj}`IdGenerator`
        :param empty: Value which represents "absent" for this property
        :param constraints: Constraints checked upon projection
        :param nullable: Whether `None` is accepted upon projection
        """
        self._check_not_compiled(name)

        self._definitions[name] = PropertyDefinition(
            data_type,
            default=default,
            empty=empty,
            constraints=list(constraints or []),
            nullable=nullable,
        )
        return self

    @property
    def defined_properties(self) -> dict[str, PropertyDefinition]:
        """
        Copy of the property definitions as provided by user.
        """
        return dict(self._definitions)

    def defined_properties_without_id(self) -> list[str]:
        """
        Names of defined properties, except the identity property.
        """
        if self._compiled:
            return list(self._without_id)
        return [n for n in self._definitions if n != self.id_property]

    def compile(self):
        """
        Resolve property definitions and compile all nested types. Idempotent
        and safe for recursive type graphs.
        """
        if self._compiled:
            return

        # set early since nested types may refer back to this one
        self._compiled = True

        properties: dict[str, PropertyType] = {}
        default_values: dict[str, Any] = {}
        empty_values: dict[str, Any] = {}
        nullable: set[str] = set()

        for name, definition in self._definitions.items():
            data_type = definition.data_type

            if isinstance(data_type, str):
                data_type = get_scalar_type(data_type)
            elif not isinstance(data_type, PropertyType):
                raise InvalidTypeError(
                    f"Invalid type of property <{name}> at <{self.type_name}>: {data_type!r}"
                )

            properties[name] = data_type

            if definition.default is not MISSING:
                default_values[name] = definition.default
            if definition.empty is not MISSING:
                empty_values[name] = definition.empty
            if definition.constraints:
                self.constraints[name] = list(definition.constraints)
            if definition.nullable:
                nullable.add(name)

        self.properties = MappingProxyType(properties)
        self.default_values = MappingProxyType(default_values)
        self.empty_values = MappingProxyType(empty_values)
        self.nullable = frozenset(nullable)
        self._without_id = [n for n in properties if n != self.id_property]

        for data_type in properties.values():
            data_type.compile()

    def add_constraint(self, name: str, constraint: PropertyConstraint) -> Self:
        """
        Attach a constraint to a registered property.
        """
        if name not in self.properties and name not in self._definitions:
            raise InvalidStateError(
                f"Property <{name}> not registered at <{self.type_name}>"
            )
        self.constraints.setdefault(name, []).append(constraint)
        return self

    def get_property_type(self, name: str) -> PropertyType:
        """
        Get compiled type of property, raising {obj}`InvalidStateError` if not
        registered.
        """
        prop_type = self.properties.get(name)
        if prop_type is None:
            raise InvalidStateError(
                f"Property <{name}> not registered at <{self.type_name}>"
            )
        return prop_type

    def validator(self, value: Any) -> bool:
        if not isinstance(value, Mapping):
            return False

        for name, prop_type in self.properties.items():
            if name not in value:
                continue
            if value[name] is None:
                if name not in self.nullable:
                    return False
            elif not prop_type.validate(value[name]):
                return False

        return True

    def is_empty(self, obj: Mapping | None) -> bool:
        """
        Check whether every declared property of `obj` equals its empty value
        (0 unless declared). An absent property only equals an empty value of
        `None`.
        """
        if not obj:
            return False

        return all(
            obj.get(name) == self.empty_values.get(name, 0)
            for name in self.properties
        )

    def is_null(self, obj: Any) -> bool:
        return not obj

    def get_empty(self) -> dict[str, Any]:
        """
        Get an entity representing an empty data structure.
        """
        return {
            name: copy.deepcopy(self.empty_values.get(name, 0))
            for name in self.properties
        }

    def instantiate(self, values: Mapping[str, Any] | None = None) -> dict:
        """
        Create a new entity with default values applied, invoking identity
        generators for properties not provided in `values`.
        """
        values = values or {}
        entity: dict[str, Any] = {}

        for name, default in self.default_values.items():
            if name in values:
                continue
            if isinstance(default, IdGenerator):
                entity[name] = default.generate(self.type_name, values)
            elif isinstance(default, PropertyTypeObject):
                entity[name] = default.instantiate()
            else:
                entity[name] = copy.deepcopy(default)

        entity.update(copy.deepcopy(dict(values)))
        return entity

    def create_template(self, id_value: Any) -> dict:
        """
        Create a new entity with the given identity and default values.
        """
        return self.instantiate({self.id_property: id_value})

    def parse_value(self, name: str, text: Any) -> Any:
        """
        Parse text as the value of the given scalar property.
        """
        prop_type = self.get_property_type(name)
        if isinstance(prop_type, ScalarType):
            return prop_type.parse(text)
        return text

    def to_this(
        self,
        obj: Any,
        additional_constraints: (
            PropertyConstraint | list[PropertyConstraint] | None
        ) = None,
    ) -> dict | None:
        """
        Project an arbitrary object onto this type: copy declared properties
        only, checking types, nullability and constraints.

        :param obj: Untrusted input
        :param additional_constraints: Checked against the projected object; {obj}`AttachedConstraint` instances are resolved by their location
        :returns: Projected object, or `None` upon any violation
        """
        from ..storage.location import context_resolve

        if not obj:
            return None

        try:
            out = _project_object(self, obj, "")
        except _ProjectionError as e:
            logger.debug(f"Projection onto <{self.type_name}> failed: {e}")
            return None

        if additional_constraints is None:
            additional_constraints = []
        elif isinstance(additional_constraints, PropertyConstraint):
            additional_constraints = [additional_constraints]

        for constraint in additional_constraints:
            if isinstance(constraint, AttachedConstraint):
                value = context_resolve(
                    out, constraint.location, root_type=self
                )
            else:
                value = out

            if not constraint.check(value):
                logger.debug(
                    f"Projection onto <{self.type_name}> failed: {constraint.failed_text}"
                )
                return None

        return out

    def _check_not_compiled(self, name: str):
        if self._compiled:
            raise InvalidStateError(
                f"Attempt to define property <{name}> on compiled type <{self.type_name}>"
            )


class PropertyTypeCollection(PropertyType):
    """
    List of entities of a single {obj}`PropertyTypeObject`.
    """

    kind = PropertyKind.COLLECTION

    entity_type: PropertyTypeObject

    max_members: float
    """Maximum number of members, unbounded by default"""

    sort_property: str | None
    """Property to sort by; identity property if not provided"""

    def __init__(
        self,
        entity_type: PropertyTypeObject,
        *,
        max_members: int | None = None,
        sort_property: str | None = None,
    ):
        self.entity_type = entity_type
        self.max_members = math.inf if max_members is None else max_members
        self.sort_property = sort_property
        self.type_name = (
            f"{getattr(entity_type, 'type_name', 'Generic')}Collection"
        )

    def compile(self):
        if self._compiled:
            return

        if not isinstance(self.entity_type, PropertyTypeObject):
            raise InvalidTypeError(
                f"Entity type of <{self.type_name}> must be an object type: {self.entity_type!r}"
            )

        self._compiled = True

        self.type_name = f"{self.entity_type.type_name}Collection"
        if self.sort_property is None:
            self.sort_property = self.entity_type.id_property

        self.entity_type.compile()

    def get_maximum_members(self) -> float:
        return self.max_members

    def validator(self, value: Any) -> bool:
        return (
            isinstance(value, list)
            and len(value) <= self.max_members
            and all(self.entity_type.validate(m) for m in value)
        )


def _project_object(
    obj_type: PropertyTypeObject, value: Any, path: str
) -> dict[str, Any]:
    if not isinstance(value, Mapping):
        raise _ProjectionError(
            f"{path or '<root>'}: expected <{obj_type.type_name}>, got {type(value).__name__}"
        )

    out: dict[str, Any] = {}

    for name, prop_type in obj_type.properties.items():
        if name not in value:
            continue

        item_path = f"{path}.{name}" if path else name
        item = value[name]

        if item is None:
            if name not in obj_type.nullable:
                raise _ProjectionError(f"{item_path}: not nullable")
            out[name] = None
            continue

        out[name] = _project_value(prop_type, item, item_path)

        for constraint in obj_type.constraints.get(name, []):
            if not constraint.check(out[name]):
                raise _ProjectionError(f"{item_path}: {constraint.failed_text}")

    return out


def _project_value(prop_type: PropertyType, value: Any, path: str) -> Any:
    if prop_type.kind is PropertyKind.OBJECT:
        assert isinstance(prop_type, PropertyTypeObject)
        return _project_object(prop_type, value, path)

    if prop_type.kind is PropertyKind.COLLECTION:
        assert isinstance(prop_type, PropertyTypeCollection)

        if not isinstance(value, list):
            raise _ProjectionError(f"{path}: expected list")
        if len(value) > prop_type.max_members:
            raise _ProjectionError(
                f"{path}: more than {prop_type.max_members} members"
            )

        return [
            _project_object(prop_type.entity_type, member, f"{path}[{i}]")
            for i, member in enumerate(value)
        ]

    if not prop_type.validate(value):
        raise _ProjectionError(
            f"{path}: expected <{prop_type.type_name}>, got {type(value).__name__}"
        )

    return value
