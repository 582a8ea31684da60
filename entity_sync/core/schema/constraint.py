"""
Reusable value predicates which can be attached to properties.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any, Callable

from ..exceptions import InvalidTypeError

if TYPE_CHECKING:
    from .property_type import PropertyTypeCollection

__all__ = [
    "PropertyConstraint",
    "ItemInListConstraint",
    "AttachedConstraint",
]


class PropertyConstraint:
    """
    Predicate a value must satisfy, e.g. during {obj}`PropertyTypeObject.to_this`.
    """

    failed_text: str
    """Description of the violation, for diagnostics"""

    _check: Callable[[Any], bool]

    def __init__(
        self,
        check: Callable[[Any], bool],
        *,
        failed_text: str = "Data invalid due to unknown reason.",
    ):
        """
        :param check: Must only return `True` if the value conforms to the constraint
        :param failed_text: Description of the violation
        """
        self._check = check
        self.failed_text = failed_text

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.failed_text!r})"

    def check(self, value: Any) -> bool:
        return bool(self._check(value))


class ItemInListConstraint(PropertyConstraint):
    """
    Value must be one of a list of values. If a collection type is provided,
    values are compared by the identity property of its entity type.
    """

    values: Sequence[Any]

    def __init__(
        self,
        values: Sequence[Any],
        value_list_type: PropertyTypeCollection | None = None,
    ):
        from .property_type import PropertyKind

        if values is None:
            raise InvalidTypeError("values")

        if value_list_type is not None and (
            value_list_type.kind is not PropertyKind.COLLECTION
        ):
            raise InvalidTypeError("value_list_type")

        check: Callable[[Any], bool]

        if value_list_type is None:

            def check(value: Any) -> bool:
                return any(v == value for v in values)

        else:
            id_property = value_list_type.entity_type.id_property

            def check(value: Any) -> bool:
                if not isinstance(value, Mapping):
                    return False
                return any(
                    isinstance(v, Mapping)
                    and v.get(id_property) == value.get(id_property)
                    for v in values
                )

        super().__init__(
            check, failed_text=f"Value not in list of {len(values)} values"
        )
        self.values = values


class AttachedConstraint(PropertyConstraint):
    """
    Constraint bound to a named location, resolved against the object being
    checked. Can be passed to {obj}`PropertyTypeObject.to_this` as an
    additional constraint, e.g. to build checks performed before an entity is
    accepted.
    """

    location: str | list[str]

    def __init__(
        self,
        location: str | list[str],
        check: Callable[[Any], bool],
        *,
        failed_text: str | None = None,
    ):
        super().__init__(
            check,
            failed_text=failed_text or f"Constraint at '{location}' violated",
        )
        self.location = location
