"""
Generators for identity values of newly inserted entities.
"""

from __future__ import annotations

import random
import uuid
from typing import Any, Callable

from ..exceptions import InvalidTypeError

__all__ = [
    "IdGenerator",
    "NumericIdGenerator",
    "UuidIdGenerator",
]


class IdGenerator:
    """
    Produces identity values. Assign an instance as the `default` of an
    identity property to have inserted entities and templates receive an
    identity automatically.
    """

    _func: Callable[[str | None, Any, dict[str, Any]], str | int]
    _options: dict[str, Any]

    def __init__(
        self,
        func: Callable[[str | None, Any, dict[str, Any]], str | int],
        options: dict[str, Any] | None = None,
    ):
        """
        :param func: Invoked with namespace, content and `options`
        :param options: Passed through to `func` upon every invocation
        """
        self._func = func
        self._options = options or {}

    def generate(
        self, namespace: str | None = None, content: Any = None
    ) -> str | int:
        """
        Get a new identity value.

        :param namespace: Namespace to generate the value for, typically the type name
        :param content: Content the value will be associated with
        """
        return self._func(namespace, content, self._options)


class NumericIdGenerator(IdGenerator):
    """
    Generates random integers having exactly `length` digits.
    """

    def __init__(self, length: int = 5):
        if not isinstance(length, int) or isinstance(length, bool) or length < 1:
            raise InvalidTypeError(
                f"Length of numeric identity must be a positive integer, got {length!r}"
            )

        lower = 10 ** (length - 1)
        upper = 10**length - 1

        def generate(namespace, content, options) -> int:
            return random.randint(lower, upper)

        super().__init__(generate, {"length": length})


class UuidIdGenerator(IdGenerator):
    """
    Generates random UUID strings.
    """

    def __init__(self):
        super().__init__(lambda namespace, content, options: str(uuid.uuid4()))
