"""
Typed description of entity shapes, constraints and identity generators.
"""

from pyrollup import rollup

from . import constraint, id_generator, property_type
from .constraint import *  # noqa
from .id_generator import *  # noqa
from .property_type import *  # noqa

__all__ = rollup(property_type, constraint, id_generator)

__canonical_children__ = [
    "property_type",
    "constraint",
    "id_generator",
]
