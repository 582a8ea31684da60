"""
Local edits of entity collections, kept apart from the original data.
"""

from pyrollup import rollup

from . import location, registry, storage, types
from .location import *  # noqa
from .registry import *  # noqa
from .storage import *  # noqa
from .types import *  # noqa

__all__ = rollup(storage, registry, types, location)

__canonical_children__ = [
    "storage",
    "registry",
    "types",
    "location",
]
