"""
Schema, edit engine and sync layer.
"""

from pyrollup import rollup

from . import exceptions, schema, storage, sync
from .exceptions import *  # noqa
from .schema import *  # noqa
from .storage import *  # noqa
from .sync import *  # noqa

__all__ = rollup(
    schema,
    storage,
    sync,
    exceptions,
)

__canonical_children__ = [
    "schema",
    "storage",
    "sync",
    "exceptions",
]
