"""
Turns edits into writes against a remote end.
"""

from pyrollup import rollup

from . import action, patch, storage, transport
from .action import *  # noqa
from .patch import *  # noqa
from .storage import *  # noqa
from .transport import *  # noqa

__all__ = rollup(storage, action, transport, patch)

__canonical_children__ = [
    "storage",
    "action",
    "transport",
    "patch",
]
