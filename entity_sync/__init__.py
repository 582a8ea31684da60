"""
entity-sync: typed entity collections with local edits, diffing and sync.
"""

from pyrollup import rollup

from . import core
from .core import *  # noqa

__all__ = rollup(core)

__canonical_children__ = [
    "core",
]
