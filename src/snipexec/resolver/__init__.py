"""
Context resolution for selected code.

The resolver reads the saved file on disk (never an editor buffer), cuts
out the requested line range and, depending on the language's support
level, gathers the imports, definitions, project files and libraries the
range needs to run on its own.
"""

from .context import ContextResolver
from .unit import ExecutionRequest, Fragment, Provenance, ResolvedUnit

__all__ = [
    "ContextResolver",
    "ExecutionRequest",
    "Fragment",
    "Provenance",
    "ResolvedUnit",
]
