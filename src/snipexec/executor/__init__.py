"""
Execution backends for materialized snippets.

``ExecutionEngine`` runs a registered language's compile/run chain in
the work directory.  ``FallbackAdapter`` covers languages without a
descriptor by handing the selected block to a ``FallbackDelegate``.
Both spawn children through a shared ``ProcessTracker`` so a single
Terminate reaches every process the backend started.
"""

from .engine import ExecutionEngine, OutcomeStatus, RunOutcome
from .fallback import CommandDelegate, FallbackAdapter, FallbackDelegate, HttpDelegate
from .process import CancellationToken, ProcessTracker

__all__ = [
    "CancellationToken",
    "CommandDelegate",
    "ExecutionEngine",
    "FallbackAdapter",
    "FallbackDelegate",
    "HttpDelegate",
    "OutcomeStatus",
    "ProcessTracker",
    "RunOutcome",
]
