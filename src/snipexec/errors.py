"""Exception taxonomy for the snippet runner.

Only I/O and spawn failures abort a request; the job server publishes
them as error records and keeps serving.  Non-zero exits of the compiled
or interpreted program are *not* exceptions: they are carried by
:class:`~snipexec.executor.engine.RunOutcome` as ordinary output.
"""

from __future__ import annotations


class SnipExecError(Exception):
    """Base class for every error raised by snipexec."""


class UnsupportedLanguage(SnipExecError):
    """No registry entry and no fallback delegate for the language."""

    def __init__(self, language: str) -> None:
        super().__init__(f"Unsupported language: {language or '<unknown>'}")
        self.language = language


class ResolutionIncomplete(SnipExecError):
    """A symbol referenced by the selection could not be located.

    Never raised through a run.  Instances are collected on the resolved
    unit so they can be logged; the toolchain reports the real error.
    """

    def __init__(self, symbol: str, level: str) -> None:
        super().__init__(f"Could not resolve {symbol!r} at {level} level")
        self.symbol = symbol
        self.level = level


class InvalidRequest(SnipExecError):
    """The requested line range cannot be honoured."""


class SourceUnavailable(SnipExecError):
    """The file named by the request does not exist or cannot be read."""


class WorkspaceIOFailed(SnipExecError):
    """Materializing into, or wiping, the work directory failed."""


class ProcessSpawnFailed(SnipExecError):
    """A toolchain binary is missing, not executable, or unreachable."""

    def __init__(self, command: str, reason: str) -> None:
        super().__init__(f"Unable to start {command}: {reason}")
        self.command = command


class BackendUnreachable(SnipExecError):
    """The long-lived backend failed to start or died."""
