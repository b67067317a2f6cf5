"""Exception types raised by the shell supervisor.

Only configuration and validation problems are raised to tool callers.
Process failures (non-zero exit, forced kill, timeout) are recorded on the
session and observed by polling.
"""

from typing import Optional


ELEVATED_UNAVAILABLE_MESSAGE = "elevated is not available right now."


class ShellvisorError(RuntimeError):
    """Base class for supervisor errors."""


class ToolInputError(ShellvisorError, ValueError):
    """A tool call was missing a required field or used an unknown action."""


class ElevatedNotAvailableError(ShellvisorError):
    """Elevated execution was requested but the policy does not allow it."""

    def __init__(self, message: str = ELEVATED_UNAVAILABLE_MESSAGE) -> None:
        super().__init__(message)


class SessionNotFoundError(ShellvisorError, KeyError):
    """No session with this id is visible to the caller."""

    def __init__(self, session_id: str) -> None:
        super().__init__(session_id)
        self.session_id = session_id

    def __str__(self) -> str:
        return f"No session found for {self.session_id}"


class DuplicateSessionError(ShellvisorError):
    """A session id was registered twice."""


class ProcessSpawnError(ShellvisorError):
    """The shell process could not be started."""

    def __init__(self, message: str, *, command: str = "", cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.command = command
        self.cause = cause

