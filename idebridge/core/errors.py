"""Error types and user-facing error descriptions.

Only lifecycle seams raise (starting the bridge server). Everything past
that point reports failures as log entries or as a terminal review status,
so this module also turns exceptions into short messages with suggestions.
"""

import errno
from dataclasses import dataclass
from typing import Optional


class IDEBridgeError(Exception):
    """Base class for idebridge errors."""


class BridgeStartError(IDEBridgeError):
    """The bridge server could not bind or start serving."""


class BridgeNotRunningError(IDEBridgeError):
    """An operation needed a running bridge but the handle is stopped."""


@dataclass
class DescribedError:
    """An exception rendered for display."""

    message: str
    suggestion: Optional[str] = None

    def __str__(self) -> str:
        """Human-readable error representation."""
        if self.suggestion:
            return f"{self.message} | Suggestion: {self.suggestion}"
        return self.message


# Lowercase message fragments mapped to suggestions
ERROR_SUGGESTIONS = {
    "no such file": "Check the repository path and that the claude CLI is installed",
    "not found": "Install the claude CLI or set review.claude_executable",
    "permission denied": "Check permissions on the repository and discovery directory",
    "not a directory": "The repository path must be a directory",
    "address already in use": "Another process holds the port; retry to get a new one",
    "no space left": "Free up disk space on the device",
}


def describe_error(error: Exception, executable: Optional[str] = None) -> DescribedError:
    """Describe an exception raised while spawning or serving.

    Args:
        error: The exception to describe
        executable: Program that was being launched, if any

    Returns:
        DescribedError with message and optional suggestion
    """
    if isinstance(error, FileNotFoundError):
        name = executable or error.filename or "program"
        return DescribedError(
            message=f"{name} not found",
            suggestion="Install the claude CLI or set review.claude_executable",
        )

    if isinstance(error, PermissionError):
        return DescribedError(
            message=str(error),
            suggestion="Check permissions on the repository and discovery directory",
        )

    if isinstance(error, NotADirectoryError):
        return DescribedError(
            message=str(error),
            suggestion="The repository path must be a directory",
        )

    if isinstance(error, OSError) and error.errno == errno.EADDRINUSE:
        return DescribedError(
            message=str(error),
            suggestion="Another process holds the port; retry to get a new one",
        )

    message = str(error) or type(error).__name__
    return DescribedError(message=message, suggestion=_get_suggestion(message.lower()))


def _get_suggestion(error_msg: str) -> Optional[str]:
    """Look up a suggestion for a lowercase error message."""
    for pattern, suggestion in ERROR_SUGGESTIONS.items():
        if pattern in error_msg:
            return suggestion
    return None
