"""Warden error hierarchy."""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorCategory(StrEnum):
    """Category of error for classification and handling."""

    EXTERNAL = "external"
    IDENTITY = "identity"
    LIFECYCLE = "lifecycle"
    WORKSPACE = "workspace"
    CONFIGURATION = "configuration"
    INTERNAL = "internal"


class WardenError(Exception):
    """Base error for all supervisor exceptions."""

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory = ErrorCategory.INTERNAL,
        retryable: bool = False,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.category = category
        self.retryable = retryable
        self.details: dict[str, Any] = details or {}

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str(self)!r}, category={self.category!r})"


class AlreadyRunning(WardenError):
    """Another supervisor holds the workspace lock."""

    def __init__(self, lock_path: str) -> None:
        super().__init__(
            f"daemon already running (lock held by another process: {lock_path})",
            category=ErrorCategory.LIFECYCLE,
        )
        self.lock_path = lock_path


class NonOperational(WardenError):
    """Soft refusal: the group is parked, docked or has auto-restart disabled."""

    def __init__(self, group: str, reason: str) -> None:
        super().__init__(f"{group}: {reason}", category=ErrorCategory.LIFECYCLE)
        self.group = group
        self.reason = reason


class RestartInProgress(WardenError):
    """A restart for the same identity is already running."""

    def __init__(self, address: str) -> None:
        super().__init__(f"restart already in progress for {address}", category=ErrorCategory.LIFECYCLE)
        self.address = address


class UnknownIdentity(WardenError):
    """An address or identity string does not match any known role form."""

    def __init__(self, value: str) -> None:
        super().__init__(f"unknown agent identity: {value!r}", category=ErrorCategory.IDENTITY)
        self.value = value


class MalformedEvent(WardenError):
    """A line from an external stream could not be decoded."""

    def __init__(self, line: str, reason: str) -> None:
        super().__init__(f"malformed event ({reason}): {line[:200]!r}", category=ErrorCategory.EXTERNAL)
        self.line = line
        self.reason = reason


class StaleCodeRefused(WardenError):
    """Fetching the workspace failed; the agent is not started on stale code."""

    def __init__(self, work_dir: str, stderr: str) -> None:
        super().__init__(
            f"git fetch failed in {work_dir}: {stderr or 'unknown error'}",
            category=ErrorCategory.WORKSPACE,
            retryable=True,
        )
        self.work_dir = work_dir
        self.stderr = stderr


class ExternalAdapterError(WardenError):
    """Base for failures surfaced by the external CLI adapters."""

    def __init__(self, message: str, *, retryable: bool = False, **kwargs: Any) -> None:
        super().__init__(message, category=ErrorCategory.EXTERNAL, retryable=retryable, **kwargs)


class NotFound(ExternalAdapterError):
    """A required file, directory or external entity does not exist."""

    def __init__(self, what: str) -> None:
        super().__init__(f"not found: {what}")
        self.what = what


class PermissionDenied(ExternalAdapterError):
    """The OS refused to execute a command or touch a path."""

    def __init__(self, what: str) -> None:
        super().__init__(f"permission denied: {what}")
        self.what = what


class ExternalBinaryMissing(ExternalAdapterError):
    """The external CLI is not installed or not on PATH."""

    def __init__(self, binary: str) -> None:
        super().__init__(f"'{binary}' not found. Install it or add it to PATH.")
        self.binary = binary


class ExternalError(ExternalAdapterError):
    """The external CLI ran and exited non-zero."""

    def __init__(self, command: list[str], stderr: str, exit_code: int) -> None:
        summary = stderr.strip()[:500] or f"exit status {exit_code}"
        super().__init__(f"{' '.join(command[:3])} failed: {summary}")
        self.command = command
        self.stderr = stderr
        self.exit_code = exit_code


class ExternalTimeout(ExternalAdapterError):
    """The external CLI did not finish within its bound."""

    def __init__(self, command: list[str], timeout: float) -> None:
        super().__init__(f"{' '.join(command[:3])} timed out after {timeout}s", retryable=True)
        self.command = command
        self.timeout = timeout
