"""Custom exceptions for dotpreset.

This module defines the error taxonomy used while applying a profile:
- PreconditionFatal: The run cannot continue (no usable shell, ambiguous backup)
- BackupFailed: A move into the backup vault left the original half-moved
- BackupError: A backup failed but the original is untouched
- StepFailed: One step's external command or write failed
- SkippedUnsupported: A dependency is absent on this host (not an error)
- ProfileError: Profile YAML or step definitions are invalid
- CommandParseError: A platform action string could not be parsed
"""

from typing import Optional


class DotpresetError(Exception):
    """Base class for dotpreset errors.

    Preserves the underlying exception (OSError, bashlex error...) for
    debugging.

    Args:
        message: Error description
        original_error: Original exception (optional)
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        self.message = message
        self.original_error = original_error
        super().__init__(self.message)

    def __str__(self) -> str:
        """Return string representation with original error context if available."""
        if self.original_error:
            return f"{self.message} (original: {self.original_error})"
        return self.message


class PreconditionFatal(DotpresetError):
    """Raised when the whole run must stop.

    Used for:
    - No usable login shell binary found
    - A step explicitly marked ``fatal`` failed
    """


class BackupFailed(PreconditionFatal):
    """Raised when a move into the backup vault left ambiguous state.

    The original was copied but could not be removed completely, so it is
    unclear which copy is authoritative. Subsequent writes would risk data
    loss, so this escalates to a fatal stop.
    """

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.path = path
        super().__init__(message, original_error=original_error)


class BackupError(DotpresetError):
    """Raised when a backup could not be taken but the original is intact."""


class StepFailed(DotpresetError):
    """Raised when a step's external command returned nonzero or a write failed."""


class SkippedUnsupported(DotpresetError):
    """Raised when a step cannot apply on this host.

    Not an error: the runner records the step as skipped.
    """


class CommandParseError(DotpresetError):
    """Raised when a platform action command string is unusable.

    Either bashlex failed to parse it, or it uses a shell construct
    (pipeline, redirect, substitution...) that cannot run without a shell.
    """


class ProfileError(DotpresetError):
    """Raised when a profile is invalid.

    Used for:
    - Invalid YAML syntax in a profile file
    - Unknown step kinds or missing step fields
    - Template placeholders with no matching variable

    Includes file path and step index context when available.

    Example:
        >>> raise ProfileError("Unknown step kind: foo", file_path="pure-bash.yaml", step_index=3)
    """

    def __init__(
        self,
        message: str,
        file_path: Optional[str] = None,
        step_index: Optional[int] = None,
        original_error: Optional[Exception] = None,
    ):
        self.file_path = file_path
        self.step_index = step_index
        super().__init__(message, original_error=original_error)

    def _format_message(self) -> str:
        """Format error message with file/step context if available."""
        parts = [self.message]
        if self.file_path:
            parts.append(f"in file: {self.file_path}")
        if self.step_index is not None:
            parts.append(f"at step: {self.step_index}")
        return " ".join(parts)

    def __str__(self) -> str:
        """Return formatted error message."""
        formatted = self._format_message()
        if self.original_error:
            return f"{formatted} (original: {self.original_error})"
        return formatted
