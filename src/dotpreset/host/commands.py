"""External command execution.

Every package manager, dconf and platform action call goes through
run_command() so that callers get one result shape and tests can swap in
a fake runner.
"""

import logging
import subprocess
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)

# Default timeout for external commands (seconds). Package installs can be slow.
DEFAULT_TIMEOUT = 1800.0

# Exit code reported when the command could not be started at all
NOT_STARTED_EXIT = 127


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one external command.

    Attributes:
        argv: The command that was run
        returncode: Exit status (127 if the binary could not be started)
        stdout: Captured standard output
        stderr: Captured standard error
    """

    argv: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        """Return True if the command exited with status 0."""
        return self.returncode == 0

    def summary(self, limit: int = 200) -> str:
        """Return a short human-readable description of a failure."""
        detail = (self.stderr or self.stdout).strip().splitlines()
        tail = detail[-1] if detail else ""
        text = f"`{' '.join(self.argv)}` exited {self.returncode}"
        if tail:
            text += f": {tail}"
        return text[:limit]


CommandRunner = Callable[..., CommandResult]


def run_command(
    argv: list[str],
    input_text: Optional[str] = None,
    timeout: Optional[float] = DEFAULT_TIMEOUT,
    capture: bool = True,
    env: Optional[Mapping[str, str]] = None,
) -> CommandResult:
    """Run an external command and return its result.

    Never raises for nonzero exits, timeouts or missing binaries; these
    are reported through ``returncode`` so callers decide how to react.

    Args:
        argv: Command and arguments (executed without a shell)
        input_text: Text passed on stdin (optional)
        timeout: Maximum runtime in seconds (None for no limit)
        capture: Capture stdout/stderr (False lets interactive prompts such
            as sudo password requests reach the terminal)
        env: Environment for the command (default: inherit)

    Returns:
        CommandResult describing the outcome

    Example:
        >>> result = run_command(["dconf", "read", "/org/gnome/terminal/legacy/profiles:/default"])
        >>> if result.ok:
        ...     print(result.stdout)
    """
    logger.debug(f"Running: {' '.join(argv)}")
    try:
        completed = subprocess.run(
            argv,
            input=input_text,
            capture_output=capture,
            text=True,
            timeout=timeout,
            env=dict(env) if env is not None else None,
            check=False,  # Exit status is reported, not raised
        )
    except subprocess.TimeoutExpired:
        logger.warning(f"{argv[0]} timed out after {timeout}s")
        return CommandResult(argv=tuple(argv), returncode=124, stderr=f"timed out after {timeout}s")
    except OSError as e:
        logger.debug(f"Could not start {argv[0]}: {e}")
        return CommandResult(argv=tuple(argv), returncode=NOT_STARTED_EXIT, stderr=str(e))

    return CommandResult(
        argv=tuple(argv),
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
    )
