"""Platform action command parsing using bashlex.

Profiles describe platform actions as shell-like strings
(``chsh -s /bin/bash``). They are executed without a shell, so the string
must be one simple command: words only. Pipelines, command lists,
redirects, assignments and expansions other than a leading ``~`` are
rejected instead of being silently passed through as literal text.
"""

import logging
from pathlib import Path
from typing import Any, Optional

import bashlex
import bashlex.errors

from dotpreset.exceptions import CommandParseError

logger = logging.getLogger(__name__)

# Word sub-parts that are safe without a shell (tilde is expanded here)
_ALLOWED_WORD_PARTS = {"tilde"}


def _parse(command: str) -> list[Any]:
    if not command or not command.strip():
        raise CommandParseError("Command cannot be empty")
    try:
        return bashlex.parse(command)
    except bashlex.errors.ParsingError as e:
        raise CommandParseError(f"Failed to parse command: {command!r}", original_error=e)
    except Exception as e:
        # Catch any other unexpected bashlex errors
        logger.error(f"Unexpected error parsing command: {e}")
        raise CommandParseError(f"Unexpected parsing error for command: {command!r}", original_error=e)


def _expand_tilde(word: str, home: Optional[Path]) -> str:
    if home is None:
        return word
    if word == "~" or word.startswith("~/"):
        return str(home) + word[1:]
    return word


def parse_command(command: str, home: Optional[Path] = None) -> list[str]:
    """Parse a command string into an argv list.

    Args:
        command: Shell-like command string
        home: Home directory used to expand a leading ``~`` (None: keep as is)

    Returns:
        Argument vector with quotes removed

    Raises:
        CommandParseError: If the string is empty, unparseable, or not a
            single simple command

    Examples:
        >>> parse_command("chsh -s /bin/bash")
        ['chsh', '-s', '/bin/bash']
        >>> parse_command("nvim --headless '+PlugInstall --sync' +qa")
        ['nvim', '--headless', '+PlugInstall --sync', '+qa']
        >>> parse_command("ls ~/.config", home=Path("/home/me"))
        ['ls', '/home/me/.config']
    """
    nodes = _parse(command)
    if len(nodes) != 1 or getattr(nodes[0], "kind", None) != "command":
        kind = getattr(nodes[0], "kind", "unknown") if nodes else "empty"
        raise CommandParseError(
            f"Expected a single simple command, got {kind}: {command!r} "
            "(pipelines, lists and compound commands need an explicit 'bash -c')"
        )

    argv: list[str] = []
    for part in nodes[0].parts:
        kind = getattr(part, "kind", None)
        if kind != "word":
            raise CommandParseError(f"Unsupported shell construct '{kind}' in command: {command!r}")
        for sub in getattr(part, "parts", None) or []:
            sub_kind = getattr(sub, "kind", None)
            if sub_kind not in _ALLOWED_WORD_PARTS:
                raise CommandParseError(f"Unsupported shell expansion '{sub_kind}' in command: {command!r}")
        argv.append(_expand_tilde(part.word, home))

    return argv
