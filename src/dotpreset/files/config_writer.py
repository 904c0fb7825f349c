"""Configuration file writer for profile runs.

Writes target configuration files either whole (the file belongs to the
profile) or as a managed region: a sentinel-delimited block inside an
otherwise user-owned file. Existing files are snapshotted into the backup
vault before any change.

Crash safety:
    - Whole-file writes and region updates go through a temp file in the
      same directory followed by an atomic rename
    - A missing region is appended with a single write, so sibling content
      is never rewritten
"""

import logging
import os
import re
import sys
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotpreset.exceptions import BackupError

from .backup import BackupRecord, BackupVault

logger = logging.getLogger(__name__)

# File permissions for newly created files (Unix only - ignored on Windows)
CONFIG_DIR_PERMS = 0o755  # rwxr-xr-x
CONFIG_FILE_PERMS = 0o644  # rw-r--r--

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


@dataclass(frozen=True)
class WriteResult:
    """Result of a config file write.

    Attributes:
        success: Whether the write completed (or would complete, for dry runs)
        path: Target file
        action: "created", "appended", "updated", "replaced" or "unchanged"
        backup: Backup taken before the write (None if none was needed)
        error: Error message if the write failed (None on success)
        dry_run: True if nothing was written
    """

    success: bool
    path: Path
    action: str
    backup: Optional[BackupRecord] = None
    error: Optional[str] = None
    dry_run: bool = False

    @property
    def changed(self) -> bool:
        """Return True if the file was (or would be) modified."""
        return self.success and self.action != "unchanged"


def render_template(template: str, variables: dict[str, str]) -> str:
    """Substitute ``{{ NAME }}`` placeholders.

    Shell syntax such as ``${PROMPT_COMMAND-}`` is left alone; only double
    braces are placeholders.

    Raises:
        KeyError: If a placeholder has no matching variable

    Examples:
        >>> render_template("bg={{ BG }}", {"BG": "#2D2D2D"})
        'bg=#2D2D2D'
    """

    def _substitute(match: re.Match) -> str:
        name = match.group(1)
        if name not in variables:
            raise KeyError(name)
        return str(variables[name])

    return _PLACEHOLDER.sub(_substitute, template)


def region_markers(marker: str, comment: str = "#") -> tuple[str, str]:
    """Return the begin/end sentinel lines for a managed region.

    Examples:
        >>> region_markers("pure-prompt")
        ('# >>> pure-prompt (managed) >>>', '# <<< pure-prompt (managed) <<<')
    """
    return f"{comment} >>> {marker} (managed) >>>", f"{comment} <<< {marker} (managed) <<<"


def build_region(content: str, marker: str, comment: str = "#") -> str:
    """Wrap content in sentinels, always ending with a newline."""
    begin, end = region_markers(marker, comment)
    body = content.strip("\n")
    if body:
        return f"{begin}\n{body}\n{end}\n"
    return f"{begin}\n{end}\n"


def _find_line(text: str, needle: str, start: int = 0) -> int:
    """Find needle as a whole line at or after start; -1 if absent."""
    pos = text.find(needle, start)
    while pos != -1:
        at_line_start = pos == 0 or text[pos - 1] == "\n"
        after = pos + len(needle)
        at_line_end = after == len(text) or text[after] in "\r\n"
        if at_line_start and at_line_end:
            return pos
        pos = text.find(needle, pos + 1)
    return -1


def find_region(text: str, marker: str, comment: str = "#") -> Optional[tuple[int, int]]:
    """Locate a managed region.

    Returns:
        (start, stop) offsets covering the region including the end line's
        newline, or None if the begin sentinel is absent

    Raises:
        ValueError: If the begin sentinel has no matching end sentinel
    """
    begin, end = region_markers(marker, comment)
    start = _find_line(text, begin)
    if start == -1:
        return None
    end_pos = _find_line(text, end, start + len(begin))
    if end_pos == -1:
        raise ValueError(f"Managed region '{marker}' has no end marker")
    stop = end_pos + len(end)
    if text.startswith("\r\n", stop):
        stop += 2
    elif text.startswith("\n", stop):
        stop += 1
    return start, stop


def safe_mkdir(path: Path, mode: int = CONFIG_DIR_PERMS) -> None:
    """Create directory (and parents) with platform-appropriate permissions."""
    if path.is_dir():
        return
    path.mkdir(parents=True, exist_ok=True)
    if sys.platform != "win32":
        # Permission setting failed - not critical for config directories
        with suppress(OSError, NotImplementedError):
            path.chmod(mode)


def write_text_atomic(path: Path, text: str, mode: Optional[int] = None) -> None:
    """Write a file atomically using temp file + rename.

    The file keeps its current permissions unless ``mode`` is given.

    Raises:
        OSError: If write or rename fails
    """
    if mode is None:
        try:
            mode = path.stat().st_mode & 0o7777
        except OSError:
            mode = CONFIG_FILE_PERMS

    temp_path = path.with_name(f".{path.name}.dotpreset.tmp")
    try:
        with temp_path.open("w", encoding="utf-8", newline="") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())

        # Set permissions before rename
        if sys.platform != "win32":
            with suppress(OSError, NotImplementedError):
                temp_path.chmod(mode)

        # Atomic rename
        temp_path.replace(path)
    except Exception:
        # Clean up temp file on failure
        if temp_path.exists():
            temp_path.unlink()
        raise


def append_text(path: Path, existing: str, addition: str) -> None:
    """Append to a file with one write, separating it from existing content."""
    prefix = ""
    if existing and not existing.endswith("\n"):
        prefix = "\n"
    with path.open("a", encoding="utf-8", newline="") as f:
        f.write(prefix + addition)
        f.flush()
        os.fsync(f.fileno())


def _read_current(path: Path) -> Optional[str]:
    if not os.path.lexists(path):
        return None
    if path.is_dir():
        raise IsADirectoryError(f"{path} is a directory")
    return path.read_text(encoding="utf-8")


def _commit(  # noqa: PLR0913
    path: Path,
    action: str,
    new_text: str,
    existing: Optional[str],
    vault: BackupVault,
    mode: Optional[int],
    dry_run: bool,
    appended: str = "",
) -> WriteResult:
    """Back up the target if it exists, then perform the write."""
    if dry_run:
        return WriteResult(success=True, path=path, action=action, dry_run=True)

    backup: Optional[BackupRecord] = None
    try:
        if existing is not None:
            backup = vault.snapshot(path)
        safe_mkdir(path.parent)
        if action == "appended":
            append_text(path, existing or "", appended)
        else:
            write_text_atomic(path, new_text, mode)
    except BackupError as e:
        return WriteResult(success=False, path=path, action=action, error=str(e))
    except OSError as e:
        logger.error(f"Failed to write {path}: {e}")
        return WriteResult(success=False, path=path, action=action, backup=backup, error=str(e))

    logger.info(f"Config {action}: {path}")
    return WriteResult(success=True, path=path, action=action, backup=backup)


def write(  # noqa: PLR0913
    target_path: Path,
    desired_content: str,
    managed_marker: Optional[str],
    vault: BackupVault,
    comment: str = "#",
    mode: Optional[int] = None,
    dry_run: bool = False,
) -> WriteResult:
    """Write a configuration file or its managed region.

    Args:
        target_path: File to write
        desired_content: Rendered content (whole file, or region body)
        managed_marker: Region name; None manages the whole file
        vault: Backup vault used before modifying an existing file
        comment: Comment leader used for the sentinel lines ('"' for vim)
        mode: Permission bits for the file (default: keep existing / 0o644)
        dry_run: Compute the action without writing anything

    Returns:
        WriteResult with the action taken

    Example:
        >>> result = write(home / ".bashrc", prompt, "pure-prompt", vault)
        >>> result.action
        'appended'
    """
    path = Path(target_path)
    try:
        existing = _read_current(path)
    except (OSError, UnicodeDecodeError) as e:
        return WriteResult(success=False, path=path, action="unchanged", error=f"Cannot read {path}: {e}")

    if managed_marker is None:
        if existing == desired_content:
            return WriteResult(success=True, path=path, action="unchanged", dry_run=dry_run)
        action = "created" if existing is None else "replaced"
        return _commit(path, action, desired_content, existing, vault, mode, dry_run)

    region = build_region(desired_content, managed_marker, comment)
    if existing is None:
        return _commit(path, "created", region, existing, vault, mode, dry_run)

    try:
        span = find_region(existing, managed_marker, comment)
    except ValueError as e:
        return WriteResult(success=False, path=path, action="unchanged", error=f"{path}: {e}")

    if span is None:
        separator = "\n" if existing.strip() else ""
        return _commit(path, "appended", "", existing, vault, mode, dry_run, appended=separator + region)

    start, stop = span
    if existing[start:stop] == region or existing[start:stop] == region.rstrip("\n"):
        return WriteResult(success=True, path=path, action="unchanged", dry_run=dry_run)

    updated = existing[:start] + region + existing[stop:]
    return _commit(path, "updated", updated, existing, vault, mode, dry_run)


def ensure_line(
    target_path: Path,
    line: str,
    vault: BackupVault,
    match: Optional[str] = None,
    dry_run: bool = False,
) -> WriteResult:
    """Make sure a file contains a line.

    Lines matching the regex ``match`` are replaced with ``line``; if none
    match (or no pattern is given and the exact line is missing), the line
    is appended.

    Example:
        >>> ensure_line(home / ".bashrc", 'OSH_THEME="pure"', vault, match=r"^\\s*OSH_THEME=")
    """
    path = Path(target_path)
    try:
        existing = _read_current(path)
    except (OSError, UnicodeDecodeError) as e:
        return WriteResult(success=False, path=path, action="unchanged", error=f"Cannot read {path}: {e}")

    text = existing or ""
    lines = text.splitlines(keepends=True)
    pattern = re.compile(match) if match else None

    def _matches(candidate: str) -> bool:
        stripped = candidate.rstrip("\r\n")
        if pattern is not None:
            return pattern.search(stripped) is not None
        return stripped == line

    matching = [i for i, candidate in enumerate(lines) if _matches(candidate)]
    if matching:
        if all(lines[i].rstrip("\r\n") == line for i in matching):
            return WriteResult(success=True, path=path, action="unchanged", dry_run=dry_run)
        for i in matching:
            ending = lines[i][len(lines[i].rstrip("\r\n")) :]
            lines[i] = line + (ending or "\n")
        return _commit(path, "updated", "".join(lines), existing, vault, None, dry_run)

    if existing is None:
        return _commit(path, "created", line + "\n", existing, vault, None, dry_run)
    return _commit(path, "appended", "", existing, vault, None, dry_run, appended=line + "\n")
