"""Run-scoped backup vault.

Before a profile run mutates a pre-existing path, the path is moved (or
copied) into ``<backup root>/<timestamp>/`` keeping its location relative
to the home directory. Each run gets its own timestamped directory, so
backups accumulate across runs and are never overwritten.

Failure policy:
    - Nothing to back up: return None
    - Backup failed but the original is untouched: BackupError (logged)
    - Original half-moved (copied, then only partly removed): BackupFailed,
      which stops the run because the authoritative copy is now unclear
"""

import errno
import logging
import os
import shutil
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from dotpreset.exceptions import BackupError, BackupFailed

logger = logging.getLogger(__name__)

DEFAULT_BACKUP_DIRNAME = ".dotpreset-backup"

# Same format as the shell scripts this tool replaces (date +%Y%m%d%H%M%S)
TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"

# Prefix for backed-up paths that live outside the home directory
OUTSIDE_HOME_DIR = "_absolute"


@dataclass(frozen=True)
class BackupRecord:
    """Where a path was backed up to.

    Attributes:
        original: Path that was backed up
        backup: Location inside the run's backup directory
        timestamp: Run timestamp (name of the run directory)
        kind: "moved" (original removed) or "copied" (original left in place)
    """

    original: Path
    backup: Path
    timestamp: str
    kind: str


def _lexists(path: Path) -> bool:
    # Path.exists() follows symlinks; dangling links must still be backed up
    return os.path.lexists(path)


def _remove(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def _copy_entry(source: Path, destination: Path) -> None:
    """Copy a file, directory or symlink, preserving symlinks as links."""
    if source.is_symlink():
        os.symlink(os.readlink(source), destination)
    elif source.is_dir():
        shutil.copytree(source, destination, symlinks=True)
    else:
        shutil.copy2(source, destination)


class BackupVault:
    """Timestamped backup directory for one run.

    Example:
        >>> vault = BackupVault(home=Path.home())
        >>> record = vault.backup(Path.home() / ".bashrc")
        >>> if record:
        ...     print(f"Saved to {record.backup}")
    """

    def __init__(
        self,
        home: Path,
        root: Optional[Path] = None,
        timestamp: Optional[str] = None,
        dry_run: bool = False,
    ):
        """Initialize the vault.

        Nothing is created on disk until the first backup.

        Args:
            home: Home directory that backed-up paths are made relative to
            root: Backup root (default: <home>/.dotpreset-backup)
            timestamp: Run timestamp (default: now)
            dry_run: Compute records without touching the filesystem
        """
        self.home = Path(os.path.abspath(home))
        self.root = Path(os.path.abspath(root)) if root else self.home / DEFAULT_BACKUP_DIRNAME
        self.timestamp = timestamp or datetime.now().strftime(TIMESTAMP_FORMAT)
        self.dry_run = dry_run
        self.run_dir = self.root / self.timestamp
        self.records: list[BackupRecord] = []
        self._run_dir_ready = False
        self._claimed: set[Path] = set()

    def _ensure_run_dir(self) -> None:
        """Create the run directory, never reusing a previous run's directory."""
        if self._run_dir_ready or self.dry_run:
            return
        self.root.mkdir(parents=True, exist_ok=True)
        candidate = self.run_dir
        suffix = 0
        while True:
            try:
                candidate.mkdir()
                break
            except FileExistsError:
                suffix += 1
                candidate = self.root / f"{self.timestamp}-{suffix}"
        if candidate != self.run_dir:
            logger.debug(f"Backup directory {self.run_dir} already exists, using {candidate}")
            self.run_dir = candidate
        self._run_dir_ready = True

    def destination_for(self, path: Path) -> Path:
        """Compute the backup location for a path, never reusing one.

        Paths under home keep their relative layout; other absolute paths go
        under ``_absolute/``. A location already used in this run gets a
        numeric suffix.
        """
        absolute = Path(os.path.abspath(path))
        try:
            relative = absolute.relative_to(self.home)
        except ValueError:
            relative = Path(OUTSIDE_HOME_DIR, *absolute.parts[1:])

        return self._claim(self.run_dir / relative)

    def _claim(self, destination: Path) -> Path:
        base = destination
        suffix = 0
        while destination in self._claimed or (not self.dry_run and _lexists(destination)):
            suffix += 1
            destination = base.with_name(f"{base.name}.{suffix}")
        self._claimed.add(destination)
        return destination

    def backup(self, path: Path) -> Optional[BackupRecord]:
        """Move an existing path into the vault.

        Args:
            path: File, directory or symlink to back up

        Returns:
            BackupRecord, or None if the path does not exist

        Raises:
            BackupError: Backup failed and the original is untouched
            BackupFailed: The original was left half-moved
        """
        path = Path(os.path.abspath(path))
        if not _lexists(path):
            return None

        self._prepare()
        destination = self.destination_for(path)
        record = BackupRecord(original=path, backup=destination, timestamp=self.timestamp, kind="moved")

        if self.dry_run:
            self.records.append(record)
            return record

        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            os.rename(path, destination)
        except OSError as e:
            if e.errno != errno.EXDEV:
                logger.warning(f"Could not back up {path}: {e}")
                raise BackupError(f"Could not back up {path}", original_error=e)
            self._move_across_devices(path, destination)

        logger.info(f"Backed up: {path} -> {destination}")
        record = BackupRecord(original=path, backup=destination, timestamp=self.timestamp, kind="moved")
        self.records.append(record)
        return record

    def _move_across_devices(self, path: Path, destination: Path) -> None:
        """Copy-then-remove move for a backup root on another filesystem."""
        try:
            _copy_entry(path, destination)
        except OSError as e:
            with suppress(OSError):
                _remove(destination)
            logger.warning(f"Could not copy {path} into backup: {e}")
            raise BackupError(f"Could not back up {path}", original_error=e)

        is_tree = path.is_dir() and not path.is_symlink()
        try:
            _remove(path)
        except OSError as e:
            if is_tree and _lexists(path):
                # Some of the tree is gone, some is not
                raise BackupFailed(
                    f"{path} was only partly moved to {destination}; state is ambiguous",
                    path=str(path),
                    original_error=e,
                )
            with suppress(OSError):
                _remove(destination)
            logger.warning(f"Could not remove {path} after copying it: {e}")
            raise BackupError(f"Could not back up {path}", original_error=e)

    def snapshot(self, path: Path) -> Optional[BackupRecord]:
        """Copy an existing path into the vault, leaving the original in place.

        Used before patching a file in place.

        Raises:
            BackupError: If the copy fails (the caller must not write)
        """
        path = Path(os.path.abspath(path))
        if not _lexists(path):
            return None

        self._prepare()
        destination = self.destination_for(path)
        record = BackupRecord(original=path, backup=destination, timestamp=self.timestamp, kind="copied")

        if not self.dry_run:
            try:
                destination.parent.mkdir(parents=True, exist_ok=True)
                _copy_entry(path, destination)
            except OSError as e:
                with suppress(OSError):
                    _remove(destination)
                logger.warning(f"Could not copy {path} into backup: {e}")
                raise BackupError(f"Could not back up {path}", original_error=e)
            logger.info(f"Backed up: {path} -> {destination}")

        self.records.append(record)
        return record

    def save_blob(self, name: str, text: str) -> Path:
        """Store an exported blob (e.g. a settings dump) in the run directory."""
        self._prepare()
        destination = self._claim(self.run_dir / name)
        if not self.dry_run:
            try:
                destination.parent.mkdir(parents=True, exist_ok=True)
                destination.write_text(text, encoding="utf-8")
            except OSError as e:
                raise BackupError(f"Could not save {name} to backup", original_error=e)
        return destination

    def _prepare(self) -> None:
        try:
            self._ensure_run_dir()
        except OSError as e:
            raise BackupError(f"Could not create backup directory {self.run_dir}", original_error=e)
