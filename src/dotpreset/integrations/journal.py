"""Run journal for profile runs.

Every real (non-dry) run appends its report to a JSONL (JSON Lines) file,
giving a history of what each run changed and where its backups went.

Log Location:
    Default (daily timestamped files):
        Unix/Linux: ~/.local/share/dotpreset/runs-YYYY-MM-DD.jsonl
        macOS: ~/Library/Application Support/dotpreset/runs-YYYY-MM-DD.jsonl
    Can be overridden via DOTPRESET_JOURNAL environment variable (a .jsonl
    file, or a directory that receives the daily files)

Log Format (JSONL):
    Each line is a JSON object with:
    - timestamp: ISO 8601 UTC time the entry was written
    - profile: Profile name
    - status: "complete" | "partial" | "fatal"
    - started_at / finished_at: Run timestamps
    - backup_dir: Backup directory of the run (if any)
    - backups: Backed-up paths
    - results: Step results (step_id, kind, outcome, message, fatal, satisfied)

Writes are best effort: a journal that cannot be written never changes the
outcome of a run.
"""

import json
import logging
import os
from contextlib import suppress
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from platformdirs import user_data_dir

from dotpreset.core.report import RunReport

logger = logging.getLogger(__name__)

JOURNAL_ENV = "DOTPRESET_JOURNAL"


def get_journal_dir() -> Path:
    """Get default journal directory."""
    return Path(user_data_dir("dotpreset", appauthor=False))


def default_journal_path(override: Optional[str] = None) -> Path:
    """Get journal file path.

    Logic:
    - If an override (config file) or DOTPRESET_JOURNAL is set and ends in
      .jsonl: use as-is (single file)
    - If it is set but is a directory: append the daily filename
    - Otherwise: platform data dir with the daily filename
    """
    today = datetime.now().strftime("%Y-%m-%d")
    configured = os.environ.get(JOURNAL_ENV) or override
    if configured:
        path = Path(configured).expanduser()
        if path.suffix == ".jsonl":
            return path
        return path / f"runs-{today}.jsonl"
    return get_journal_dir() / f"runs-{today}.jsonl"


class RunJournal:
    """Append-only JSONL record of profile runs.

    Example:
        journal = RunJournal()
        journal.record(report)
    """

    def __init__(self, path: Optional[Path] = None):
        """Initialize the journal.

        Args:
            path: Journal file. If None, uses the default location.
        """
        self.path = path or default_journal_path()

    def record(self, report: RunReport) -> bool:
        """Append one report to the journal.

        Returns:
            True if the entry was written, False if writing failed
        """
        entry: dict[str, Any] = {"timestamp": datetime.now(timezone.utc).isoformat()}
        entry.update(report.to_dict())
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            # Single write call keeps each line intact
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry) + "\n")
        except OSError as e:
            logger.warning(f"Could not write run journal {self.path}: {e}")
            return False
        return True

    def entries(self) -> list[dict[str, Any]]:
        """Read all entries of this journal file, skipping malformed lines."""
        entries: list[dict[str, Any]] = []
        with suppress(FileNotFoundError), open(self.path, encoding="utf-8") as f:
            for line in f:
                stripped = line.strip()
                if not stripped:
                    continue
                try:
                    entries.append(json.loads(stripped))
                except json.JSONDecodeError:
                    continue
        return entries
