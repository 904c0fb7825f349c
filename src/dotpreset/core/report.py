"""Run report data structures.

A RunReport is produced once per profile run and is immutable after the
run completes. Its status is never ambiguous: "complete" only if every
step was applied or already in place, "fatal" if a fatal precondition
stopped the run, and "partial" otherwise.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from dotpreset.files.backup import BackupRecord


class Outcome(Enum):
    """Outcome of one step."""

    APPLIED = "applied"
    SKIPPED = "skipped"
    FAILED = "failed"


class RunStatus(Enum):
    """Overall status of a run, mapped to the CLI exit code."""

    COMPLETE = "complete"
    PARTIAL = "partial"
    FATAL = "fatal"

    @property
    def exit_code(self) -> int:
        """Return the process exit code for this status."""
        return {RunStatus.COMPLETE: 0, RunStatus.PARTIAL: 1, RunStatus.FATAL: 2}[self]


@dataclass(frozen=True)
class StepResult:
    """Result of one step.

    Attributes:
        step_id: Step identifier
        kind: Step kind ("install", "write_file", ...)
        outcome: applied, skipped or failed
        message: Human-readable explanation
        fatal: True if this failure stopped the run
        satisfied: True for a skip that needed no change (already applied,
            not applicable on this platform, fallback not needed)
    """

    step_id: str
    kind: str
    outcome: Outcome
    message: str
    fatal: bool = False
    satisfied: bool = False

    @property
    def complete(self) -> bool:
        """Return True if the step left the host in its target state."""
        return self.outcome is Outcome.APPLIED or (self.outcome is Outcome.SKIPPED and self.satisfied)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the run journal."""
        return {
            "step_id": self.step_id,
            "kind": self.kind,
            "outcome": self.outcome.value,
            "message": self.message,
            "fatal": self.fatal,
            "satisfied": self.satisfied,
        }


@dataclass(frozen=True)
class RunReport:
    """Immutable summary of one profile run.

    Attributes:
        profile: Profile name
        results: Step results in execution order
        dry_run: True if nothing was mutated
        started_at: ISO 8601 UTC start time
        finished_at: ISO 8601 UTC end time
        backups: Backups taken during the run
        backup_dir: Run's backup directory (None if nothing was backed up)
        interrupted: True if the run stopped early on an interrupt signal
    """

    profile: str
    results: tuple[StepResult, ...]
    dry_run: bool = False
    started_at: str = ""
    finished_at: str = ""
    backups: tuple[BackupRecord, ...] = field(default_factory=tuple)
    backup_dir: Optional[str] = None
    interrupted: bool = False

    @property
    def status(self) -> RunStatus:
        """Return the overall status of the run."""
        if any(result.fatal for result in self.results):
            return RunStatus.FATAL
        if self.interrupted or not all(result.complete for result in self.results):
            return RunStatus.PARTIAL
        return RunStatus.COMPLETE

    @property
    def exit_code(self) -> int:
        """Return the CLI exit code for this report."""
        return self.status.exit_code

    def by_outcome(self, outcome: Outcome) -> list[StepResult]:
        """Return results with the given outcome."""
        return [result for result in self.results if result.outcome is outcome]

    def result_for(self, step_id: str) -> Optional[StepResult]:
        """Return the result of the given step, or None if it did not run."""
        for result in self.results:
            if result.step_id == step_id:
                return result
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the run journal."""
        return {
            "profile": self.profile,
            "status": self.status.value,
            "dry_run": self.dry_run,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "interrupted": self.interrupted,
            "backup_dir": self.backup_dir,
            "backups": [{"original": str(b.original), "backup": str(b.backup), "kind": b.kind} for b in self.backups],
            "results": [result.to_dict() for result in self.results],
        }

    def format_summary(self) -> str:
        """Format the report for display.

        Failed and skipped steps are always listed with their messages.
        """
        prefix = "[dry run] " if self.dry_run else ""
        lines = [f"{prefix}Profile '{self.profile}': {self.status.value}"]
        symbols = {Outcome.APPLIED: "✓", Outcome.SKIPPED: "-", Outcome.FAILED: "✗"}
        for result in self.results:
            lines.append(f"  {symbols[result.outcome]} {result.step_id}: {result.outcome.value}: {result.message}")

        failed = self.by_outcome(Outcome.FAILED)
        skipped = [result for result in self.by_outcome(Outcome.SKIPPED) if not result.satisfied]
        if failed or skipped:
            lines.append("")
            lines.append(f"{len(failed)} failed, {len(skipped)} skipped:")
            for result in failed + skipped:
                lines.append(f"  - {result.step_id} ({result.outcome.value}): {result.message}")
        if self.interrupted:
            lines.append("")
            lines.append("Run interrupted; remaining steps were not started.")
        if self.backup_dir and self.dry_run:
            lines.append("")
            lines.append(f"Backups would go to: {self.backup_dir}")
        elif self.backup_dir:
            lines.append("")
            lines.append(f"Backups are in: {self.backup_dir}")
            lines.append("To restore: copy files back from that folder into your home directory.")
        return "\n".join(lines)
