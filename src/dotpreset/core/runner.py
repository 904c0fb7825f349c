"""Profile runner: applies a profile step by step.

This module orchestrates a run. It detects the platform, creates the
run's backup vault, executes steps strictly in declared order and turns
every outcome into a StepResult.

Failure policy:
    - PreconditionFatal / BackupFailed: recorded, the run stops
    - Failure of a step marked ``fatal``: escalated to PreconditionFatal
    - StepFailed and errors from bad step data: recorded as failed, the run continues
    - SkippedUnsupported: recorded as skipped, the run continues

Interrupts (SIGINT) are honoured at step boundaries: the current step
finishes, no further step starts, and the report built so far is returned.
A second interrupt aborts the current step, which is recorded as failed.
"""

import logging
import os
import re
import shutil
import signal
import threading
from collections.abc import Mapping
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from dotpreset.exceptions import (
    BackupError,
    CommandParseError,
    PreconditionFatal,
    SkippedUnsupported,
    StepFailed,
)
from dotpreset.files import config_writer
from dotpreset.files.backup import BackupVault
from dotpreset.host import packages
from dotpreset.host.commands import DEFAULT_TIMEOUT, CommandRunner, run_command
from dotpreset.host.platform import PlatformInfo, detect
from dotpreset.host.settings_store import (
    ABSENT,
    DconfStore,
    convert_colors,
    default_terminal_profile,
    find_terminal_profile,
    parse_dump,
)
from dotpreset.integrations.journal import RunJournal

from .command_line import parse_command
from .profile import (
    ApplySettings,
    EnsureLine,
    EnsureLoginShell,
    ImportSettings,
    InstallPackages,
    MoveAside,
    Profile,
    RunPlatformAction,
    Step,
    WriteFile,
    resolve_path,
)
from .report import Outcome, RunReport, StepResult

logger = logging.getLogger(__name__)

TERMINAL_PROFILE_PLACEHOLDER = "{terminal_profile}"

StepOutcome = tuple[Outcome, str]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ProfileRunner:
    """Apply profiles to a home directory and the host's settings stores.

    Example:
        >>> runner = ProfileRunner(dry_run=True)
        >>> report = runner.run(load_profile("pure-bash.yaml"))
        >>> print(report.format_summary())
    """

    def __init__(  # noqa: PLR0913
        self,
        home: Optional[Path] = None,
        backup_root: Optional[Path] = None,
        dry_run: bool = False,
        command_runner: CommandRunner = run_command,
        settings_store: Optional[DconfStore] = None,
        platform: Optional[PlatformInfo] = None,
        journal: Optional[RunJournal] = None,
        environ: Optional[Mapping[str, str]] = None,
        handle_signals: bool = True,
    ):
        """Initialize the runner.

        Args:
            home: Home directory to apply to (default: the user's home)
            backup_root: Backup root (default: <home>/.dotpreset-backup)
            dry_run: Compute the report without side effects
            command_runner: Runner for external commands (injectable for tests)
            settings_store: Settings store adapter (default: dconf)
            platform: Platform info (default: detected once per run)
            journal: Run journal for real runs (None: no journal)
            environ: Environment seen by steps (default: os.environ)
            handle_signals: Install a SIGINT handler for the run's duration
        """
        self.home = Path(home) if home else Path.home()
        self.backup_root = backup_root
        self.dry_run = dry_run
        self.command_runner = command_runner
        self.settings_store = settings_store or DconfStore(runner=command_runner)
        self.platform = platform
        self.journal = journal
        self.environ = dict(environ if environ is not None else os.environ)
        self.handle_signals = handle_signals

        self._stop_requested = False
        self._vault: Optional[BackupVault] = None
        self._profile: Optional[Profile] = None
        self._platform: Optional[PlatformInfo] = None
        self._results: list[StepResult] = []

    # ------------------------------------------------------------------ #
    # Run loop
    # ------------------------------------------------------------------ #

    def request_stop(self) -> None:
        """Stop before the next step boundary."""
        self._stop_requested = True

    def _on_interrupt(self, signum, frame) -> None:
        if self._stop_requested:
            # Second interrupt: give up waiting for the current step
            raise KeyboardInterrupt
        logger.warning("Interrupt received; stopping after the current step")
        self.request_stop()

    def _install_signal_handler(self):
        if not self.handle_signals or threading.current_thread() is not threading.main_thread():
            return None
        previous = signal.getsignal(signal.SIGINT)
        signal.signal(signal.SIGINT, self._on_interrupt)
        return previous

    def run(self, profile: Profile) -> RunReport:
        """Apply a profile.

        Args:
            profile: Profile to apply

        Returns:
            Immutable RunReport for this run
        """
        started_at = _now()
        self._stop_requested = False
        self._results = []
        self._profile = profile
        self._platform = self.platform or detect()
        self._vault = BackupVault(home=self.home, root=self.backup_root, dry_run=self.dry_run)

        mode = "Dry run of" if self.dry_run else "Applying"
        logger.info(f"{mode} profile '{profile.name}' to {self.home}")

        previous_handler = self._install_signal_handler()
        interrupted = False
        try:
            for step in profile.steps:
                if self._stop_requested:
                    interrupted = True
                    break
                try:
                    result = self._run_step(step)
                except KeyboardInterrupt:
                    logger.warning(f"Step {step.id} aborted by interrupt")
                    self._results.append(
                        StepResult(
                            step_id=step.id,
                            kind=step.kind,
                            outcome=Outcome.FAILED,
                            message="aborted by interrupt; state may be incomplete",
                        )
                    )
                    interrupted = True
                    break
                self._results.append(result)
                if result.fatal:
                    logger.error(f"Fatal precondition in step {step.id}: {result.message}")
                    break
        finally:
            if previous_handler is not None:
                signal.signal(signal.SIGINT, previous_handler)

        records = tuple(self._vault.records)
        report = RunReport(
            profile=profile.name,
            results=tuple(self._results),
            dry_run=self.dry_run,
            started_at=started_at,
            finished_at=_now(),
            backups=records,
            backup_dir=str(self._vault.run_dir) if records else None,
            interrupted=interrupted,
        )

        if self.journal is not None and not self.dry_run:
            self.journal.record(report)
        logger.info(f"Profile '{profile.name}' finished: {report.status.value}")
        return report

    def _run_step(self, step: Step) -> StepResult:
        """Run one step, converting exceptions into a StepResult."""
        logger.info(f"Step {step.id}: {step.label}")

        def _result(outcome: Outcome, message: str, fatal: bool = False, satisfied: bool = False) -> StepResult:
            return StepResult(
                step_id=step.id,
                kind=step.kind,
                outcome=outcome,
                message=message,
                fatal=fatal,
                satisfied=satisfied,
            )

        if step.only_on and self._platform.os_family not in step.only_on:
            return _result(Outcome.SKIPPED, f"not applicable on {self._platform.os_family}", satisfied=True)

        if step.unless_applied is not None:
            earlier = next((r for r in self._results if r.step_id == step.unless_applied), None)
            if earlier is not None and earlier.outcome is Outcome.APPLIED:
                return _result(Outcome.SKIPPED, f"not needed: {step.unless_applied} was applied", satisfied=True)

        try:
            outcome, message = self._dispatch(step)
        except PreconditionFatal as e:
            return _result(Outcome.FAILED, str(e), fatal=True)
        except SkippedUnsupported as e:
            if step.fatal:
                return _result(Outcome.FAILED, f"required step cannot run: {e}", fatal=True)
            logger.warning(f"Skipping {step.id}: {e}")
            return _result(Outcome.SKIPPED, str(e))
        except (StepFailed, BackupError, CommandParseError) as e:
            if step.fatal:
                return _result(Outcome.FAILED, str(e), fatal=True)
            logger.warning(f"Step {step.id} failed: {e}")
            return _result(Outcome.FAILED, str(e))
        except (OSError, ValueError, re.error) as e:
            logger.warning(f"Step {step.id} failed: {e}")
            return _result(Outcome.FAILED, str(e), fatal=step.fatal)

        return _result(outcome, message, satisfied=outcome is Outcome.SKIPPED)

    def _dispatch(self, step: Step) -> StepOutcome:
        handlers = {
            InstallPackages: self._install,
            WriteFile: self._write_file,
            RunPlatformAction: self._run_action,
            EnsureLine: self._ensure_line,
            MoveAside: self._move_aside,
            EnsureLoginShell: self._login_shell,
            ImportSettings: self._import_settings,
            ApplySettings: self._apply_settings,
        }
        handler = handlers.get(type(step))
        if handler is None:
            raise StepFailed(f"No handler for step kind: {step.kind}")
        return handler(step)

    # ------------------------------------------------------------------ #
    # Step handlers: return (APPLIED, message) or (SKIPPED, message) when
    # nothing needed to change; raise for everything else
    # ------------------------------------------------------------------ #

    def _which(self, name: str) -> Optional[str]:
        return shutil.which(name, path=self.environ.get("PATH"))

    def _install(self, step: InstallPackages) -> StepOutcome:
        manager = step.manager or self._platform.package_manager
        if manager is None:
            raise SkippedUnsupported(
                f"No supported package manager detected. Install dependencies manually: {' '.join(step.packages)}"
            )

        result = packages.install(
            manager,
            list(step.packages),
            self._platform,
            runner=self.command_runner,
            refresh=step.refresh,
            dry_run=self.dry_run,
        )

        if result.failed:
            installed = f"; installed: {', '.join(result.succeeded)}" if result.succeeded else ""
            detail = f" ({'; '.join(result.messages)})" if result.messages else ""
            raise StepFailed(f"{manager} failed to install: {', '.join(result.failed)}{installed}{detail}")
        if result.planned:
            return Outcome.APPLIED, f"would install via {manager}: {', '.join(result.planned)}"
        if result.succeeded:
            return Outcome.APPLIED, f"installed via {manager}: {', '.join(result.succeeded)}"
        return Outcome.SKIPPED, f"already applied: {', '.join(result.already_installed)} installed"

    def _write_outcome(self, result: config_writer.WriteResult) -> StepOutcome:
        if not result.success:
            raise StepFailed(result.error or f"Could not write {result.path}")
        if result.action == "unchanged":
            return Outcome.SKIPPED, f"already applied: {result.path}"
        if self.dry_run:
            return Outcome.APPLIED, f"would be {result.action}: {result.path}"
        return Outcome.APPLIED, f"{result.action} {result.path}"

    def _write_file(self, step: WriteFile) -> StepOutcome:
        result = config_writer.write(
            resolve_path(step.target, self.home),
            step.content,
            step.marker,
            self._vault,
            comment=step.comment,
            mode=step.mode,
            dry_run=self.dry_run,
        )
        return self._write_outcome(result)

    def _ensure_line(self, step: EnsureLine) -> StepOutcome:
        result = config_writer.ensure_line(
            resolve_path(step.target, self.home),
            step.line,
            self._vault,
            match=step.match,
            dry_run=self.dry_run,
        )
        return self._write_outcome(result)

    def _command_env(self) -> dict[str, str]:
        env = dict(self.environ)
        env["HOME"] = str(self.home)
        return env

    def _run_action(self, step: RunPlatformAction) -> StepOutcome:
        missing = [binary for binary in step.requires if self._which(binary) is None]
        if missing:
            raise SkippedUnsupported(f"requires {', '.join(missing)}, not found on PATH")

        if step.creates and os.path.lexists(resolve_path(step.creates, self.home)):
            return Outcome.SKIPPED, f"already applied: {step.creates} exists"
        if step.skip_if_found and self._which(step.skip_if_found):
            return Outcome.SKIPPED, f"already applied: {step.skip_if_found} found on PATH"

        argv = parse_command(step.command, home=self.home)
        if self.dry_run:
            return Outcome.APPLIED, f"would run: {' '.join(argv)}"

        result = self.command_runner(argv, timeout=step.timeout or DEFAULT_TIMEOUT, env=self._command_env())
        if not result.ok:
            raise StepFailed(result.summary())
        return Outcome.APPLIED, f"ran: {' '.join(argv)}"

    def _move_aside(self, step: MoveAside) -> StepOutcome:
        moved: list[str] = []
        failures: list[str] = []
        for raw in step.paths:
            path = resolve_path(raw, self.home)
            try:
                record = self._vault.backup(path)
            except BackupError as e:
                failures.append(str(e))
                continue
            if record is not None:
                moved.append(raw)

        if failures:
            raise StepFailed(f"could not move aside: {'; '.join(failures)}")
        if not moved:
            return Outcome.SKIPPED, "already applied: nothing to move aside"
        verb = "would move" if self.dry_run else "moved"
        return Outcome.APPLIED, f"{verb} to backup: {', '.join(moved)}"

    def _login_shell(self, step: EnsureLoginShell) -> StepOutcome:
        shell_path = self._which(step.shell)
        if shell_path is None:
            raise PreconditionFatal(f"{step.shell} not found in PATH. Aborting.")

        if self.environ.get("SHELL") == shell_path:
            return Outcome.SKIPPED, f"already applied: $SHELL already points to {step.shell}"

        chsh = self._which("chsh")
        if chsh is None:
            raise SkippedUnsupported(f"chsh not available. Set your default shell to {step.shell} manually.")

        if self.dry_run:
            return Outcome.APPLIED, f"would run: chsh -s {shell_path}"

        result = self.command_runner([chsh, "-s", shell_path], timeout=120)
        if not result.ok:
            raise StepFailed(
                f"chsh failed (often needs your password or admin policy). Run manually: chsh -s {shell_path}"
            )
        return Outcome.APPLIED, f"login shell set to {shell_path} (log out/in for it to take effect)"

    def _require_store(self) -> DconfStore:
        if not self.settings_store.available():
            raise SkippedUnsupported("dconf not found; skipping settings store changes")
        return self.settings_store

    def _default_matches(self, store: DconfStore, step: ImportSettings) -> bool:
        if not step.default_profile_name:
            return True
        uuid = find_terminal_profile(store, step.default_profile_name, directory=step.directory)
        return uuid is None or store.read(f"{step.directory}default") == uuid

    def _import_settings(self, step: ImportSettings) -> StepOutcome:
        base_dir = self._profile.source_dir if self._profile and self._profile.source_dir else self.home
        source = Path(step.source)
        if step.source.startswith("~"):
            source = resolve_path(step.source, self.home)
        elif not source.is_absolute():
            source = base_dir / source
        if not source.is_file():
            # Optional data file; a fallback step may cover its absence
            return Outcome.SKIPPED, f"not applicable: {source} not found"

        store = self._require_store()
        blob = source.read_text(encoding="utf-8")
        wanted = parse_dump(step.directory, blob)
        imported = wanted and all(store.read(key) == value for key, value in wanted.items())
        if imported and self._default_matches(store, step):
            return Outcome.SKIPPED, f"already applied: {step.directory} holds every key of {source.name}"

        if self.dry_run:
            return Outcome.APPLIED, f"would import {source.name} into {step.directory}"

        current = store.dump(step.directory)
        name = step.directory.strip("/").replace("/", "_").replace(":", "") or "settings"
        self._vault.save_blob(f"{name}.before.dconf", current)
        store.load(step.directory, blob)
        message = f"imported {source.name} into {step.directory}"

        if step.default_profile_name:
            uuid = find_terminal_profile(store, step.default_profile_name, directory=step.directory)
            if uuid:
                store.apply(f"{step.directory}default", uuid)
                message += f"; default profile set to {step.default_profile_name} ({uuid})"
            else:
                message += f" (no visible-name='{step.default_profile_name}' found to set as default)"
        return Outcome.APPLIED, message

    def _apply_settings(self, step: ApplySettings) -> StepOutcome:
        store = self._require_store()
        base = step.base
        if TERMINAL_PROFILE_PLACEHOLDER in base:
            uuid = default_terminal_profile(store)
            if uuid is None:
                raise SkippedUnsupported("GNOME Terminal default profile not detected")
            base = base.replace(TERMINAL_PROFILE_PLACEHOLDER, uuid)
        if not base.endswith("/"):
            base += "/"

        pending = []
        for key, value in step.values:
            native = convert_colors(value)
            current = store.read(f"{base}{key}")
            if current is ABSENT or current != native:
                pending.append((key, native))

        if not pending:
            return Outcome.SKIPPED, f"already applied: {len(step.values)} keys under {base}"
        if self.dry_run:
            return Outcome.APPLIED, f"would set {len(pending)} keys under {base}"

        for key, native in pending:
            store.apply(f"{base}{key}", native)
        return Outcome.APPLIED, f"set {len(pending)} keys under {base}"
