"""dotpreset command line interface.

Usage:
    dotpreset apply PROFILE [--dry-run] [--backup-dir PATH] [--home PATH] [-v]
    dotpreset list
    dotpreset show PROFILE
    dotpreset detect

Exit codes:
    0: Profile fully applied
    1: Partial (some steps failed or were skipped, or the run was interrupted)
    2: Fatal precondition, or the profile could not be loaded
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from dotpreset import __version__
from dotpreset.config import Settings, load_settings
from dotpreset.core.profile import BUILTIN_PROFILES_DIR, find_profile, list_profiles, load_profile
from dotpreset.core.report import RunStatus
from dotpreset.core.runner import ProfileRunner
from dotpreset.exceptions import ProfileError
from dotpreset.host.platform import detect
from dotpreset.integrations.journal import RunJournal, default_journal_path

logger = logging.getLogger(__name__)

LOG_FORMAT = "[dotpreset] %(levelname)s: %(message)s"


def configure_logging(verbose: bool = False) -> None:
    """Send log records to stderr; the run report goes to stdout."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        stream=sys.stderr,
        force=True,
    )


def _search_dirs(settings: Settings) -> list[Path]:
    dirs = [settings.profiles_dir] if settings.profiles_dir else []
    return dirs + [BUILTIN_PROFILES_DIR]


def cmd_apply(args: argparse.Namespace, settings: Settings) -> int:
    """Apply a profile."""
    settings = settings.override(backup_dir=args.backup_dir)
    try:
        profile = load_profile(find_profile(args.profile, _search_dirs(settings)))
    except ProfileError as e:
        logger.error(str(e))
        return RunStatus.FATAL.exit_code

    journal = None if args.dry_run else RunJournal(default_journal_path(settings.journal))
    runner = ProfileRunner(
        home=args.home,
        backup_root=settings.backup_dir,
        dry_run=args.dry_run,
        journal=journal,
    )
    report = runner.run(profile)
    print(report.format_summary())
    return report.exit_code


def cmd_list(args: argparse.Namespace, settings: Settings) -> int:
    """List available profiles."""
    available = list_profiles(_search_dirs(settings))
    if not available:
        print("No profiles found.")
        return 0
    for name, path in sorted(available.items()):
        try:
            description = load_profile(path).description
        except ProfileError as e:
            description = f"(invalid: {e.message})"
        print(f"{name:20} {description}".rstrip())
    return 0


def cmd_show(args: argparse.Namespace, settings: Settings) -> int:
    """Print the parsed steps of a profile."""
    try:
        profile = load_profile(find_profile(args.profile, _search_dirs(settings)))
    except ProfileError as e:
        logger.error(str(e))
        return RunStatus.FATAL.exit_code

    print(f"{profile.name}: {profile.description}".rstrip(": "))
    for index, step in enumerate(profile.steps, start=1):
        flags = []
        if step.fatal:
            flags.append("fatal")
        if step.only_on:
            flags.append(f"only on {', '.join(step.only_on)}")
        if step.unless_applied:
            flags.append(f"unless {step.unless_applied} applied")
        suffix = f" [{'; '.join(flags)}]" if flags else ""
        print(f"{index:3}. {step.id} ({step.kind}): {step.label}{suffix}")
    return 0


def cmd_detect(args: argparse.Namespace, settings: Settings) -> int:
    """Print the detected platform."""
    print(detect().describe())
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="dotpreset",
        description="Apply a declarative shell and terminal profile to this machine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # apply command
    p_apply = subparsers.add_parser("apply", help="Apply a profile")
    p_apply.add_argument("profile", help="Profile name or path to a YAML file")
    p_apply.add_argument("--dry-run", action="store_true", help="Show what would change without changing anything")
    p_apply.add_argument("--backup-dir", type=Path, help="Backup root (default: ~/.dotpreset-backup)")
    p_apply.add_argument("--home", type=Path, help="Home directory to apply to (default: your home)")
    p_apply.add_argument("-v", "--verbose", action="store_true", default=argparse.SUPPRESS, help="Enable debug logging")
    p_apply.set_defaults(func=cmd_apply)

    # list command
    p_list = subparsers.add_parser("list", help="List available profiles")
    p_list.set_defaults(func=cmd_list)

    # show command
    p_show = subparsers.add_parser("show", help="Show the steps of a profile")
    p_show.add_argument("profile", help="Profile name or path to a YAML file")
    p_show.set_defaults(func=cmd_show)

    # detect command
    p_detect = subparsers.add_parser("detect", help="Show the detected platform")
    p_detect.set_defaults(func=cmd_detect)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    settings = load_settings()
    try:
        return args.func(args, settings)
    except KeyboardInterrupt:
        logger.error("Interrupted")
        return RunStatus.PARTIAL.exit_code


if __name__ == "__main__":
    sys.exit(main())
