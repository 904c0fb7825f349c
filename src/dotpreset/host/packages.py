"""Package installation across package managers.

Each supported manager (apt, dnf, pacman, zypper, brew) is described by a
PackageManager entry holding its non-interactive install, refresh and
query invocations. install() dispatches on the manager id, escalates with
sudo when needed and available, and reports per-package results.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from dotpreset.exceptions import SkippedUnsupported

from .commands import CommandRunner, run_command
from .platform import PlatformInfo, find_manager_binary

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PackageManager:
    """Command-line shape of one package manager.

    Attributes:
        name: Manager id ("apt", "brew", ...)
        install_args: Arguments placed before the package names
        query_command: Command checking whether one package is installed
        refresh_args: Arguments refreshing package metadata (None if not needed)
        needs_privilege: Whether installs must run as root
    """

    name: str
    install_args: tuple[str, ...]
    query_command: tuple[str, ...]
    refresh_args: Optional[tuple[str, ...]] = None
    needs_privilege: bool = True

    def install_argv(self, binary: str, packages: list[str]) -> list[str]:
        """Build the install command for a list of packages."""
        return [binary, *self.install_args, *packages]

    def refresh_argv(self, binary: str) -> Optional[list[str]]:
        """Build the metadata refresh command, or None if the manager has none."""
        if self.refresh_args is None:
            return None
        return [binary, *self.refresh_args]

    def query_argv(self, binary: str, package: str) -> list[str]:
        """Build the "is it installed?" command for one package."""
        if self.query_command[0] == self.name:
            return [binary, *self.query_command[1:], package]
        return [*self.query_command, package]


MANAGERS: dict[str, PackageManager] = {
    "apt": PackageManager(
        name="apt",
        install_args=("install", "-y"),
        query_command=("dpkg", "-s"),
        refresh_args=("update", "-y"),
    ),
    "dnf": PackageManager(
        name="dnf",
        install_args=("install", "-y"),
        query_command=("rpm", "-q"),
    ),
    "pacman": PackageManager(
        name="pacman",
        install_args=("-Sy", "--noconfirm"),
        query_command=("pacman", "-Q"),
    ),
    "zypper": PackageManager(
        name="zypper",
        install_args=("install", "-y"),
        query_command=("rpm", "-q"),
        refresh_args=("refresh",),
    ),
    "brew": PackageManager(
        name="brew",
        install_args=("install",),
        query_command=("brew", "list", "--versions"),
        refresh_args=("update",),
        needs_privilege=False,  # Homebrew refuses to run as root
    ),
}


@dataclass(frozen=True)
class InstallResult:
    """Outcome of one install() call.

    Attributes:
        manager: Manager id used
        requested: Packages asked for, in order
        succeeded: Packages installed by this call
        failed: Packages the manager reported failure for
        already_installed: Packages that were present before the call
        planned: Packages that would be installed (dry runs only)
        messages: Failure details from the manager
    """

    manager: str
    requested: tuple[str, ...]
    succeeded: tuple[str, ...] = ()
    failed: tuple[str, ...] = ()
    already_installed: tuple[str, ...] = ()
    planned: tuple[str, ...] = ()
    messages: tuple[str, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        """Return True if no package failed."""
        return not self.failed

    @property
    def changed(self) -> bool:
        """Return True if anything was (or would be) installed."""
        return bool(self.succeeded or self.planned)


def privilege_prefix(manager: PackageManager, platform: PlatformInfo) -> list[str]:
    """Return the escalation prefix for a manager on this host.

    Without root and without sudo, the install still proceeds and the
    manager's own permission error surfaces in the result.
    """
    if not manager.needs_privilege or platform.is_root:
        return []
    if platform.has_sudo:
        return ["sudo"]
    logger.warning("No sudo found; dependency install may fail.")
    return []


def is_installed(
    manager: PackageManager,
    binary: str,
    package: str,
    runner: CommandRunner = run_command,
) -> bool:
    """Check whether a package is already installed (read-only query)."""
    result = runner(manager.query_argv(binary, package), timeout=60)
    return result.ok


def install(  # noqa: PLR0913 - Explicit collaborators keep this testable
    manager: str,
    package_names: list[str],
    platform: PlatformInfo,
    runner: CommandRunner = run_command,
    refresh: bool = False,
    dry_run: bool = False,
) -> InstallResult:
    """Install packages with the given manager.

    A failing batch of more than one package is retried one package at a
    time, so a single bad name does not hide the others' outcome.

    Args:
        manager: Manager id ("apt", "dnf", "pacman", "zypper", "brew")
        package_names: Packages to install
        platform: Detected platform (for privilege escalation)
        runner: Command runner (injectable for tests)
        refresh: Refresh package metadata before installing
        dry_run: Only compute what would be installed

    Returns:
        InstallResult with per-package outcome

    Raises:
        SkippedUnsupported: If the manager is unknown or not available here

    Example:
        >>> result = install("apt", ["git", "curl"], detect())
        >>> if not result.ok:
        ...     print(f"Failed: {', '.join(result.failed)}")
    """
    spec = MANAGERS.get(manager)
    if spec is None:
        raise SkippedUnsupported(f"Unsupported package manager: {manager}")

    binary = platform.package_manager_path if manager == platform.package_manager else None
    binary = binary or find_manager_binary(manager)
    if binary is None:
        raise SkippedUnsupported(f"{manager} is not available on this host")

    requested = tuple(package_names)
    already = tuple(p for p in requested if is_installed(spec, binary, p, runner))
    pending = [p for p in requested if p not in already]

    if not pending:
        logger.debug(f"All packages already installed via {manager}: {', '.join(requested)}")
        return InstallResult(manager=manager, requested=requested, already_installed=already)

    if dry_run:
        return InstallResult(manager=manager, requested=requested, already_installed=already, planned=tuple(pending))

    prefix = privilege_prefix(spec, platform)

    if refresh:
        refresh_argv = spec.refresh_argv(binary)
        if refresh_argv:
            refreshed = runner(prefix + refresh_argv)
            if not refreshed.ok:
                # Stale metadata is not fatal; the install may still succeed
                logger.warning(f"Package metadata refresh failed: {refreshed.summary()}")

    logger.info(f"Installing via {manager}: {' '.join(pending)}")
    batch = runner(prefix + spec.install_argv(binary, pending))
    if batch.ok:
        return InstallResult(manager=manager, requested=requested, succeeded=tuple(pending), already_installed=already)

    if len(pending) == 1:
        return InstallResult(
            manager=manager,
            requested=requested,
            failed=tuple(pending),
            already_installed=already,
            messages=(batch.summary(),),
        )

    logger.warning(f"Batch install failed ({batch.summary()}); retrying packages individually")
    succeeded: list[str] = []
    failed: list[str] = []
    messages: list[str] = []
    for package in pending:
        single = runner(prefix + spec.install_argv(binary, [package]))
        if single.ok:
            succeeded.append(package)
        else:
            failed.append(package)
            messages.append(f"{package}: {single.summary()}")

    return InstallResult(
        manager=manager,
        requested=requested,
        succeeded=tuple(succeeded),
        failed=tuple(failed),
        already_installed=already,
        messages=tuple(messages),
    )
