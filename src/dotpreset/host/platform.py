"""Platform detection for profile runs.

Identifies the OS family, the distribution (from /etc/os-release), the
first usable package manager and whether privilege escalation is possible.
Uses shutil.which() for PATH detection. The result is computed once and
cached for the lifetime of the process.
"""

import logging
import os
import shutil
import sys
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Package managers in resolution order, mapped to the binary that proves them
MANAGER_PRIORITY: list[tuple[str, str]] = [
    ("apt", "apt-get"),
    ("dnf", "dnf"),
    ("pacman", "pacman"),
    ("zypper", "zypper"),
    ("brew", "brew"),
]

# Homebrew is often installed but not yet on PATH (fresh install in this session)
BREW_PREFIXES = [
    "/opt/homebrew/bin/brew",  # Apple Silicon
    "/usr/local/bin/brew",  # Intel macOS
    "/home/linuxbrew/.linuxbrew/bin/brew",  # Linuxbrew
]

OS_RELEASE_PATH = Path("/etc/os-release")


@dataclass(frozen=True)
class PlatformInfo:
    """Read-only description of the host, computed once per run.

    Attributes:
        os_family: "linux", "darwin", "win32", ...
        distro_id: ID from /etc/os-release ("ubuntu", "fedora"), None if unknown
        distro_like: ID_LIKE entries from /etc/os-release
        package_manager: First resolvable manager id ("apt", "brew"), None if none
        package_manager_path: Absolute path of that manager's binary
        has_sudo: Whether a sudo binary is on PATH
        is_root: Whether the process runs with effective uid 0
        bash_path: Absolute path of bash, None if not found
    """

    os_family: str
    distro_id: Optional[str]
    distro_like: tuple[str, ...]
    package_manager: Optional[str]
    package_manager_path: Optional[str]
    has_sudo: bool
    is_root: bool
    bash_path: Optional[str]

    @property
    def can_escalate(self) -> bool:
        """Return True if privileged commands can run (root or sudo present)."""
        return self.is_root or self.has_sudo

    def describe(self) -> str:
        """Return a multi-line human-readable summary."""
        distro = self.distro_id or "unknown"
        if self.distro_like:
            distro += f" (like {' '.join(self.distro_like)})"
        lines = [
            f"OS family:       {self.os_family}",
            f"Distribution:    {distro}",
            f"Package manager: {self.package_manager or 'none'}"
            + (f" ({self.package_manager_path})" if self.package_manager_path else ""),
            f"Privileges:      {'root' if self.is_root else ('sudo' if self.has_sudo else 'none')}",
            f"bash:            {self.bash_path or 'not found'}",
        ]
        return "\n".join(lines)


def normalize_os_family(platform: str) -> str:
    """Collapse sys.platform variants ("linux2", "freebsd13") to a family name."""
    for family in ("linux", "darwin", "win32", "freebsd", "openbsd"):
        if platform.startswith(family):
            return family
    return platform


def read_os_release(path: Path = OS_RELEASE_PATH) -> dict[str, str]:
    """Parse an os-release file into a lower-cased key -> value mapping.

    Returns an empty dict if the file does not exist (macOS, containers).
    """
    data: dict[str, str] = {}
    try:
        text = path.read_text(encoding="utf-8")
    except OSError:
        return data
    for line in text.splitlines():
        if "=" not in line or line.lstrip().startswith("#"):
            continue
        key, value = line.split("=", 1)
        data[key.strip().lower()] = value.strip().strip('"').strip("'")
    return data


def find_manager_binary(manager: str) -> Optional[str]:
    """Locate the binary for a package manager id.

    Args:
        manager: Manager id ("apt", "dnf", "pacman", "zypper", "brew")

    Returns:
        Absolute path, or None if the manager is not available
    """
    binary = dict(MANAGER_PRIORITY).get(manager)
    if binary is None:
        logger.warning(f"Unknown package manager: {manager}")
        return None

    path = shutil.which(binary)
    if path is None and manager == "brew":
        for candidate in BREW_PREFIXES:
            if os.access(candidate, os.X_OK):
                return candidate
    return path


def _is_root() -> bool:
    geteuid = getattr(os, "geteuid", None)
    return geteuid is not None and geteuid() == 0


@lru_cache(maxsize=1)
def detect() -> PlatformInfo:
    """Detect the host platform.

    Pure query with no side effects. Cached: installation status of package
    managers is not expected to change mid-run. Call ``detect.cache_clear()``
    to force a fresh detection.

    Returns:
        PlatformInfo for this host

    Example:
        >>> info = detect()
        >>> if info.package_manager is None:
        ...     print("Install dependencies manually")
    """
    os_release = read_os_release()

    manager: Optional[str] = None
    manager_path: Optional[str] = None
    for candidate, _binary in MANAGER_PRIORITY:
        path = find_manager_binary(candidate)
        if path:
            manager, manager_path = candidate, path
            break

    info = PlatformInfo(
        os_family=normalize_os_family(sys.platform),
        distro_id=os_release.get("id"),
        distro_like=tuple(os_release.get("id_like", "").split()),
        package_manager=manager,
        package_manager_path=manager_path,
        has_sudo=shutil.which("sudo") is not None,
        is_root=_is_root(),
        bash_path=shutil.which("bash"),
    )
    logger.debug(f"Detected platform: {info}")
    return info
