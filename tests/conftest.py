"""Pytest configuration and shared fixtures."""

import os
from pathlib import Path
from typing import Optional

import pytest

from dotpreset.host.commands import CommandResult
from dotpreset.host.platform import PlatformInfo, detect
from dotpreset.host.settings_store import ABSENT, parse_dump


class FakeCommandRunner:
    """Command runner double modelling a package manager.

    Records every call. ``dpkg -s``/``rpm -q``/``brew list`` queries answer
    from ``installed``; installs fail when they include a package from
    ``fail_packages`` and otherwise mark their packages installed. Anything
    else succeeds unless ``responses`` holds a result for its argv.
    """

    INSTALL_VERBS = {"install", "-Sy"}

    def __init__(self):
        self.calls: list[list[str]] = []
        self.kwargs: list[dict] = []
        self.installed: set[str] = set()
        self.fail_packages: set[str] = set()
        self.responses: dict[tuple[str, ...], CommandResult] = {}
        self.on_call = None

    def __call__(self, argv, **kwargs) -> CommandResult:
        argv = list(argv)
        self.calls.append(argv)
        self.kwargs.append(kwargs)
        if self.on_call is not None:
            self.on_call(argv)

        if tuple(argv) in self.responses:
            return self.responses[tuple(argv)]

        command = argv[1:] if argv and argv[0] == "sudo" else argv
        name = os.path.basename(command[0]) if command else ""
        if name in ("dpkg", "rpm") or (name in ("pacman", "brew") and command[1:2] in (["-Q"], ["list"])):
            package = command[-1]
            return CommandResult(argv=tuple(argv), returncode=0 if package in self.installed else 1)

        if len(command) > 1 and command[1] in self.INSTALL_VERBS:
            packages = [arg for arg in command[2:] if not arg.startswith("-")]
            if self.fail_packages.intersection(packages):
                bad = sorted(self.fail_packages.intersection(packages))
                return CommandResult(argv=tuple(argv), returncode=100, stderr=f"E: Unable to locate package {bad[0]}")
            self.installed.update(packages)

        return CommandResult(argv=tuple(argv), returncode=0)

    def commands_named(self, name: str) -> list[list[str]]:
        """Return calls whose program (after sudo) has the given basename."""
        found = []
        for argv in self.calls:
            command = argv[1:] if argv and argv[0] == "sudo" else argv
            if command and os.path.basename(command[0]) == name:
                found.append(argv)
        return found


class FakeSettingsStore:
    """In-memory stand-in for DconfStore."""

    def __init__(self, values: Optional[dict] = None, available: bool = True, schema_values: Optional[dict] = None):
        self.values = dict(values or {})
        self.schema_values = dict(schema_values or {})
        self.writes: list[tuple[str, object]] = []
        self.loads: list[tuple[str, str]] = []
        self.dumps: dict[str, str] = {}
        self._available = available

    def available(self) -> bool:
        return self._available

    def read(self, key_path):
        return self.values.get(key_path, ABSENT)

    def read_schema(self, schema, key):
        return self.schema_values.get(f"{schema} {key}", ABSENT)

    def apply(self, key_path, value):
        self.writes.append((key_path, value))
        self.values[key_path] = value

    def list_dir(self, dir_path):
        entries = set()
        for key in self.values:
            if key.startswith(dir_path):
                rest = key[len(dir_path) :]
                entries.add(rest.split("/", 1)[0] + "/" if "/" in rest else rest)
        return sorted(entries)

    def dump(self, dir_path):
        return self.dumps.get(dir_path, "")

    def load(self, dir_path, blob):
        self.loads.append((dir_path, blob))
        self.dumps[dir_path] = blob
        self.values.update(parse_dump(dir_path, blob))


@pytest.fixture(autouse=True)
def isolated_state(tmp_path, monkeypatch):
    """Keep config, journal and platform cache out of the real user dirs."""
    monkeypatch.setenv("DOTPRESET_CONFIG", str(tmp_path / "config" / "config.yaml"))
    monkeypatch.setenv("DOTPRESET_JOURNAL", str(tmp_path / "journal" / "runs.jsonl"))
    monkeypatch.delenv("DOTPRESET_BACKUP_DIR", raising=False)
    detect.cache_clear()
    yield
    detect.cache_clear()


@pytest.fixture
def home(tmp_path):
    """Empty home directory for a run."""
    path = tmp_path / "home"
    path.mkdir()
    return path


@pytest.fixture
def bin_dir(tmp_path):
    """Directory of fake executables; use make_executable() to add some."""
    path = tmp_path / "bin"
    path.mkdir()
    return path


@pytest.fixture
def make_executable(bin_dir):
    """Factory fixture creating an executable file in bin_dir."""

    def _create(name: str) -> Path:
        target = bin_dir / name
        target.write_text("#!/bin/sh\nexit 0\n")
        target.chmod(0o755)
        return target

    return _create


@pytest.fixture
def fake_runner():
    """FakeCommandRunner instance."""
    return FakeCommandRunner()


@pytest.fixture
def settings_store():
    """FakeSettingsStore with a default GNOME Terminal profile."""
    return FakeSettingsStore({"/org/gnome/terminal/legacy/profiles:/default": "b1dcc9dd-5262-4d8d-a863-c897e6d979b9"})


@pytest.fixture
def linux_platform():
    """PlatformInfo for an Ubuntu host with sudo."""
    return PlatformInfo(
        os_family="linux",
        distro_id="ubuntu",
        distro_like=("debian",),
        package_manager="apt",
        package_manager_path="/usr/bin/apt-get",
        has_sudo=True,
        is_root=False,
        bash_path="/bin/bash",
    )


@pytest.fixture
def darwin_platform():
    """PlatformInfo for a macOS host with Homebrew."""
    return PlatformInfo(
        os_family="darwin",
        distro_id=None,
        distro_like=(),
        package_manager="brew",
        package_manager_path="/opt/homebrew/bin/brew",
        has_sudo=True,
        is_root=False,
        bash_path="/bin/bash",
    )


def snapshot_tree(root: Path) -> dict[str, object]:
    """Map every path under root to its content (files), target (links) or "dir"."""
    tree: dict[str, object] = {}
    for dirpath, dirnames, filenames in os.walk(root):
        for name in dirnames + filenames:
            path = Path(dirpath) / name
            key = str(path.relative_to(root))
            if path.is_symlink():
                tree[key] = ("link", os.readlink(path))
            elif path.is_dir():
                tree[key] = "dir"
            else:
                tree[key] = path.read_bytes()
    return tree


@pytest.fixture
def snapshot():
    """Function capturing a directory tree for before/after comparison."""
    return snapshot_tree


@pytest.fixture
def make_store():
    """Factory fixture for FakeSettingsStore instances."""

    def _create(
        values: Optional[dict] = None, available: bool = True, schema_values: Optional[dict] = None
    ) -> FakeSettingsStore:
        return FakeSettingsStore(values, available=available, schema_values=schema_values)

    return _create
