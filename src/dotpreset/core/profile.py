"""Profile and step definitions, and the YAML profile loader.

A profile is a named, ordered list of steps describing a target
environment. Profiles are YAML documents:

    name: pure-bash
    variables:
      BG: "#2D2D2D"
    steps:
      - id: deps
        install:
          packages: [git, curl]
      - id: prompt
        write_file:
          target: ~/.bashrc
          marker: pure-prompt
          content: |
            PS1='{{ PROMPT }}'

Each step mapping holds exactly one kind key (install, write_file, run,
ensure_line, move_aside, login_shell, import_settings, apply_settings)
plus optional common keys (id, description, fatal, unless_applied,
only_on). ``{{ NAME }}`` placeholders in string fields are rendered from
``variables`` at load time.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

import yaml

from dotpreset.exceptions import CommandParseError, ProfileError
from dotpreset.files.config_writer import render_template
from dotpreset.host.settings_store import validate_dir, validate_key

from .command_line import parse_command

logger = logging.getLogger(__name__)

# Built-in profiles shipped inside the package
BUILTIN_PROFILES_DIR = Path(__file__).parent.parent / "profiles"

PROFILE_SUFFIXES = (".yaml", ".yml")

COMMON_KEYS = {"id", "description", "fatal", "unless_applied", "only_on"}


@dataclass(frozen=True, kw_only=True)
class Step:
    """Common attributes of every step.

    Attributes:
        id: Unique identifier within the profile
        description: Human-readable summary (optional)
        fatal: Failure of this step stops the whole run
        unless_applied: Skip this step if the named earlier step was applied
        only_on: OS families the step applies to (empty: all)
    """

    kind = "step"

    id: str
    description: str = ""
    fatal: bool = False
    unless_applied: Optional[str] = None
    only_on: tuple[str, ...] = ()

    @property
    def label(self) -> str:
        """Return a short label for reports."""
        return self.description or f"{self.kind} {self.id}"


@dataclass(frozen=True, kw_only=True)
class InstallPackages(Step):
    """Install packages with the detected (or a named) package manager."""

    kind = "install"

    packages: tuple[str, ...]
    manager: Optional[str] = None
    refresh: bool = False


@dataclass(frozen=True, kw_only=True)
class WriteFile(Step):
    """Write a whole file, or a managed region when ``marker`` is set."""

    kind = "write_file"

    target: str
    content: str
    marker: Optional[str] = None
    comment: str = "#"
    mode: Optional[int] = None


@dataclass(frozen=True, kw_only=True)
class RunPlatformAction(Step):
    """Run an opaque external command.

    Attributes:
        command: Single simple command (parsed with bashlex, run without a shell)
        creates: Skip if this path already exists
        skip_if_found: Skip if this binary is already on PATH
        requires: Binaries that must be on PATH (skipped otherwise)
        timeout: Seconds before the command is abandoned
    """

    kind = "run"

    command: str
    creates: Optional[str] = None
    skip_if_found: Optional[str] = None
    requires: tuple[str, ...] = ()
    timeout: Optional[float] = None


@dataclass(frozen=True, kw_only=True)
class EnsureLine(Step):
    """Replace lines matching ``match`` with ``line``, or append it."""

    kind = "ensure_line"

    target: str
    line: str
    match: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class MoveAside(Step):
    """Move existing paths into the backup vault (clean start)."""

    kind = "move_aside"

    paths: tuple[str, ...]


@dataclass(frozen=True, kw_only=True)
class EnsureLoginShell(Step):
    """Make the named shell the login shell. A missing shell is fatal."""

    kind = "login_shell"

    shell: str


@dataclass(frozen=True, kw_only=True)
class ImportSettings(Step):
    """Load an opaque settings dump into the settings store."""

    kind = "import_settings"

    directory: str
    source: str
    default_profile_name: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class ApplySettings(Step):
    """Write key/value pairs under a base path in the settings store."""

    kind = "apply_settings"

    base: str
    values: tuple[tuple[str, Any], ...]


STEP_KINDS: dict[str, type] = {
    cls.kind: cls
    for cls in (
        InstallPackages,
        WriteFile,
        RunPlatformAction,
        EnsureLine,
        MoveAside,
        EnsureLoginShell,
        ImportSettings,
        ApplySettings,
    )
}


@dataclass(frozen=True)
class Profile:
    """A named, ordered, immutable list of steps.

    Attributes:
        name: Profile name
        steps: Steps in execution order
        description: Human-readable summary
        variables: Template variables used when the profile was loaded
        source_dir: Directory relative files (settings dumps) are resolved against
    """

    name: str
    steps: tuple[Step, ...]
    description: str = ""
    variables: dict[str, str] = field(default_factory=dict)
    source_dir: Optional[Path] = None

    def step(self, step_id: str) -> Optional[Step]:
        """Return the step with the given id, or None."""
        for candidate in self.steps:
            if candidate.id == step_id:
                return candidate
        return None


def resolve_path(raw: str, home: Path) -> Path:
    """Resolve a profile path: ``~`` is the run's home, relative paths are under home."""
    if raw == "~" or raw.startswith("~/"):
        return Path(str(home) + raw[1:])
    path = Path(raw)
    if not path.is_absolute():
        return home / path
    return path


def _render(value: Any, variables: dict[str, str]) -> Any:
    if isinstance(value, str):
        return render_template(value, variables)
    if isinstance(value, list):
        return [_render(item, variables) for item in value]
    if isinstance(value, dict):
        return {key: _render(item, variables) for key, item in value.items()}
    return value


def _as_tuple(value: Any, field_name: str) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return tuple(value)
    raise ValueError(f"{field_name} must be a string or a list of strings")


def _build_step(index: int, raw: Any, variables: dict[str, str]) -> Step:  # noqa: PLR0912
    """Validate one step mapping and construct its Step object."""
    if not isinstance(raw, dict):
        raise ValueError("step must be a mapping")

    kinds = [key for key in raw if key not in COMMON_KEYS]
    if len(kinds) != 1:
        raise ValueError(f"step must have exactly one kind key out of {sorted(STEP_KINDS)}, got {kinds}")
    kind = kinds[0]
    if kind not in STEP_KINDS:
        raise ValueError(f"Unknown step kind: {kind}")

    fatal = raw.get("fatal", False)
    if not isinstance(fatal, bool):
        raise ValueError("fatal must be boolean")

    common: dict[str, Any] = {
        "id": str(raw.get("id") or f"{index + 1}-{kind}"),
        "description": str(raw.get("description", "")),
        "fatal": fatal,
        "unless_applied": raw.get("unless_applied"),
        "only_on": _as_tuple(raw["only_on"], "only_on") if "only_on" in raw else (),
    }

    try:
        body = _render(raw[kind], variables)
    except KeyError as e:
        raise ValueError(f"Unknown template variable: {e.args[0]}")

    if kind == "install":
        if isinstance(body, (str, list)):
            body = {"packages": body}
        packages = _as_tuple(body.get("packages"), "install.packages")
        if not packages:
            raise ValueError("install.packages cannot be empty")
        return InstallPackages(
            packages=packages, manager=body.get("manager"), refresh=bool(body.get("refresh", False)), **common
        )

    if kind == "write_file":
        _require(body, kind, "target", "content")
        mode = body.get("mode")
        if isinstance(mode, str):
            mode = int(mode, 8)
        return WriteFile(
            target=body["target"],
            content=str(body["content"]),
            marker=body.get("marker"),
            comment=str(body.get("comment", "#")),
            mode=mode,
            **common,
        )

    if kind == "run":
        if isinstance(body, str):
            body = {"command": body}
        _require(body, kind, "command")
        parse_command(body["command"])  # Reject shell constructs at load time
        return RunPlatformAction(
            command=body["command"],
            creates=body.get("creates"),
            skip_if_found=body.get("skip_if_found"),
            requires=_as_tuple(body["requires"], "run.requires") if "requires" in body else (),
            timeout=float(body["timeout"]) if body.get("timeout") is not None else None,
            **common,
        )

    if kind == "ensure_line":
        _require(body, kind, "target", "line")
        if body.get("match") is not None:
            try:
                re.compile(body["match"])
            except re.error as e:
                raise ValueError(f"ensure_line.match is not a valid regex: {e}")
        return EnsureLine(target=body["target"], line=str(body["line"]), match=body.get("match"), **common)

    if kind == "move_aside":
        if isinstance(body, (str, list)):
            body = {"paths": body}
        return MoveAside(paths=_as_tuple(body.get("paths"), "move_aside.paths"), **common)

    if kind == "login_shell":
        shell = body.get("shell") if isinstance(body, dict) else body
        if not isinstance(shell, str) or not shell:
            raise ValueError("login_shell needs a shell name")
        return EnsureLoginShell(shell=shell, **common)

    if kind == "import_settings":
        _require(body, kind, "directory", "source")
        validate_dir(body["directory"])
        return ImportSettings(
            directory=body["directory"],
            source=body["source"],
            default_profile_name=body.get("default_profile_name"),
            **common,
        )

    # apply_settings
    _require(body, kind, "base", "values")
    values = body["values"]
    if not isinstance(values, dict) or not values:
        raise ValueError("apply_settings.values must be a non-empty mapping")
    base = str(body["base"]).replace("{terminal_profile}", "profile")
    base = base if base.endswith("/") else f"{base}/"
    validate_dir(base)
    for key, value in values.items():
        if not isinstance(value, (str, bool, int, list)):
            raise ValueError(f"apply_settings.values.{key} must be a string, bool, int or list")
        validate_key(f"{base}{key}")
    return ApplySettings(base=body["base"], values=tuple(values.items()), **common)


def _require(body: Any, kind: str, *names: str) -> None:
    if not isinstance(body, dict):
        raise ValueError(f"{kind} must be a mapping")
    for name in names:
        if body.get(name) is None:
            raise ValueError(f"{kind}.{name} is required")


def parse_profile(data: Any, source: Optional[Path] = None) -> Profile:
    """Validate a profile document (already loaded from YAML).

    Args:
        data: Parsed YAML document
        source: File the document came from (for error messages and relative paths)

    Returns:
        Immutable Profile

    Raises:
        ProfileError: If the document is not a valid profile
    """
    file_path = str(source) if source else None
    if not isinstance(data, dict):
        raise ProfileError("Profile must be a YAML mapping", file_path=file_path)

    name = data.get("name") or (source.stem if source else None)
    if not name:
        raise ProfileError("Profile needs a name", file_path=file_path)

    variables = data.get("variables") or {}
    if not isinstance(variables, dict):
        raise ProfileError("variables must be a mapping", file_path=file_path)
    variables = {str(key): str(value) for key, value in variables.items()}

    raw_steps = data.get("steps")
    if not isinstance(raw_steps, list) or not raw_steps:
        raise ProfileError("Profile needs a non-empty steps list", file_path=file_path)

    steps: list[Step] = []
    seen: set[str] = set()
    for index, raw in enumerate(raw_steps):
        try:
            step = _build_step(index, raw, variables)
        except (ValueError, TypeError, CommandParseError) as e:
            raise ProfileError(str(e), file_path=file_path, step_index=index)
        if step.id in seen:
            raise ProfileError(f"Duplicate step id: {step.id}", file_path=file_path, step_index=index)
        if step.unless_applied is not None and step.unless_applied not in seen:
            raise ProfileError(
                f"unless_applied must name an earlier step, got: {step.unless_applied}",
                file_path=file_path,
                step_index=index,
            )
        seen.add(step.id)
        steps.append(step)

    return Profile(
        name=str(name),
        steps=tuple(steps),
        description=str(data.get("description", "")),
        variables=variables,
        source_dir=source.parent if source else None,
    )


def load_profile(path: Union[str, Path]) -> Profile:
    """Load and validate a profile YAML file.

    Raises:
        ProfileError: If the file cannot be read or is not a valid profile
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ProfileError("Cannot read profile", file_path=str(path), original_error=e)
    except yaml.YAMLError as e:
        raise ProfileError("Invalid YAML in profile", file_path=str(path), original_error=e)
    profile = parse_profile(data, source=path)
    logger.debug(f"Loaded profile {profile.name} with {len(profile.steps)} steps from {path}")
    return profile


def list_profiles(search_dirs: list[Path]) -> dict[str, Path]:
    """Map profile names to files; earlier directories win on name clashes."""
    found: dict[str, Path] = {}
    for directory in search_dirs:
        if not directory.is_dir():
            continue
        for candidate in sorted(directory.iterdir()):
            if candidate.suffix in PROFILE_SUFFIXES and candidate.stem not in found:
                found[candidate.stem] = candidate
    return found


def find_profile(name_or_path: str, search_dirs: list[Path]) -> Path:
    """Resolve a profile argument to a file.

    A value containing a path separator or a YAML suffix is treated as a
    path; anything else is looked up by name in ``search_dirs``.

    Raises:
        ProfileError: If no matching profile exists
    """
    looks_like_path = os.sep in name_or_path or name_or_path.endswith(PROFILE_SUFFIXES)
    if looks_like_path:
        path = Path(name_or_path).expanduser()
        if not path.is_file():
            raise ProfileError(f"Profile file not found: {path}")
        return path

    available = list_profiles(search_dirs)
    if name_or_path not in available:
        choices = ", ".join(sorted(available)) or "none"
        raise ProfileError(f"Unknown profile: {name_or_path} (available: {choices})")
    return available[name_or_path]
