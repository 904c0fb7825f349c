"""Adapter for the dconf key/value settings store.

Wraps the ``dconf`` command line tool behind apply()/read()/dump()/load().
Values are strings, booleans or lists of strings, serialised as GVariant
text. The store is optional: on hosts without dconf every operation raises
SkippedUnsupported, which the runner records as a skip.

Color handling is pure and independent of the store: hex_to_native()
converts "#RRGGBB" into the rgb(r,g,b) form GNOME Terminal expects.
"""

import logging
import re
import shutil
from dataclasses import dataclass
from typing import Optional, Union

from dotpreset.exceptions import SkippedUnsupported, StepFailed

from .commands import CommandRunner, run_command

logger = logging.getLogger(__name__)

SettingValue = Union[str, bool, int, list[str]]

TERMINAL_PROFILES_DIR = "/org/gnome/terminal/legacy/profiles:/"
TERMINAL_PROFILES_SCHEMA = "org.gnome.Terminal.ProfilesList"

_HEX_COLOR = re.compile(r"^#?([0-9a-fA-F]{2})([0-9a-fA-F]{2})([0-9a-fA-F]{2})$")
_NATIVE_COLOR = re.compile(r"^rgb\(\s*(\d{1,3})\s*,\s*(\d{1,3})\s*,\s*(\d{1,3})\s*\)$")
_GVARIANT_STRING = re.compile(r"'((?:[^'\\]|\\.)*)'")


class _Absent:
    """Sentinel for keys with no value in the store."""

    _instance: Optional["_Absent"] = None

    def __new__(cls) -> "_Absent":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT = _Absent()


@dataclass(frozen=True)
class NativeColor:
    """A color in the settings store's representation.

    Example:
        >>> str(NativeColor(45, 45, 45))
        'rgb(45,45,45)'
    """

    red: int
    green: int
    blue: int

    def __post_init__(self):
        """Validate channel ranges."""
        for channel in (self.red, self.green, self.blue):
            if not 0 <= channel <= 255:
                raise ValueError(f"Color channel out of range: {channel}")

    def __str__(self) -> str:
        return f"rgb({self.red},{self.green},{self.blue})"


def is_hex_color(value: object) -> bool:
    """Return True if value is a "#RRGGBB" string."""
    return isinstance(value, str) and value.startswith("#") and _HEX_COLOR.match(value) is not None


def hex_to_native(hex_color: str) -> NativeColor:
    """Convert a hex triplet to the store's color representation.

    Args:
        hex_color: "#RRGGBB" (leading # optional, case-insensitive)

    Returns:
        NativeColor with the three integer channels

    Raises:
        ValueError: If the string is not a 6-digit hex color

    Examples:
        >>> hex_to_native("#2D2D2D")
        NativeColor(red=45, green=45, blue=45)
        >>> str(hex_to_native("#EBE0BB"))
        'rgb(235,224,187)'
    """
    match = _HEX_COLOR.match(hex_color.strip())
    if not match:
        raise ValueError(f"Invalid hex color: {hex_color!r} (expected #RRGGBB)")
    red, green, blue = (int(group, 16) for group in match.groups())
    return NativeColor(red, green, blue)


def native_to_hex(color: Union[NativeColor, str]) -> str:
    """Convert a NativeColor (or its rgb(r,g,b) text) back to "#RRGGBB".

    Examples:
        >>> native_to_hex(NativeColor(45, 45, 45))
        '#2D2D2D'
        >>> native_to_hex("rgb(235,224,187)")
        '#EBE0BB'
    """
    if isinstance(color, str):
        match = _NATIVE_COLOR.match(color.strip())
        if not match:
            raise ValueError(f"Invalid native color: {color!r}")
        color = NativeColor(*(int(group) for group in match.groups()))
    return f"#{color.red:02X}{color.green:02X}{color.blue:02X}"


def convert_colors(value: SettingValue) -> SettingValue:
    """Replace hex color strings (alone or in a list) with native colors."""
    if is_hex_color(value):
        return str(hex_to_native(value))  # type: ignore[arg-type]
    if isinstance(value, list):
        return [str(hex_to_native(item)) if is_hex_color(item) else item for item in value]
    return value


def _quote(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def _unquote(text: str) -> str:
    return re.sub(r"\\(.)", r"\1", text)


def format_gvariant(value: SettingValue) -> str:
    """Serialise a value as GVariant text for ``dconf write``.

    Examples:
        >>> format_gvariant(False)
        'false'
        >>> format_gvariant("rgb(45,45,45)")
        "'rgb(45,45,45)'"
        >>> format_gvariant(["a", "b"])
        "['a', 'b']"
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return _quote(value)
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(_quote(str(item)) for item in value) + "]"
    raise TypeError(f"Unsupported setting value type: {type(value).__name__}")


def parse_gvariant(text: str) -> Union[SettingValue, _Absent]:
    """Parse GVariant text printed by ``dconf read``.

    Empty output means the key is unset and yields ABSENT.
    """
    text = text.strip()
    if not text:
        return ABSENT
    if text in ("true", "false"):
        return text == "true"
    if text.startswith("@as "):
        text = text[4:].strip()
    if text.startswith("["):
        return [_unquote(item) for item in _GVARIANT_STRING.findall(text)]
    match = _GVARIANT_STRING.fullmatch(text)
    if match:
        return _unquote(match.group(1))
    if re.fullmatch(r"-?\d+", text):
        return int(text)
    return text


def parse_dump(dir_path: str, blob: str) -> dict[str, Union[SettingValue, _Absent]]:
    """Map each key of a ``dconf dump`` blob to its full key path and value.

    Example:
        >>> parse_dump("/a/", "[:x]\\nname='Basic'\\n")
        {'/a/:x/name': 'Basic'}
    """
    values: dict[str, Union[SettingValue, _Absent]] = {}
    prefix = dir_path
    for raw in blob.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("[") and line.endswith("]"):
            section = line[1:-1].strip("/")
            prefix = f"{dir_path}{section}/" if section else dir_path
        elif "=" in line:
            key, value = line.split("=", 1)
            values[f"{prefix}{key.strip()}"] = parse_gvariant(value)
    return values


def validate_key(key_path: str) -> None:
    """Check a dconf key path ("/a/b/key", no trailing slash)."""
    if not key_path.startswith("/") or key_path.endswith("/") or "//" in key_path:
        raise ValueError(f"Invalid settings key path: {key_path!r}")


def validate_dir(dir_path: str) -> None:
    """Check a dconf directory path ("/a/b/", trailing slash required)."""
    if not dir_path.startswith("/") or not dir_path.endswith("/") or "//" in dir_path:
        raise ValueError(f"Invalid settings directory path: {dir_path!r}")


class DconfStore:
    """Settings-store adapter backed by the dconf CLI.

    Example:
        >>> store = DconfStore()
        >>> if store.available():
        ...     store.apply("/org/gnome/terminal/legacy/profiles:/:abc/use-theme-colors", False)
    """

    def __init__(
        self,
        runner: CommandRunner = run_command,
        binary: Optional[str] = None,
        gsettings: Optional[str] = None,
    ):
        """Initialize the adapter.

        Args:
            runner: Command runner (injectable for tests)
            binary: dconf binary path (default: looked up on PATH)
            gsettings: gsettings binary path (default: looked up on PATH)
        """
        self._runner = runner
        self._binary = binary
        self._gsettings = gsettings

    def available(self) -> bool:
        """Return True if dconf can be invoked on this host."""
        if self._binary is None:
            self._binary = shutil.which("dconf")
        return self._binary is not None

    def _require(self) -> str:
        if not self.available():
            raise SkippedUnsupported("dconf not found; skipping settings store changes")
        return self._binary  # type: ignore[return-value]

    def read(self, key_path: str) -> Union[SettingValue, _Absent]:
        """Read one key; ABSENT if unset or unreadable."""
        validate_key(key_path)
        result = self._runner([self._require(), "read", key_path], timeout=30)
        if not result.ok:
            logger.debug(f"dconf read {key_path} failed: {result.summary()}")
            return ABSENT
        return parse_gvariant(result.stdout)

    def read_schema(self, schema: str, key: str) -> Union[SettingValue, _Absent]:
        """Read a key through gsettings, which falls back to the schema default.

        Returns:
            The effective value, or ABSENT if gsettings is missing or fails
        """
        if self._gsettings is None:
            self._gsettings = shutil.which("gsettings")
        if self._gsettings is None:
            return ABSENT
        result = self._runner([self._gsettings, "get", schema, key], timeout=30)
        if not result.ok:
            logger.debug(f"gsettings get {schema} {key} failed: {result.summary()}")
            return ABSENT
        return parse_gvariant(result.stdout)

    def apply(self, key_path: str, value: SettingValue) -> None:
        """Write one key.

        Raises:
            SkippedUnsupported: If dconf is not installed
            StepFailed: If dconf rejects the write
        """
        validate_key(key_path)
        result = self._runner([self._require(), "write", key_path, format_gvariant(value)], timeout=30)
        if not result.ok:
            raise StepFailed(f"Could not write {key_path}: {result.summary()}")

    def list_dir(self, dir_path: str) -> list[str]:
        """List entries of a directory (subdirectories end with "/")."""
        validate_dir(dir_path)
        result = self._runner([self._require(), "list", dir_path], timeout=30)
        if not result.ok:
            return []
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def dump(self, dir_path: str) -> str:
        """Export a directory as an opaque dconf dump blob."""
        validate_dir(dir_path)
        result = self._runner([self._require(), "dump", dir_path], timeout=30)
        if not result.ok:
            raise StepFailed(f"Could not dump {dir_path}: {result.summary()}")
        return result.stdout

    def load(self, dir_path: str, blob: str) -> None:
        """Import an opaque dconf dump blob into a directory verbatim."""
        validate_dir(dir_path)
        result = self._runner([self._require(), "load", dir_path], input_text=blob, timeout=60)
        if not result.ok:
            raise StepFailed(f"Could not load settings into {dir_path}: {result.summary()}")


def default_terminal_profile(store: DconfStore) -> Optional[str]:
    """Return the UUID of the default GNOME Terminal profile, None if unknown.

    The dconf key is only set once the user changes the default; on a fresh
    install the schema default reported by gsettings applies.
    """
    value = store.read(f"{TERMINAL_PROFILES_DIR}default")
    if not isinstance(value, str) or not value.strip():
        value = store.read_schema(TERMINAL_PROFILES_SCHEMA, "default")
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip()


def find_terminal_profile(
    store: DconfStore,
    visible_name: str,
    directory: str = TERMINAL_PROFILES_DIR,
) -> Optional[str]:
    """Return the UUID of the terminal profile with the given visible name."""
    for entry in store.list_dir(directory):
        if not entry.startswith(":") or not entry.endswith("/"):
            continue
        uuid = entry[1:-1]
        name = store.read(f"{directory}:{uuid}/visible-name")
        if name == visible_name:
            return uuid
    return None
