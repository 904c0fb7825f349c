"""Tests for the dconf settings store adapter and color conversion."""

from unittest.mock import patch

import pytest

from dotpreset.exceptions import SkippedUnsupported, StepFailed
from dotpreset.host.commands import CommandResult
from dotpreset.host.settings_store import (
    ABSENT,
    DconfStore,
    NativeColor,
    convert_colors,
    default_terminal_profile,
    find_terminal_profile,
    format_gvariant,
    hex_to_native,
    native_to_hex,
    parse_dump,
    parse_gvariant,
    validate_dir,
    validate_key,
)

PROFILES = "/org/gnome/terminal/legacy/profiles:/"


class TestColors:
    """Test hex <-> native color conversion."""

    def test_background_color(self):
        """The default background converts to its channels."""
        assert hex_to_native("#2D2D2D") == NativeColor(45, 45, 45)
        assert str(hex_to_native("#2D2D2D")) == "rgb(45,45,45)"

    @pytest.mark.parametrize("value", ["#2D2D2D", "#EBE0BB", "#767676", "#68847F", "#A9758C", "#000000", "#FFFFFF"])
    def test_round_trip(self, value):
        """Hex survives conversion to native and back."""
        native = hex_to_native(value)
        assert native_to_hex(native) == value
        assert native_to_hex(str(native)) == value

    def test_round_trip_all_channel_values(self):
        """Every channel value 0-255 is recovered exactly."""
        for channel in range(256):
            value = f"#{channel:02X}{255 - channel:02X}{channel // 2:02X}"
            assert native_to_hex(hex_to_native(value)) == value

    def test_lowercase_and_no_hash(self):
        """Leading # is optional and case does not matter."""
        assert hex_to_native("ebe0bb") == NativeColor(235, 224, 187)

    @pytest.mark.parametrize("value", ["", "#FFF", "#GGGGGG", "#1234567", "rgb(1,2,3)"])
    def test_invalid_hex(self, value):
        """Anything but 6 hex digits is rejected."""
        with pytest.raises(ValueError):
            hex_to_native(value)

    def test_channel_range(self):
        """NativeColor rejects out-of-range channels."""
        with pytest.raises(ValueError):
            NativeColor(256, 0, 0)

    def test_convert_colors(self):
        """Hex strings in values and lists are converted; others pass through."""
        assert convert_colors("#2D2D2D") == "rgb(45,45,45)"
        assert convert_colors(["#2D2D2D", "#EBE0BB"]) == ["rgb(45,45,45)", "rgb(235,224,187)"]
        assert convert_colors(False) is False
        assert convert_colors("Basic") == "Basic"


class TestGVariant:
    """Test GVariant text formatting and parsing."""

    def test_parse_dump(self):
        """Dump sections map to full key paths under the directory."""
        blob = "[/]\ndefault='abc'\n\n[:abc]\nvisible-name='Basic'\nuse-theme-colors=false\n"

        assert parse_dump(PROFILES, blob) == {
            f"{PROFILES}default": "abc",
            f"{PROFILES}:abc/visible-name": "Basic",
            f"{PROFILES}:abc/use-theme-colors": False,
        }

    def test_format(self):
        """Values are serialised the way dconf write expects."""
        assert format_gvariant(True) == "true"
        assert format_gvariant(12) == "12"
        assert format_gvariant("it's") == "'it\\'s'"
        assert format_gvariant(["rgb(1,2,3)", "rgb(4,5,6)"]) == "['rgb(1,2,3)', 'rgb(4,5,6)']"

    def test_format_rejects_unknown_types(self):
        """Unsupported types raise TypeError."""
        with pytest.raises(TypeError):
            format_gvariant({"a": 1})

    def test_parse(self):
        """dconf read output is parsed back to Python values."""
        assert parse_gvariant("false\n") is False
        assert parse_gvariant("'rgb(45,45,45)'\n") == "rgb(45,45,45)"
        assert parse_gvariant("['a', 'b']") == ["a", "b"]
        assert parse_gvariant("@as []") == []
        assert parse_gvariant("42") == 42
        assert parse_gvariant("") is ABSENT

    def test_parse_inverts_format(self):
        """Formatting then parsing returns the original value."""
        for value in (True, "it's", ["rgb(1,2,3)", "x"]):
            assert parse_gvariant(format_gvariant(value)) == value

    def test_path_validation(self):
        """Keys have no trailing slash; directories need one."""
        validate_key(f"{PROFILES}default")
        validate_dir(PROFILES)
        with pytest.raises(ValueError):
            validate_key(PROFILES)
        with pytest.raises(ValueError):
            validate_dir("/org/gnome")


class FakeDconf:
    """Runner double answering dconf invocations from a dict."""

    def __init__(self, values=None, fail=False):
        self.values = dict(values or {})
        self.calls = []
        self.fail = fail

    def __call__(self, argv, input_text=None, **kwargs):
        self.calls.append((argv, input_text))
        if self.fail:
            return CommandResult(argv=tuple(argv), returncode=1, stderr="error: permission denied")
        verb, path = argv[1], argv[2]
        if verb == "get":
            value = self.values.get(f"{argv[2]} {argv[3]}", "")
            return CommandResult(argv=tuple(argv), returncode=0 if value else 1, stdout=value + "\n")
        if verb == "read":
            return CommandResult(argv=tuple(argv), returncode=0, stdout=self.values.get(path, "") + "\n")
        if verb == "list":
            entries = sorted({key[len(path) :].split("/")[0] + "/" for key in self.values if key.startswith(path)})
            return CommandResult(argv=tuple(argv), returncode=0, stdout="\n".join(entries) + "\n")
        if verb == "dump":
            return CommandResult(argv=tuple(argv), returncode=0, stdout="[/]\ndefault='old'\n")
        return CommandResult(argv=tuple(argv), returncode=0)


class TestDconfStore:
    """Test the dconf adapter."""

    def test_unavailable_is_skip(self):
        """Without dconf every call is SkippedUnsupported."""
        store = DconfStore(runner=FakeDconf())
        with patch("dotpreset.host.settings_store.shutil.which", return_value=None):
            assert not store.available()
            with pytest.raises(SkippedUnsupported):
                store.apply(f"{PROFILES}default", "x")

    def test_read_and_apply(self):
        """read() parses output; apply() writes GVariant text."""
        runner = FakeDconf({f"{PROFILES}:abc/use-theme-colors": "true"})
        store = DconfStore(runner=runner, binary="/usr/bin/dconf")

        assert store.read(f"{PROFILES}:abc/use-theme-colors") is True
        store.apply(f"{PROFILES}:abc/background-color", "rgb(45,45,45)")

        assert runner.calls[-1][0] == ["/usr/bin/dconf", "write", f"{PROFILES}:abc/background-color", "'rgb(45,45,45)'"]

    def test_read_unset_key(self):
        """Unset keys read as ABSENT."""
        store = DconfStore(runner=FakeDconf(), binary="/usr/bin/dconf")
        assert store.read(f"{PROFILES}default") is ABSENT

    def test_apply_failure(self):
        """A rejected write raises StepFailed."""
        store = DconfStore(runner=FakeDconf(fail=True), binary="/usr/bin/dconf")
        with pytest.raises(StepFailed):
            store.apply(f"{PROFILES}default", "x")

    def test_dump_and_load(self):
        """Blobs pass through verbatim on stdin."""
        runner = FakeDconf()
        store = DconfStore(runner=runner, binary="/usr/bin/dconf")

        assert store.dump(PROFILES) == "[/]\ndefault='old'\n"
        store.load(PROFILES, "[:abc]\nvisible-name='Basic'\n")

        assert runner.calls[-1] == (["/usr/bin/dconf", "load", PROFILES], "[:abc]\nvisible-name='Basic'\n")

    def test_terminal_profiles(self):
        """Default and named profiles are found by UUID."""
        runner = FakeDconf(
            {
                f"{PROFILES}default": "'abc'",
                f"{PROFILES}:abc/visible-name": "'Default'",
                f"{PROFILES}:def/visible-name": "'Basic'",
            }
        )
        store = DconfStore(runner=runner, binary="/usr/bin/dconf")

        assert default_terminal_profile(store) == "abc"
        assert find_terminal_profile(store, "Basic") == "def"
        assert find_terminal_profile(store, "Missing") is None

    def test_default_profile_from_schema(self):
        """An unset dconf key falls back to the gsettings schema default."""
        runner = FakeDconf({"org.gnome.Terminal.ProfilesList default": "'b1dcc9dd-5262-4d8d-a863-c897e6d979b9'"})
        store = DconfStore(runner=runner, binary="/usr/bin/dconf", gsettings="/usr/bin/gsettings")

        assert default_terminal_profile(store) == "b1dcc9dd-5262-4d8d-a863-c897e6d979b9"
        assert runner.calls[-1][0] == ["/usr/bin/gsettings", "get", "org.gnome.Terminal.ProfilesList", "default"]

    def test_no_default_profile_anywhere(self):
        """Without dconf key or gsettings value there is no default profile."""
        store = DconfStore(runner=FakeDconf(), binary="/usr/bin/dconf", gsettings="/usr/bin/gsettings")
        assert default_terminal_profile(store) is None

    def test_read_schema_without_gsettings(self):
        """A host without gsettings reads ABSENT."""
        store = DconfStore(runner=FakeDconf(), binary="/usr/bin/dconf")
        with patch("dotpreset.host.settings_store.shutil.which", return_value=None):
            assert store.read_schema("org.gnome.Terminal.ProfilesList", "default") is ABSENT
