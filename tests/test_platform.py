"""Tests for platform detection module."""

from unittest.mock import patch

import pytest

from dotpreset.host.platform import (
    BREW_PREFIXES,
    PlatformInfo,
    detect,
    find_manager_binary,
    normalize_os_family,
    read_os_release,
)


class TestPlatformInfo:
    """Test suite for PlatformInfo dataclass."""

    def test_platform_info_immutable(self, linux_platform):
        """PlatformInfo should be immutable (frozen)."""
        with pytest.raises(AttributeError):
            linux_platform.package_manager = "dnf"

    def test_can_escalate(self, linux_platform):
        """Root or sudo allows privileged commands."""
        assert linux_platform.can_escalate
        no_sudo = PlatformInfo(
            os_family="linux",
            distro_id=None,
            distro_like=(),
            package_manager="apt",
            package_manager_path="/usr/bin/apt-get",
            has_sudo=False,
            is_root=False,
            bash_path=None,
        )
        assert not no_sudo.can_escalate

    def test_describe(self, linux_platform):
        """describe() mentions the manager and distribution."""
        text = linux_platform.describe()
        assert "apt (/usr/bin/apt-get)" in text
        assert "ubuntu (like debian)" in text


class TestHelpers:
    """Test suite for detection helpers."""

    @pytest.mark.parametrize(
        "raw,expected",
        [("linux", "linux"), ("linux2", "linux"), ("darwin", "darwin"), ("freebsd13", "freebsd"), ("sunos5", "sunos5")],
    )
    def test_normalize_os_family(self, raw, expected):
        """sys.platform variants collapse to a family name."""
        assert normalize_os_family(raw) == expected

    def test_read_os_release(self, tmp_path):
        """os-release keys are lower-cased and values unquoted."""
        path = tmp_path / "os-release"
        path.write_text('NAME="Fedora Linux"\nID=fedora\nID_LIKE="rhel centos"\n# comment\n')

        data = read_os_release(path)

        assert data["id"] == "fedora"
        assert data["id_like"] == "rhel centos"
        assert data["name"] == "Fedora Linux"

    def test_read_os_release_missing(self, tmp_path):
        """Missing file yields an empty mapping."""
        assert read_os_release(tmp_path / "nope") == {}

    @patch("dotpreset.host.platform.shutil.which")
    def test_find_manager_binary(self, mock_which):
        """Managers are located through their binary name."""
        mock_which.side_effect = lambda name: "/usr/bin/apt-get" if name == "apt-get" else None

        assert find_manager_binary("apt") == "/usr/bin/apt-get"
        assert find_manager_binary("dnf") is None
        assert find_manager_binary("nix") is None

    @patch("dotpreset.host.platform.os.access")
    @patch("dotpreset.host.platform.shutil.which")
    def test_find_brew_in_known_prefix(self, mock_which, mock_access):
        """Brew is found at its install prefix even when not on PATH."""
        mock_which.return_value = None
        mock_access.side_effect = lambda path, mode: path == BREW_PREFIXES[0]

        assert find_manager_binary("brew") == BREW_PREFIXES[0]


class TestDetect:
    """Test suite for detect()."""

    @patch("dotpreset.host.platform.read_os_release")
    @patch("dotpreset.host.platform.shutil.which")
    def test_priority_order(self, mock_which, mock_os_release):
        """apt wins over brew when both are present."""
        mock_os_release.return_value = {"id": "ubuntu", "id_like": "debian"}
        available = {"apt-get": "/usr/bin/apt-get", "brew": "/home/linuxbrew/.linuxbrew/bin/brew", "sudo": "/usr/bin/sudo"}
        mock_which.side_effect = available.get

        info = detect()

        assert info.package_manager == "apt"
        assert info.package_manager_path == "/usr/bin/apt-get"
        assert info.distro_id == "ubuntu"
        assert info.distro_like == ("debian",)
        assert info.has_sudo is True

    @patch("dotpreset.host.platform.os.access", return_value=False)
    @patch("dotpreset.host.platform.read_os_release", return_value={})
    @patch("dotpreset.host.platform.shutil.which", return_value=None)
    def test_no_manager(self, mock_which, mock_os_release, mock_access):
        """No manager anywhere yields None rather than an error."""
        info = detect()

        assert info.package_manager is None
        assert info.package_manager_path is None
        assert info.bash_path is None

    @patch("dotpreset.host.platform.read_os_release", return_value={})
    @patch("dotpreset.host.platform.shutil.which")
    def test_result_is_cached(self, mock_which, mock_os_release):
        """Detection runs once until the cache is cleared."""
        mock_which.side_effect = lambda name: "/usr/bin/dnf" if name == "dnf" else None

        first = detect()
        calls = mock_which.call_count
        second = detect()

        assert first is second
        assert mock_which.call_count == calls

        detect.cache_clear()
        detect()
        assert mock_which.call_count > calls
