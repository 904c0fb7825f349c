"""Tests for external command execution."""

import subprocess
from unittest.mock import MagicMock, patch

from dotpreset.host.commands import NOT_STARTED_EXIT, CommandResult, run_command


class TestCommandResult:
    """Test CommandResult dataclass."""

    def test_ok(self):
        """Only exit status 0 is ok."""
        assert CommandResult(argv=("true",), returncode=0).ok
        assert not CommandResult(argv=("false",), returncode=1).ok

    def test_summary_uses_last_stderr_line(self):
        """Summary names the command, status and last error line."""
        result = CommandResult(
            argv=("apt-get", "install", "-y", "nope"),
            returncode=100,
            stderr="Reading package lists...\nE: Unable to locate package nope\n",
        )
        assert result.summary() == "`apt-get install -y nope` exited 100: E: Unable to locate package nope"

    def test_summary_truncated(self):
        """Long summaries are cut to the limit."""
        result = CommandResult(argv=("x",), returncode=1, stderr="e" * 500)
        assert len(result.summary(limit=50)) == 50


class TestRunCommand:
    """Test run_command()."""

    @patch("dotpreset.host.commands.subprocess.run")
    def test_success(self, mock_run):
        """Output and status are captured."""
        mock_run.return_value = MagicMock(returncode=0, stdout="'b1dcc9dd'\n", stderr="")

        result = run_command(["dconf", "read", "/org/gnome/terminal/legacy/profiles:/default"])

        assert result.ok
        assert result.stdout == "'b1dcc9dd'\n"
        kwargs = mock_run.call_args.kwargs
        assert kwargs["check"] is False
        assert kwargs["text"] is True
        assert kwargs["capture_output"] is True

    @patch("dotpreset.host.commands.subprocess.run")
    def test_input_and_env_forwarded(self, mock_run):
        """stdin text and environment reach subprocess.run."""
        mock_run.return_value = MagicMock(returncode=0, stdout="", stderr="")

        run_command(["dconf", "load", "/a/"], input_text="[/]\nk='v'\n", env={"HOME": "/tmp/h"})

        kwargs = mock_run.call_args.kwargs
        assert kwargs["input"] == "[/]\nk='v'\n"
        assert kwargs["env"] == {"HOME": "/tmp/h"}

    @patch("dotpreset.host.commands.subprocess.run")
    def test_nonzero_exit_not_raised(self, mock_run):
        """Nonzero exit is reported through returncode."""
        mock_run.return_value = MagicMock(returncode=1, stdout="", stderr="chsh: PAM: Authentication failure\n")

        result = run_command(["chsh", "-s", "/bin/bash"])

        assert result.returncode == 1
        assert "Authentication failure" in result.summary()

    @patch("dotpreset.host.commands.subprocess.run")
    def test_timeout(self, mock_run):
        """Timeouts become exit status 124."""
        mock_run.side_effect = subprocess.TimeoutExpired(cmd=["nvim"], timeout=5)

        result = run_command(["nvim", "--headless"], timeout=5)

        assert result.returncode == 124
        assert "timed out" in result.stderr

    def test_missing_binary(self):
        """A binary that cannot be started yields exit status 127."""
        result = run_command(["/nonexistent/dotpreset-test-binary"])

        assert result.returncode == NOT_STARTED_EXIT
        assert not result.ok
