"""Tests for the two-channel output"""
import io

import pytest

from git_worktree_keeper.exceptions import ProtocolViolation
from git_worktree_keeper.models.directive import ChangeDirectory, ExecuteCommand
from git_worktree_keeper.output import OutputChannel, resolve_color


class FakeTTY(io.StringIO):
    def isatty(self):
        return True


class TestResolveColor:
    """Test color decisions from the environment."""

    def test_no_color_wins(self):
        """NO_COLOR disables color even when forced."""
        assert resolve_color({"NO_COLOR": "1", "CLICOLOR_FORCE": "1"}, FakeTTY()) is False

    def test_force_color(self):
        """CLICOLOR_FORCE enables color on a pipe."""
        assert resolve_color({"CLICOLOR_FORCE": "1"}, io.StringIO()) is True

    def test_force_color_zero(self):
        """CLICOLOR_FORCE=0 does not force."""
        assert resolve_color({"CLICOLOR_FORCE": "0"}, io.StringIO()) is False

    def test_follows_tty(self):
        """Without variables, color follows the stream."""
        assert resolve_color({}, FakeTTY()) is True
        assert resolve_color({}, io.StringIO()) is False

    def test_empty_no_color_ignored(self):
        """An empty NO_COLOR is treated as unset."""
        assert resolve_color({"NO_COLOR": ""}, FakeTTY()) is True


class TestInternalMode:
    """Test strict two-channel mode used under the shell wrapper."""

    def make_channel(self):
        stdout, stderr = io.StringIO(), io.StringIO()
        return OutputChannel(internal=True, stdout=stdout, stderr=stderr, color=False), stdout, stderr

    def test_messages_go_to_stderr(self):
        """Human messages never touch stdout."""
        channel, stdout, stderr = self.make_channel()
        channel.progress("working")
        channel.success("done")
        channel.warning("careful")
        channel.error("failed")
        channel.hint("try this")
        channel.detail("line one\nline two")
        channel.plain('{"a": 1}')
        assert stdout.getvalue() == ""
        assert "done" in stderr.getvalue()
        assert "line two" in stderr.getvalue()

    def test_directives_go_to_stdout(self):
        """Directives are the only stdout lines."""
        channel, stdout, stderr = self.make_channel()
        assert channel.directive(ChangeDirectory("/tmp/wt")) is True
        assert channel.directive(ExecuteCommand(("make", "test"))) is True
        assert stdout.getvalue() == "__WORKTREE_KEEPER_CD__/tmp/wt\n__WORKTREE_KEEPER_EXEC__make test\n"
        assert stderr.getvalue() == ""

    def test_multiline_directive_rejected(self):
        """Nothing is written for a directive that cannot be one line."""
        channel, stdout, _ = self.make_channel()
        with pytest.raises(ProtocolViolation):
            channel.directive(ChangeDirectory("/tmp/a\nb"))
        assert stdout.getvalue() == ""


class TestDirectMode:
    """Test output without the shell wrapper."""

    def test_everything_on_stdout(self):
        """Messages go to stdout and stderr stays empty."""
        stdout, stderr = io.StringIO(), io.StringIO()
        channel = OutputChannel(stdout=stdout, stderr=stderr, color=False)
        channel.info("hello")
        assert "hello" in stdout.getvalue()
        assert stderr.getvalue() == ""

    def test_cd_becomes_hint(self):
        """Without the wrapper a cd is shown as a hint."""
        stdout = io.StringIO()
        channel = OutputChannel(stdout=stdout, color=False)
        assert channel.directive(ChangeDirectory("/tmp/my wt")) is False
        assert "__WORKTREE_KEEPER_CD__" not in stdout.getvalue()
        assert "cd '/tmp/my wt'" in stdout.getvalue()

    def test_exec_left_to_caller(self):
        """Without the wrapper an exec directive is not written."""
        stdout = io.StringIO()
        channel = OutputChannel(stdout=stdout, color=False)
        assert channel.directive(ExecuteCommand(("ls",))) is False
        assert stdout.getvalue() == ""

    def test_no_ansi_without_color(self):
        """Uncolored output has no escape sequences."""
        stdout = io.StringIO()
        OutputChannel(stdout=stdout, color=False).error("bad")
        assert "\x1b[" not in stdout.getvalue()

    def test_ansi_with_color(self, monkeypatch):
        """Colored output is styled."""
        monkeypatch.setenv("TERM", "xterm-256color")
        stdout = io.StringIO()
        OutputChannel(stdout=stdout, color=True).error("bad")
        assert "\x1b[" in stdout.getvalue()
