"""Tests for the subprocess wrapper behind every docker call."""

from __future__ import annotations

import sys

from tagflow.common.command_runner import CommandRunner


def test_output_and_stdin_are_captured() -> None:
    script = "import sys; print(sys.stdin.read().upper())"

    result = CommandRunner().run([sys.executable, "-c", script], input_text="secret-token")

    assert result.succeeded()
    assert result.stdout.strip() == "SECRET-TOKEN"
    assert result.duration >= 0


def test_non_zero_exit_keeps_stderr() -> None:
    script = "import sys; sys.stderr.write('denied'); sys.exit(3)"

    result = CommandRunner().run([sys.executable, "-c", script])

    assert not result.succeeded()
    assert result.return_code == 3
    assert result.error_output() == "denied"


def test_missing_tool_is_reported_not_raised() -> None:
    result = CommandRunner().run(["tagflow-no-such-binary", "version"])

    assert not result.tool_available
    assert not result.succeeded()
    assert result.error_output() == "Command not found: tagflow-no-such-binary"


def test_timeout_is_reported() -> None:
    result = CommandRunner().run([sys.executable, "-c", "import time; time.sleep(5)"], timeout=0.2)

    assert result.timed_out
    assert result.return_code is None
    assert isinstance(result.exception, Exception)
