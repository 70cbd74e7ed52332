#!/usr/bin/env python3
"""Tests for common.py - subprocess utilities.

Tests verify:
1. run_command execution and error handling
2. stream_command line echo and combined output
3. command_available probing
"""

import os
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from common import command_available, run_command, stream_command


class TestRunCommand:
    """Test run_command utility."""

    def test_returns_success_tuple(self):
        """Should return (returncode, stdout, stderr) on success."""
        rc, stdout, stderr = run_command(['echo', 'hello'])
        assert rc == 0
        assert 'hello' in stdout
        assert stderr == ''

    def test_returns_failure_tuple(self):
        """Should return non-zero returncode on failure."""
        rc, stdout, stderr = run_command(['false'])
        assert rc != 0

    def test_captures_stderr(self):
        """Should capture stderr."""
        rc, stdout, stderr = run_command(['sh', '-c', 'echo error >&2'])
        assert 'error' in stderr

    def test_respects_cwd(self, tmp_path):
        """Should run command in specified directory."""
        (tmp_path / 'marker.txt').write_text('found')
        rc, stdout, stderr = run_command(['cat', 'marker.txt'], cwd=tmp_path)
        assert rc == 0
        assert 'found' in stdout

    def test_timeout_returns_error(self):
        """Should return error on timeout."""
        rc, stdout, stderr = run_command(['sleep', '10'], timeout=1)
        assert rc == -1
        assert 'timed out' in stderr.lower()

    def test_missing_binary_returns_error(self):
        """Should return -1 instead of raising when the binary is absent."""
        rc, stdout, stderr = run_command(['oplat-no-such-binary'])
        assert rc == -1
        assert stderr

    def test_passes_env_vars(self):
        """Should pass custom environment variables."""
        custom_env = os.environ.copy()
        custom_env['TEST_VAR'] = 'test_value'
        rc, stdout, stderr = run_command(['sh', '-c', 'echo $TEST_VAR'], env=custom_env)
        assert rc == 0
        assert 'test_value' in stdout


class TestStreamCommand:
    """Test stream_command utility."""

    def test_emits_each_line(self):
        """Should hand every output line to on_line."""
        seen = []
        rc, output = stream_command(['sh', '-c', 'echo one; echo two'], on_line=seen.append)
        assert rc == 0
        assert seen == ['one', 'two']
        assert output == 'one\ntwo'

    def test_merges_stderr(self):
        """Should include stderr in the combined output."""
        rc, output = stream_command(['sh', '-c', 'echo out; echo err >&2'], on_line=lambda line: None)
        assert 'out' in output
        assert 'err' in output

    def test_returns_exit_code(self):
        """Should return the process exit code."""
        rc, output = stream_command(['sh', '-c', 'exit 3'], on_line=lambda line: None)
        assert rc == 3

    def test_echoes_to_stdout_by_default(self, capsys):
        """Should print lines when no callback is given."""
        stream_command(['echo', 'visible'])
        assert 'visible' in capsys.readouterr().out

    def test_missing_binary_returns_error(self):
        """Should return -1 when the command cannot start."""
        rc, output = stream_command(['oplat-no-such-binary'])
        assert rc == -1


class TestCommandAvailable:
    """Test command_available."""

    def test_true_on_zero_exit(self):
        assert command_available(['true']) is True

    def test_false_on_failure(self):
        assert command_available(['false']) is False

    def test_false_when_missing(self):
        assert command_available(['oplat-no-such-binary']) is False
