"""Tests for subprocess_utils module."""

import os
import subprocess
from unittest.mock import patch

from llamabuild.subprocess_utils import get_child_env, get_subprocess_creation_flags, safe_run


def test_get_subprocess_creation_flags_windows():
    """Test that Windows returns CREATE_NO_WINDOW flag."""
    with patch("sys.platform", "win32"), patch("subprocess.CREATE_NO_WINDOW", 0x08000000, create=True):
        flags = get_subprocess_creation_flags()
        assert flags == 0x08000000


def test_get_subprocess_creation_flags_linux():
    """Test that Linux returns 0."""
    with patch("sys.platform", "linux"):
        flags = get_subprocess_creation_flags()
        assert flags == 0


@patch("subprocess.run")
def test_safe_run_applies_flags_on_windows(mock_run):
    """Test that safe_run applies flags on Windows."""
    with patch("sys.platform", "win32"), patch("subprocess.CREATE_NO_WINDOW", 0x08000000, create=True):
        safe_run(["cmake", "--version"], capture_output=True)

        mock_run.assert_called_once()
        call_kwargs = mock_run.call_args[1]
        assert call_kwargs["creationflags"] == 0x08000000


@patch("subprocess.run")
def test_safe_run_no_flags_on_linux(mock_run):
    """Test that safe_run doesn't apply flags on Linux."""
    with patch("sys.platform", "linux"):
        safe_run(["cmake", "--version"], capture_output=True)

        mock_run.assert_called_once()
        call_kwargs = mock_run.call_args[1]
        assert "creationflags" not in call_kwargs


@patch("subprocess.run")
def test_safe_run_merges_custom_creationflags(mock_run):
    """Test that custom creationflags are OR'd with defaults."""
    with patch("sys.platform", "win32"), patch("subprocess.CREATE_NO_WINDOW", 0x08000000, create=True):
        custom_flag = 0x00000200
        safe_run(["cmake", "--version"], creationflags=custom_flag)

        call_kwargs = mock_run.call_args[1]
        assert call_kwargs["creationflags"] == custom_flag | 0x08000000


@patch("subprocess.run")
def test_safe_run_defaults_stdin_to_devnull(mock_run):
    safe_run(["cmake", "--version"])
    assert mock_run.call_args[1]["stdin"] == subprocess.DEVNULL


@patch("subprocess.run")
def test_safe_run_keeps_explicit_stdin(mock_run):
    safe_run(["cmake", "--version"], stdin=None)
    assert mock_run.call_args[1]["stdin"] is None


def test_get_child_env_applies_overrides():
    with patch.dict(os.environ, {"LLAMABUILD_TEST_VAR": "parent"}):
        env = get_child_env({"CMAKE_BUILD_PARALLEL_LEVEL": "8"})

        assert env["CMAKE_BUILD_PARALLEL_LEVEL"] == "8"
        assert env["LLAMABUILD_TEST_VAR"] == "parent"


def test_get_child_env_does_not_modify_parent():
    with patch.dict(os.environ, {}, clear=False):
        before = dict(os.environ)
        get_child_env({"LLAMABUILD_ONLY_IN_CHILD": "1"})
        assert dict(os.environ) == before
