"""Subprocess utilities for build child processes.

This module wraps the subprocess module so every child (CMake, the compiler
probe) is started the same way:

- stdin is redirected to DEVNULL so a child never steals terminal input
- no console window is opened on Windows
- the child environment is a copy of the parent's with explicit overrides
"""

import os
import subprocess
import sys
from typing import Any, Mapping, Optional


def get_subprocess_creation_flags() -> int:
    """Get platform-specific subprocess creation flags.

    Returns:
        - Windows: subprocess.CREATE_NO_WINDOW (prevents console window)
        - Other platforms: 0 (no special flags)
    """
    if sys.platform == "win32":
        return subprocess.CREATE_NO_WINDOW
    return 0


def get_child_env(overrides: Optional[Mapping[str, str]] = None) -> dict[str, str]:
    """Return a copy of os.environ with the given overrides applied.

    Args:
        overrides: Variables to set in the child environment

    Returns:
        New environment dictionary; os.environ itself is never modified
    """
    env = os.environ.copy()
    if overrides:
        env.update(overrides)
    return env


def safe_run(cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess:
    """Execute subprocess.run with platform-specific flags.

    Args:
        cmd: Command and arguments (same as subprocess.run)
        **kwargs: Additional arguments passed to subprocess.run

    Returns:
        CompletedProcess result from subprocess.run

    Note:
        - An explicit 'creationflags' is OR'd with the platform default.
        - An explicit 'stdin' is used as-is; otherwise stdin is DEVNULL.
    """
    default_flags = get_subprocess_creation_flags()

    if "creationflags" in kwargs:
        kwargs["creationflags"] = kwargs["creationflags"] | default_flags
    elif default_flags:
        kwargs["creationflags"] = default_flags

    if "stdin" not in kwargs:
        kwargs["stdin"] = subprocess.DEVNULL

    return subprocess.run(cmd, **kwargs)
