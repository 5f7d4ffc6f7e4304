"""Pytest configuration and fixtures for llamabuild tests.

llamabuild.output keeps module-level streams and a debug flag. Every test
gets fresh in-memory streams so directive lines and log lines can be
asserted on, and so no test leaks debug mode into the next one.
"""

import io
import sys
import warnings
from dataclasses import dataclass

import pytest

from llamabuild import output
from llamabuild.build.build_context import BuildContext, Feature
from llamabuild.build.build_profiles import BuildProfile

# Suppress ResourceWarnings from file cleanup in Python 3.13
if sys.version_info >= (3, 13):
    warnings.filterwarnings("ignore", category=ResourceWarning)


@dataclass
class CapturedOutput:
    log: io.StringIO
    directives: io.StringIO

    def directive_lines(self) -> list[str]:
        return self.directives.getvalue().splitlines()


@pytest.fixture(autouse=True)
def captured_output():
    """Route llamabuild.output to in-memory streams for the duration of a test."""
    captured = CapturedOutput(log=io.StringIO(), directives=io.StringIO())
    output.init_timer(log_stream=captured.log, directive_stream=captured.directives)
    output.set_debug(False)
    output.set_debug_directives(False)
    yield captured
    output.set_debug(False)
    output.set_debug_directives(False)
    output.init_timer(log_stream=sys.stderr, directive_stream=sys.stdout)


@pytest.fixture
def make_context(tmp_path):
    """Factory for BuildContext values rooted in tmp_path."""

    def _make(
        target: str = "x86_64-unknown-linux-gnu",
        profile: BuildProfile = BuildProfile.RELEASE,
        features: frozenset = frozenset(),
        shared_libs: bool = False,
        static_crt: bool = False,
        debug: bool = False,
        lib_profile: str = "Release",
    ) -> BuildContext:
        manifest_dir = tmp_path / "consumer"
        out_dir = tmp_path / "out"
        return BuildContext(
            target=target,
            out_dir=out_dir,
            profile=profile,
            manifest_dir=manifest_dir,
            target_dir=manifest_dir / "target" / profile.value,
            features=frozenset(Feature(f) if isinstance(f, str) else f for f in features),
            lib_profile=lib_profile,
            static_crt=static_crt,
            shared_libs=shared_libs,
            debug=debug,
            parallelism=4,
            header=manifest_dir / "wrapper.h",
        )

    return _make


@pytest.fixture(autouse=True)
def _restore_stdio():  # noqa: PT004
    """Ensure stdout/stderr are always restored after each test."""
    yield

    if sys.stdout.closed:
        sys.stdout = sys.__stdout__
    if sys.stderr.closed:
        sys.stderr = sys.__stderr__
