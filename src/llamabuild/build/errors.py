"""Error taxonomy for the build orchestrator.

Every class here is fatal: the orchestration stops and the CLI exits
non-zero. Recoverable problems (an unreadable directory entry, a failed
compiler probe) are logged as warnings instead and never raise.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .native_build import NativeBuildResult


class LlamaBuildError(Exception):
    """Base class for all fatal orchestration errors."""

    pass


class ConfigurationError(LlamaBuildError):
    """Raised when a required build input is missing or malformed."""

    pass


class StagingError(LlamaBuildError):
    """Raised when copying the vendored source tree fails."""

    pass


class BindingError(LlamaBuildError):
    """Raised when the C headers cannot be parsed or bindings cannot be written."""

    pass


class NativeBuildError(LlamaBuildError):
    """Raised when the CMake configure or build step fails."""

    def __init__(self, result: "NativeBuildResult"):
        super().__init__(result.message)
        self.result = result


class DeploymentError(LlamaBuildError):
    """Raised when a shared library cannot be hard-linked into place."""

    pass
