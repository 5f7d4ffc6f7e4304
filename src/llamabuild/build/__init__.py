"""Build components: context resolution, staging, bindings, CMake, linking."""

from .build_context import BuildContext, Feature, resolve_build_context
from .build_profiles import BuildProfile
from .errors import (
    BindingError,
    ConfigurationError,
    DeploymentError,
    LlamaBuildError,
    NativeBuildError,
    StagingError,
)

__all__ = [
    "BindingError",
    "BuildContext",
    "BuildProfile",
    "ConfigurationError",
    "DeploymentError",
    "Feature",
    "LlamaBuildError",
    "NativeBuildError",
    "StagingError",
    "resolve_build_context",
]
