"""Build Context - the resolved, immutable build configuration.

This module defines:
- Feature: compile-time feature toggles selected by the consumer
- BuildContext: every value the components need, resolved once
- resolve_build_context(): the environment resolver

Design:
    The environment is read exactly once, here. Components receive the
    BuildContext by reference and never consult os.environ themselves, so a
    value cannot be re-derived differently halfway through a build.

    Required inputs are checked before anything else happens; a missing or
    malformed one raises ConfigurationError before any file is touched or
    any child process is started.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, Mapping, Optional

import psutil

from .build_profiles import DEFAULT_LIB_PROFILE, BuildProfile, normalize_lib_profile
from .errors import ConfigurationError
from .platform_rules import TargetPlatform, platform_for_target

logger = logging.getLogger(__name__)

# Required inputs, in the order they are reported when missing
ENV_TARGET = "TARGET"
ENV_OUT_DIR = "OUT_DIR"
ENV_PROFILE = "PROFILE"
ENV_MANIFEST_DIR = "MANIFEST_DIR"
REQUIRED_ENV = (ENV_TARGET, ENV_OUT_DIR, ENV_PROFILE, ENV_MANIFEST_DIR)

# Optional inputs
ENV_FEATURES = "LLAMABUILD_FEATURES"
ENV_LIB_PROFILE = "LLAMA_LIB_PROFILE"
ENV_STATIC_CRT = "LLAMA_STATIC_CRT"
ENV_SHARED_LIBS = "LLAMA_BUILD_SHARED_LIBS"
ENV_DEBUG = "BUILD_DEBUG"
ENV_PARALLEL_LEVEL = "CMAKE_BUILD_PARALLEL_LEVEL"
OPTIONAL_ENV = (ENV_FEATURES, ENV_LIB_PROFILE, ENV_STATIC_CRT, ENV_SHARED_LIBS, ENV_DEBUG)

VENDORED_NAME = "llama.cpp"
WRAPPER_HEADER = "wrapper.h"
BINDINGS_FILE = "bindings.py"

_TRUTHY = frozenset({"1", "true", "yes", "on"})
_FALSY = frozenset({"0", "false", "no", "off", ""})


class Feature(Enum):
    """Compile-time feature toggles."""

    CUDA = "cuda"
    DYNAMIC_LINK = "dynamic-link"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class BuildContext:
    """Resolved build configuration shared by every component.

    Attributes:
        target: Target triple (e.g., "x86_64-unknown-linux-gnu")
        out_dir: Scratch output directory owned by this build
        profile: Consumer build profile
        manifest_dir: Consumer root directory holding llama.cpp/ and wrapper.h
        target_dir: Consumer output directory (manifest_dir/target/profile)
        features: Selected compile-time features
        lib_profile: CMake build type for llama.cpp
        static_crt: Link the static MSVC runtime (Windows only)
        shared_libs: Build and link llama.cpp as shared libraries
        debug: Emit [DEBUG] diagnostic lines
        parallelism: Parallel job hint for the CMake build
        header: Root header for binding generation
        parallelism_override: CMAKE_BUILD_PARALLEL_LEVEL already set by the caller, kept as-is
    """

    target: str
    out_dir: Path
    profile: BuildProfile
    manifest_dir: Path
    target_dir: Path
    features: frozenset[Feature]
    lib_profile: str
    static_crt: bool
    shared_libs: bool
    debug: bool
    parallelism: int
    header: Path
    parallelism_override: Optional[str] = field(default=None, compare=False)

    @property
    def platform(self) -> TargetPlatform:
        """Target operating system family derived from the triple."""
        return platform_for_target(self.target)

    @property
    def is_gnu_toolchain(self) -> bool:
        """True for GNU-flavored targets (e.g., *-linux-gnu)."""
        return "gnu" in self.target

    @property
    def is_legacy_macos(self) -> bool:
        """True for Intel macOS targets, which need the clang runtime linked explicitly."""
        return self.platform is TargetPlatform.MACOS and self.target.startswith("x86_64-")

    @property
    def vendor_src(self) -> Path:
        """Vendored source tree shipped with the consumer."""
        return self.manifest_dir / VENDORED_NAME

    @property
    def vendor_dst(self) -> Path:
        """Staged copy of the vendored source tree."""
        return self.out_dir / VENDORED_NAME

    @property
    def bindings_path(self) -> Path:
        """Location of the generated binding module."""
        return self.out_dir / BINDINGS_FILE

    @property
    def include_dirs(self) -> tuple[Path, ...]:
        """Header search directories inside the staged tree."""
        return (self.vendor_dst / "include", self.vendor_dst / "ggml" / "include")

    @property
    def child_env(self) -> dict[str, str]:
        """Environment overlay for the CMake child process."""
        if self.parallelism_override is not None:
            return {ENV_PARALLEL_LEVEL: self.parallelism_override}
        return {ENV_PARALLEL_LEVEL: str(self.parallelism)}

    def has_feature(self, feature: Feature) -> bool:
        return feature in self.features


def detect_parallelism() -> int:
    """Detect how many CPUs this process may use.

    Prefers the CPU affinity mask (respects taskset/cgroup pinning) and falls
    back to the logical CPU count where affinity is unsupported (macOS).

    Returns:
        Number of usable CPUs, at least 1
    """
    try:
        affinity = psutil.Process().cpu_affinity()
    except (AttributeError, NotImplementedError, psutil.Error, OSError):
        affinity = None
    if affinity:
        return len(affinity)
    return psutil.cpu_count(logical=True) or 1


def parse_bool(name: str, value: str) -> bool:
    """Parse a boolean environment value.

    Raises:
        ConfigurationError: If the value is neither truthy nor falsy
    """
    normalized = value.strip().lower()
    if normalized in _TRUTHY:
        return True
    if normalized in _FALSY:
        return False
    raise ConfigurationError(f"{name}={value!r} is not a boolean (use 1/0, true/false, yes/no, on/off)")


def parse_features(names: Iterable[str]) -> frozenset[Feature]:
    """Parse feature names, ignoring blanks.

    Raises:
        ConfigurationError: If a name is not a known feature
    """
    features = set()
    known = {f.value: f for f in Feature}
    for raw in names:
        name = raw.strip().lower()
        if not name:
            continue
        if name not in known:
            raise ConfigurationError(f"Unknown feature '{raw}' (known features: {', '.join(sorted(known))})")
        features.add(known[name])
    return frozenset(features)


def _validate_target(target: str) -> str:
    parts = target.strip().split("-")
    if len(parts) < 2 or not all(parts):
        raise ConfigurationError(f"{ENV_TARGET}={target!r} is not a valid target triple")
    return target.strip()


def resolve_build_context(
    env: Mapping[str, str],
    features: Iterable[str] = (),
    header: Optional[Path] = None,
    parallelism: Optional[int] = None,
) -> BuildContext:
    """Resolve the build context from environment inputs.

    Args:
        env: Environment mapping (usually os.environ merged with CLI overrides)
        features: Feature names selected by the consumer, merged with LLAMABUILD_FEATURES
        header: Root header override; defaults to <manifest>/wrapper.h, then the staged llama.h
        parallelism: Parallel job hint override; detected when omitted

    Returns:
        Frozen BuildContext

    Raises:
        ConfigurationError: If a required input is missing or any input is malformed
    """
    missing = [name for name in REQUIRED_ENV if not env.get(name, "").strip()]
    if missing:
        raise ConfigurationError(f"Missing required build input(s): {', '.join(missing)}")

    target = _validate_target(env[ENV_TARGET])
    try:
        profile = BuildProfile.parse(env[ENV_PROFILE])
    except ValueError as e:
        raise ConfigurationError(f"{ENV_PROFILE}: {e}") from e

    out_dir = Path(env[ENV_OUT_DIR]).expanduser()
    manifest_dir = Path(env[ENV_MANIFEST_DIR]).expanduser()
    target_dir = manifest_dir / "target" / profile.value

    selected = parse_features(list(features) + env.get(ENV_FEATURES, "").split(","))

    lib_profile = normalize_lib_profile(env.get(ENV_LIB_PROFILE) or DEFAULT_LIB_PROFILE)
    static_crt = parse_bool(ENV_STATIC_CRT, env[ENV_STATIC_CRT]) if ENV_STATIC_CRT in env else False

    # Explicit override wins, then the feature selection, then static
    if ENV_SHARED_LIBS in env:
        shared_libs = parse_bool(ENV_SHARED_LIBS, env[ENV_SHARED_LIBS])
    else:
        shared_libs = Feature.CUDA in selected or Feature.DYNAMIC_LINK in selected

    if header is None:
        wrapper = manifest_dir / WRAPPER_HEADER
        header = wrapper if wrapper.is_file() else out_dir / VENDORED_NAME / "include" / "llama.h"

    existing_level = env.get(ENV_PARALLEL_LEVEL, "").strip() or None

    context = BuildContext(
        target=target,
        out_dir=out_dir,
        profile=profile,
        manifest_dir=manifest_dir,
        target_dir=target_dir,
        features=selected,
        lib_profile=lib_profile,
        static_crt=static_crt,
        shared_libs=shared_libs,
        debug=ENV_DEBUG in env,
        parallelism=parallelism if parallelism is not None else detect_parallelism(),
        header=header,
        parallelism_override=existing_level,
    )
    logger.debug(f"Resolved build context: {context}")
    return context
