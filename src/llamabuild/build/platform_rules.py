"""Platform decision table.

All platform knowledge used by the link planner and the artifact deployer
lives here, as a pure function from (target platform, shared mode) to a
PlatformRules value. Nothing in this module touches the filesystem or runs a
process, so every combination can be checked without a toolchain.

Decision table:

    Platform    Shared   Link pattern  Deploy pattern  Runtime dir  Prefix
    ---------   ------   ------------  --------------  -----------  ------
    Windows     any      *.lib         *.dll           bin          -
    macOS       no       *.a           *.dylib         lib          lib
    macOS       yes      *.dylib       *.dylib         lib          lib
    Linux/Unix  no       *.a           *.so            lib          lib
    Linux/Unix  yes      *.so          *.so            lib          lib
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class TargetPlatform(Enum):
    """Operating system family of the build target."""

    WINDOWS = "windows"
    MACOS = "macos"
    LINUX = "linux"
    UNIX = "unix"

    def __str__(self) -> str:
        return self.value


# System frameworks every macOS link needs (Metal backend and Accelerate BLAS)
MACOS_FRAMEWORKS = ("Foundation", "Metal", "MetalKit", "Accelerate")


@dataclass(frozen=True)
class PlatformRules:
    """Platform-specific link and deployment rules.

    Attributes:
        platform: Target platform these rules apply to
        shared_libs: Shared-mode flag these rules were selected for
        link_pattern: Glob for link artifacts in the library directories
        deploy_pattern: Glob for runtime shared libraries to deploy
        runtime_subdir: Output subdirectory holding runtime shared libraries
        lib_prefix: Filename prefix stripped to derive library names (None = never strip)
        frameworks: System frameworks to link
        runtime_libs: Dynamic runtime libraries always linked (C++ runtime)
    """

    platform: TargetPlatform
    shared_libs: bool
    link_pattern: str
    deploy_pattern: str
    runtime_subdir: str
    lib_prefix: Optional[str]
    frameworks: tuple[str, ...]
    runtime_libs: tuple[str, ...]


def platform_for_target(target: str) -> TargetPlatform:
    """Derive the platform family from a target triple.

    Args:
        target: Target triple (e.g., "aarch64-apple-darwin")

    Returns:
        TargetPlatform for the triple; unrecognized systems are "other Unix"
    """
    triple = target.lower()
    if "windows" in triple:
        return TargetPlatform.WINDOWS
    if "apple-darwin" in triple:
        return TargetPlatform.MACOS
    if "linux" in triple:
        return TargetPlatform.LINUX
    return TargetPlatform.UNIX


def rules_for(platform: TargetPlatform, shared_libs: bool) -> PlatformRules:
    """Look up the link and deployment rules for a platform and mode.

    Args:
        platform: Target platform family
        shared_libs: Whether llama.cpp is built as shared libraries

    Returns:
        PlatformRules for the combination
    """
    if platform is TargetPlatform.WINDOWS:
        return PlatformRules(
            platform=platform,
            shared_libs=shared_libs,
            link_pattern="*.lib",
            deploy_pattern="*.dll",
            runtime_subdir="bin",
            lib_prefix=None,
            frameworks=(),
            runtime_libs=(),
        )

    if platform is TargetPlatform.MACOS:
        return PlatformRules(
            platform=platform,
            shared_libs=shared_libs,
            link_pattern="*.dylib" if shared_libs else "*.a",
            deploy_pattern="*.dylib",
            runtime_subdir="lib",
            lib_prefix="lib",
            frameworks=MACOS_FRAMEWORKS,
            runtime_libs=("c++",),
        )

    return PlatformRules(
        platform=platform,
        shared_libs=shared_libs,
        link_pattern="*.so" if shared_libs else "*.a",
        deploy_pattern="*.so",
        runtime_subdir="lib",
        lib_prefix="lib",
        frameworks=(),
        runtime_libs=("stdc++",) if platform is TargetPlatform.LINUX else (),
    )


def derive_lib_name(stem: str, prefix: Optional[str]) -> str:
    """Derive a linkable library name from an artifact file stem.

    Args:
        stem: File name without its extension (e.g., "libllama")
        prefix: Conventional prefix to strip, or None

    Returns:
        Library name ("llama"); the stem unchanged when it lacks the prefix
    """
    if prefix and stem.startswith(prefix) and len(stem) > len(prefix):
        return stem[len(prefix):]
    return stem
