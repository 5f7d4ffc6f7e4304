"""Native Build Driver - configures, builds and installs llama.cpp with CMake.

The staged llama.cpp tree is built out of source in OUT_DIR/build and
installed into OUT_DIR, which becomes the directory the link planner
searches. Configuration runs when the build directory has no CMakeCache.txt
or when one of the cache definitions llamabuild passes differs from the
cached value (a switch to shared libraries, another build type). Otherwise
runs go straight to ``cmake --build``, which re-checks CMake's own inputs.

Failures are reported as a NativeBuildResult rather than raised, so the
caller decides how fatal they are. The orchestrator turns a failed result
into NativeBuildError.
"""

import logging
import subprocess
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..output import log_debug, log_detail
from ..subprocess_utils import get_child_env, safe_run
from .build_context import BuildContext, Feature
from .platform_rules import TargetPlatform

logger = logging.getLogger(__name__)

CMAKE = "cmake"
BUILD_SUBDIR = "build"
CMAKE_CACHE = "CMakeCache.txt"

# Parts of the llama.cpp tree that are never built
_DISABLED_TARGETS = ("LLAMA_BUILD_TESTS", "LLAMA_BUILD_EXAMPLES", "LLAMA_BUILD_TOOLS", "LLAMA_BUILD_SERVER")

_MSVC_STATIC_RUNTIME = "MultiThreaded$<$<CONFIG:Debug>:Debug>"
_MSVC_DLL_RUNTIME = "MultiThreaded$<$<CONFIG:Debug>:Debug>DLL"


@dataclass
class NativeBuildResult:
    """Result of a native build.

    Attributes:
        success: True when configure (if needed) and build/install succeeded
        output_dir: Install prefix holding lib/ and bin/ (None on failure)
        build_dir: CMake binary directory
        stage: Step that ran last: "configure" or "build"
        returncode: Exit status of the last CMake invocation (None if it never ran)
        message: Human-readable outcome
        build_time: Seconds spent in CMake
    """

    success: bool
    output_dir: Optional[Path]
    build_dir: Path
    stage: str
    returncode: Optional[int]
    message: str
    build_time: float = 0.0


def cmake_cache_vars(ctx: BuildContext) -> dict[str, str]:
    """CMake cache definitions for a build context, in command-line order."""
    cache_vars = {
        "CMAKE_BUILD_TYPE": ctx.lib_profile,
        "CMAKE_INSTALL_PREFIX": str(ctx.out_dir),
        "CMAKE_INSTALL_LIBDIR": "lib",
    }
    for name in _DISABLED_TARGETS:
        cache_vars[name] = "OFF"
    cache_vars["BUILD_SHARED_LIBS"] = "ON" if ctx.shared_libs else "OFF"
    cache_vars["GGML_CUDA"] = "ON" if ctx.has_feature(Feature.CUDA) else "OFF"
    if ctx.platform is TargetPlatform.WINDOWS:
        cache_vars["CMAKE_MSVC_RUNTIME_LIBRARY"] = _MSVC_STATIC_RUNTIME if ctx.static_crt else _MSVC_DLL_RUNTIME
    if ctx.debug:
        cache_vars["CMAKE_VERBOSE_MAKEFILE"] = "ON"
    return cache_vars


def cmake_cache_args(cache_vars: dict[str, str]) -> list[str]:
    return [f"-D{key}={value}" for key, value in cache_vars.items()]


def configure_command(ctx: BuildContext, build_dir: Path) -> list[str]:
    return [CMAKE, "-S", str(ctx.vendor_dst), "-B", str(build_dir), *cmake_cache_args(cmake_cache_vars(ctx))]


def build_command(ctx: BuildContext, build_dir: Path) -> list[str]:
    return [CMAKE, "--build", str(build_dir), "--target", "install", "--config", ctx.lib_profile]


def read_cmake_cache(build_dir: Path) -> dict[str, str]:
    """Read the entries of an existing CMakeCache.txt.

    Lines look like ``NAME:TYPE=VALUE``; comments and blank lines are skipped.

    Returns:
        Entry values by name (empty if the cache is missing or unreadable)
    """
    entries: dict[str, str] = {}
    try:
        text = (build_dir / CMAKE_CACHE).read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return entries
    except OSError as e:
        logger.warning(f"Couldn't read {build_dir / CMAKE_CACHE}: {e}")
        return entries
    for line in text.splitlines():
        if not line or line.startswith(("#", "//")) or "=" not in line:
            continue
        key, value = line.split("=", 1)
        entries[key.split(":", 1)[0]] = value
    return entries


def stale_cache_vars(cached: dict[str, str], wanted: dict[str, str]) -> list[str]:
    """Names whose cached value differs from the wanted one (paths compare with forward slashes)."""
    stale = []
    for name, value in wanted.items():
        current = cached.get(name)
        if current is None or current.replace("\\", "/") != value.replace("\\", "/"):
            stale.append(name)
    return stale


def needs_configure(build_dir: Path, cache_vars: Optional[dict[str, str]] = None) -> bool:
    """True when the build directory was never configured, or its cache disagrees with cache_vars."""
    if not (build_dir / CMAKE_CACHE).exists():
        return True
    if cache_vars is None:
        return False
    stale = stale_cache_vars(read_cmake_cache(build_dir), cache_vars)
    if stale:
        log_detail(f"Reconfiguring, changed cache entries: {', '.join(stale)}")
    return bool(stale)


def _run_cmake(cmd: list[str], env: dict[str, str]) -> subprocess.CompletedProcess:
    log_debug(" ".join(cmd))
    # CMake output goes to stderr; stdout carries only directives
    return safe_run(cmd, env=env, stdout=sys.stderr, stderr=sys.stderr)


def build_native(ctx: BuildContext) -> NativeBuildResult:
    """Configure (when needed), build and install the staged llama.cpp tree.

    Args:
        ctx: Resolved build context

    Returns:
        NativeBuildResult; success is False if CMake is missing or exits non-zero
    """
    build_dir = ctx.out_dir / BUILD_SUBDIR
    env = get_child_env(ctx.child_env)
    start_time = time.time()

    steps = []
    if needs_configure(build_dir, cmake_cache_vars(ctx)):
        steps.append(("configure", configure_command(ctx, build_dir)))
    else:
        log_detail(f"Reusing configured build directory: {build_dir}")
    steps.append(("build", build_command(ctx, build_dir)))

    for stage, cmd in steps:
        logger.info(f"Running CMake {stage} ({ctx.lib_profile})")
        try:
            result = _run_cmake(cmd, env)
        except FileNotFoundError:
            return NativeBuildResult(
                success=False,
                output_dir=None,
                build_dir=build_dir,
                stage=stage,
                returncode=None,
                message=f"'{CMAKE}' executable not found on PATH",
                build_time=time.time() - start_time,
            )
        if result.returncode != 0:
            return NativeBuildResult(
                success=False,
                output_dir=None,
                build_dir=build_dir,
                stage=stage,
                returncode=result.returncode,
                message=f"CMake {stage} failed with exit code {result.returncode}",
                build_time=time.time() - start_time,
            )

    build_time = time.time() - start_time
    logger.info(f"Native build finished in {build_time:.2f}s")
    return NativeBuildResult(
        success=True,
        output_dir=ctx.out_dir,
        build_dir=build_dir,
        stage="build",
        returncode=0,
        message="Native build successful",
        build_time=build_time,
    )
