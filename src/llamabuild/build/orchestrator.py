"""Build orchestrator for llama.cpp.

This module coordinates the complete build process:

    [1/6] Report the resolved build environment
    [2/6] Stage the vendored llama.cpp tree into OUT_DIR
    [3/6] Generate ctypes bindings from the staged headers
    [4/6] Configure, build and install llama.cpp with CMake
    [5/6] Plan and emit link directives
    [6/6] Deploy shared libraries (shared mode only)

Phases run strictly in order on the calling thread. Any fatal error stops
the run; nothing already written is rolled back.
"""

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from .. import __version__
from ..output import emit_directive, log_debug, log_detail, log_header, set_debug_directives, TimedLogger
from .binding_generator import BindingResult, generate_bindings
from .build_context import OPTIONAL_ENV, BuildContext
from .build_profiles import format_profile_banner
from .deployer import DeploymentReport, deploy_shared_libraries
from .errors import NativeBuildError
from .link_plan import CARGO, LinkPlan, plan_links, render_directives
from .native_build import NativeBuildResult, build_native
from .source_stager import StagedSource, stage_source

logger = logging.getLogger(__name__)

TOTAL_PHASES = 6


@dataclass
class OrchestrationResult:
    """Everything a completed run produced."""

    staged: StagedSource
    bindings: BindingResult
    native: NativeBuildResult
    plan: LinkPlan
    deployment: DeploymentReport
    elapsed: float


def describe_context(ctx: BuildContext) -> None:
    """Log the resolved build environment."""
    log_detail(format_profile_banner(ctx.profile, ctx.lib_profile, ctx.shared_libs))
    log_debug(f"Target: {ctx.target}")
    log_debug(f"Output Directory: {ctx.out_dir}")
    log_debug(f"Profile: {ctx.profile}")
    log_debug(f"Target Directory: {ctx.target_dir}")
    log_debug(f"Manifest Directory: {ctx.manifest_dir}")
    log_debug(f"Llama Cpp Src: {ctx.vendor_src}")
    log_debug(f"Llama Cpp Dst: {ctx.vendor_dst}")
    log_debug(f"Llama Lib Profile: {ctx.lib_profile}")
    log_debug(f"Llama Static CRT: {ctx.static_crt}")
    log_debug(f"Features: {', '.join(sorted(str(f) for f in ctx.features)) or 'none'}")
    log_debug(f"Parallelism: {ctx.child_env}")


def _stage(ctx: BuildContext, show_progress: bool) -> StagedSource:
    with TimedLogger("Staging llama.cpp sources", phase=(2, TOTAL_PHASES)) as timed:
        staged = stage_source(ctx.vendor_src, ctx.vendor_dst, show_progress=show_progress)
        if staged.copied:
            timed.detail(f"Copied {staged.files_copied} files to {staged.dst}")
        else:
            timed.detail(f"Using existing staged tree: {staged.dst}")
    return staged


def _bindings(ctx: BuildContext) -> BindingResult:
    with TimedLogger("Generating bindings", phase=(3, TOTAL_PHASES)) as timed:
        result = generate_bindings(ctx.header, ctx.include_dirs, ctx.bindings_path)
        timed.detail(f"{result.function_count} functions, {result.type_count} types -> {result.path}")
    log_debug("Bindings Generated")
    return result


def run_bindings(ctx: BuildContext, show_progress: bool = False) -> BindingResult:
    """Stage the vendored tree and generate bindings, without building.

    Raises:
        StagingError: If staging fails
        BindingError: If the headers cannot be parsed or the module written
    """
    _stage(ctx, show_progress)
    return _bindings(ctx)


def add_rerun_directives(plan: LinkPlan, headers: tuple[Path, ...]) -> None:
    """Ask the consuming build to re-run when a header or an optional input changes."""
    for header in headers:
        plan.rerun_if_changed(header)
    for name in OPTIONAL_ENV:
        plan.rerun_if_env_changed(name)


def plan_only(ctx: BuildContext, output_dir: Optional[Path] = None) -> LinkPlan:
    """Plan links against an existing output directory without building.

    Args:
        ctx: Resolved build context
        output_dir: Install prefix of a previous build (defaults to OUT_DIR)
    """
    plan = plan_links(ctx, output_dir or ctx.out_dir)
    if not plan:
        logger.warning(f"Nothing to link in {output_dir or ctx.out_dir}")
    return plan


def run_build(
    ctx: BuildContext,
    emit: Callable[[str], None] = emit_directive,
    style: str = CARGO,
    show_progress: bool = False,
) -> OrchestrationResult:
    """Run the complete build.

    Args:
        ctx: Resolved build context
        emit: Receives every rendered directive line
        style: Directive style ("cargo" or "flags")
        show_progress: Show a progress bar while staging

    Returns:
        OrchestrationResult describing every phase

    Raises:
        StagingError: If staging fails
        BindingError: If binding generation fails
        NativeBuildError: If CMake is missing or fails
        DeploymentError: If a shared library cannot be deployed
    """
    start_time = time.time()
    set_debug_directives(style == CARGO)
    log_header("llamabuild", __version__)

    with TimedLogger("Resolving build environment", phase=(1, TOTAL_PHASES)):
        describe_context(ctx)

    staged = _stage(ctx, show_progress)
    bindings = _bindings(ctx)

    with TimedLogger("Building llama.cpp", phase=(4, TOTAL_PHASES)) as timed:
        native = build_native(ctx)
        if not native.success:
            raise NativeBuildError(native)
        timed.detail(f"Installed into {native.output_dir}")
    assert native.output_dir is not None

    with TimedLogger("Planning link directives", phase=(5, TOTAL_PHASES)) as timed:
        plan = plan_links(ctx, native.output_dir)
        add_rerun_directives(plan, bindings.headers)
        lines = render_directives(plan, style)
        for line in lines:
            log_debug(f"LINK {line}")
            emit(line)
        timed.detail(f"Emitted {len(lines)} directives")

    with TimedLogger("Deploying shared libraries", phase=(6, TOTAL_PHASES)) as timed:
        deployment = deploy_shared_libraries(ctx, native.output_dir)
        if not ctx.shared_libs:
            timed.detail("Static build, nothing to deploy")

    elapsed = time.time() - start_time
    logger.info(f"Build complete in {elapsed:.2f}s")
    return OrchestrationResult(
        staged=staged,
        bindings=bindings,
        native=native,
        plan=plan,
        deployment=deployment,
        elapsed=elapsed,
    )
