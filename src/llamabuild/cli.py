"""
Command-line interface for llamabuild.

This module provides the `llamabuild` CLI tool, run by the consuming build
before it compiles anything. Directive lines go to stdout; everything a
human reads goes to stderr.
"""

import argparse
import logging
import os
import sys
import traceback
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

from rich.console import Console
from rich.table import Table

from llamabuild import __version__
from llamabuild.build.build_context import (
    ENV_DEBUG,
    ENV_MANIFEST_DIR,
    ENV_OUT_DIR,
    ENV_PROFILE,
    ENV_TARGET,
    BuildContext,
    resolve_build_context,
)
from llamabuild.build.errors import LlamaBuildError, NativeBuildError
from llamabuild.build.link_plan import CARGO, FLAGS, LinkPlan, render_directives
from llamabuild.build.orchestrator import plan_only, run_bindings, run_build
from llamabuild.output import emit_directive, init_timer, log_detail, log_error, set_debug

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATEFMT = "%H:%M:%S"


@dataclass
class CommonArgs:
    """Build inputs that may override the environment."""

    target: Optional[str] = None
    out_dir: Optional[Path] = None
    profile: Optional[str] = None
    manifest_dir: Optional[Path] = None
    features: list[str] = field(default_factory=list)
    header: Optional[Path] = None
    verbose: bool = False


@dataclass
class BuildArgs:
    """Arguments for the build command."""

    common: CommonArgs
    format: str = CARGO
    progress: bool = False


@dataclass
class BindingsArgs:
    """Arguments for the bindings command."""

    common: CommonArgs
    progress: bool = False


@dataclass
class PlanArgs:
    """Arguments for the plan command."""

    common: CommonArgs
    output_dir: Optional[Path] = None
    format: Optional[str] = None


def setup_logging(verbose: bool) -> None:
    """Send log records to stderr so stdout stays a clean directive stream."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(logging.DEBUG if verbose else logging.INFO)


def merged_environment(args: CommonArgs) -> dict[str, str]:
    """os.environ with the command-line overrides applied (command line wins)."""
    env = dict(os.environ)
    overrides = {
        ENV_TARGET: args.target,
        ENV_OUT_DIR: str(args.out_dir) if args.out_dir else None,
        ENV_PROFILE: args.profile,
        ENV_MANIFEST_DIR: str(args.manifest_dir) if args.manifest_dir else None,
    }
    env.update({name: value for name, value in overrides.items() if value is not None})
    return env


def resolve_context(args: CommonArgs) -> BuildContext:
    env = merged_environment(args)
    set_debug(ENV_DEBUG in env)
    return resolve_build_context(env, features=args.features, header=args.header)


def build_command(args: BuildArgs) -> int:
    """Stage, generate bindings, build, link and deploy.

    Examples:
        llamabuild build                  # Everything from the environment
        llamabuild build --features cuda  # CUDA build (shared libraries)
        llamabuild build --format flags   # Plain linker flags on stdout
    """
    ctx = resolve_context(args.common)
    result = run_build(ctx, emit=emit_directive, style=args.format, show_progress=args.progress)
    log_detail(f"Bindings: {result.bindings.path}")
    if result.deployment.linked:
        log_detail(f"Deployed {len(result.deployment.linked)} shared library links into {ctx.target_dir}")
    return 0


def bindings_command(args: BindingsArgs) -> int:
    """Stage the vendored tree and generate bindings only."""
    ctx = resolve_context(args.common)
    result = run_bindings(ctx, show_progress=args.progress)
    log_detail(f"Bindings: {result.path}")
    return 0


def render_plan_table(plan: LinkPlan) -> Table:
    """Build a Rich Table with one row per planned directive."""
    table = Table(title="Link plan", show_lines=False, expand=False)
    table.add_column("Kind", style="bold", no_wrap=True)
    table.add_column("Value")
    table.add_column("Link", no_wrap=True)
    for directive in plan:
        link = directive.link_kind.value if directive.link_kind else ""
        table.add_row(directive.kind.value, directive.value, link)
    return table


def plan_command(args: PlanArgs, console: Optional[Console] = None) -> int:
    """Show the link plan for an existing output directory without building."""
    ctx = resolve_context(args.common)
    plan = plan_only(ctx, args.output_dir)
    if args.format:
        for line in render_directives(plan, args.format):
            emit_directive(line)
    else:
        (console or Console()).print(render_plan_table(plan))
    return 0


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--target", default=None, help="Target triple (overrides TARGET)")
    parser.add_argument("--out-dir", type=Path, default=None, help="Scratch output directory (overrides OUT_DIR)")
    parser.add_argument("--profile", default=None, choices=["debug", "release"], help="Build profile (overrides PROFILE)")
    parser.add_argument("--manifest-dir", type=Path, default=None, help="Consumer root directory (overrides MANIFEST_DIR)")
    parser.add_argument(
        "--features",
        default="",
        help="Comma-separated features: cuda, dynamic-link (merged with LLAMABUILD_FEATURES)",
    )
    parser.add_argument("--header", type=Path, default=None, help="Root header for binding generation")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug log records")


def _common_args(parsed: argparse.Namespace) -> CommonArgs:
    return CommonArgs(
        target=parsed.target,
        out_dir=parsed.out_dir,
        profile=parsed.profile,
        manifest_dir=parsed.manifest_dir,
        features=[name for name in parsed.features.split(",") if name.strip()],
        header=parsed.header,
        verbose=parsed.verbose,
    )


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="llamabuild",
        description="Build llama.cpp and generate its ctypes bindings",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"llamabuild {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Build command
    build_parser = subparsers.add_parser("build", help="Stage, bind, build, link and deploy llama.cpp")
    _add_common_arguments(build_parser)
    build_parser.add_argument(
        "--format",
        choices=[CARGO, FLAGS],
        default=CARGO,
        help="Directive format on stdout (default: cargo)",
    )
    build_parser.add_argument("--progress", action="store_true", help="Show a progress bar while staging")

    # Bindings command
    bindings_parser = subparsers.add_parser("bindings", help="Stage sources and generate bindings only")
    _add_common_arguments(bindings_parser)
    bindings_parser.add_argument("--progress", action="store_true", help="Show a progress bar while staging")

    # Plan command
    plan_parser = subparsers.add_parser("plan", help="Show the link plan of an existing build")
    _add_common_arguments(plan_parser)
    plan_parser.add_argument("--output-dir", type=Path, default=None, help="Install prefix of the build (default: OUT_DIR)")
    plan_parser.add_argument(
        "--format",
        choices=[CARGO, FLAGS],
        default=None,
        help="Print directive lines instead of a table",
    )

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """llamabuild - build-time orchestrator for llama.cpp.

    Returns:
        Process exit code: 0 on success, 1 on error, 130 when interrupted
    """
    parser = create_parser()
    parsed_args = parser.parse_args(argv)

    # If no command specified, show help
    if not parsed_args.command:
        parser.print_help()
        return 0

    common = _common_args(parsed_args)
    init_timer()
    setup_logging(common.verbose or ENV_DEBUG in os.environ)

    try:
        if parsed_args.command == "build":
            return build_command(BuildArgs(common=common, format=parsed_args.format, progress=parsed_args.progress))
        if parsed_args.command == "bindings":
            return bindings_command(BindingsArgs(common=common, progress=parsed_args.progress))
        return plan_command(PlanArgs(common=common, output_dir=parsed_args.output_dir, format=parsed_args.format))

    except NativeBuildError as e:
        log_error(f"{e} (stage: {e.result.stage}, build dir: {e.result.build_dir})")
        return 1

    except LlamaBuildError as e:
        log_error(str(e))
        return 1

    except KeyboardInterrupt:
        log_error("Build interrupted")
        return 130  # Standard exit code for SIGINT

    except Exception as e:
        log_error(f"Unexpected error: {type(e).__name__}: {e}")
        if common.verbose:
            sys.stderr.write(traceback.format_exc())
        return 1


if __name__ == "__main__":
    sys.exit(main())
