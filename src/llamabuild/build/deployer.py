"""Artifact Deployer - places runtime shared libraries next to the consumer's outputs.

In shared mode the consumer's executables need llama.cpp's shared libraries
at run time. Each one is hard-linked from the install tree into:

    <target_dir>/            - next to the consumer's binaries
    <target_dir>/deps/       - next to test binaries
    <target_dir>/examples/   - only if that directory already exists

A destination that already holds a file of the same name is left alone, so
re-running a build never overwrites anything. A hard-link failure is fatal.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from .build_context import BuildContext
from .errors import DeploymentError
from .link_plan import discover_artifacts
from .platform_rules import rules_for

logger = logging.getLogger(__name__)


@dataclass
class DeploymentReport:
    """Destinations created and destinations skipped because they already existed."""

    linked: list[Path] = field(default_factory=list)
    skipped: list[Path] = field(default_factory=list)


def deployment_dirs(target_dir: Path) -> list[Path]:
    """Directories receiving shared libraries; creates target_dir and deps as needed.

    Raises:
        DeploymentError: If a destination directory cannot be created
    """
    dirs = [target_dir, target_dir / "deps"]
    try:
        for directory in dirs:
            directory.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise DeploymentError(f"Couldn't create deployment directory: {e}") from e
    examples = target_dir / "examples"
    if examples.is_dir():
        dirs.append(examples)
    return dirs


def deploy_shared_libraries(ctx: BuildContext, output_dir: Path) -> DeploymentReport:
    """Hard-link runtime shared libraries into the consumer's output directories.

    Args:
        ctx: Resolved build context
        output_dir: Output directory reported by the native build

    Returns:
        DeploymentReport (empty when not in shared mode)

    Raises:
        DeploymentError: If a hard link cannot be created
    """
    report = DeploymentReport()
    if not ctx.shared_libs:
        return report

    rules = rules_for(ctx.platform, ctx.shared_libs)
    runtime_dir = output_dir / rules.runtime_subdir
    libraries = discover_artifacts(runtime_dir, rules.deploy_pattern, rules.lib_prefix)
    if not libraries:
        logger.debug(f"No {rules.deploy_pattern} files to deploy in {runtime_dir}")
        return report

    destinations = deployment_dirs(ctx.target_dir)
    for library in libraries:
        for directory in destinations:
            dst = directory / library.path.name
            if dst.exists():
                logger.debug(f"Already deployed: {dst}")
                report.skipped.append(dst)
                continue
            try:
                os.link(library.path, dst)
            except OSError as e:
                raise DeploymentError(f"Failed to hard link {library.path} -> {dst}: {e}") from e
            logger.debug(f"Hard linked {library.path} -> {dst}")
            report.linked.append(dst)

    logger.info(f"Deployed {len(report.linked)} shared library links ({len(report.skipped)} already present)")
    return report
