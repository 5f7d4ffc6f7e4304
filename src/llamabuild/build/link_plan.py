"""Link Planner - turns built artifacts into linker directives.

After the native build installs llama.cpp into the output directory, the
planner discovers the link artifacts the platform rules select and adds the
system libraries and frameworks llama.cpp needs on the target.

The plan is an ordered, de-duplicated list of LinkDirective values. It is
rendered either as ``cargo:`` build-script directive lines or as plain
linker flags, and can also be handed to a setuptools/cffi extension build
through LinkPlan.extension_kwargs().

Discovery problems (an unreadable directory or entry) and a failed compiler
probe never stop planning; they become WARNING directives and the item is
skipped.
"""

import fnmatch
import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Iterator, Optional

from ..subprocess_utils import safe_run
from .build_context import BuildContext
from .build_profiles import BuildProfile
from .platform_rules import TargetPlatform, derive_lib_name, rules_for

logger = logging.getLogger(__name__)

CARGO = "cargo"
FLAGS = "flags"
STYLES = (CARGO, FLAGS)

_LIBRARIES_MARKER = "libraries: ="


class LinkKind(Enum):
    """How a library is linked."""

    STATIC = "static"
    DYNAMIC = "dylib"


class DirectiveKind(Enum):
    SEARCH = "search"
    LIBRARY = "library"
    FRAMEWORK = "framework"
    RERUN_IF_CHANGED = "rerun-if-changed"
    RERUN_IF_ENV_CHANGED = "rerun-if-env-changed"
    WARNING = "warning"


@dataclass(frozen=True)
class LinkDirective:
    """A single instruction for the consuming build.

    Attributes:
        kind: Directive kind
        value: Path, library name, framework name, variable name or message
        link_kind: STATIC or DYNAMIC, for LIBRARY directives only
    """

    kind: DirectiveKind
    value: str
    link_kind: Optional[LinkKind] = None


@dataclass(frozen=True)
class DiscoveredArtifact:
    """A link artifact found in a library directory."""

    path: Path
    lib_name: str


class LinkPlan:
    """Ordered, de-duplicated sequence of link directives."""

    def __init__(self) -> None:
        self.directives: list[LinkDirective] = []
        self._seen: set[LinkDirective] = set()

    def __iter__(self) -> Iterator[LinkDirective]:
        return iter(self.directives)

    def __len__(self) -> int:
        return len(self.directives)

    def add(self, directive: LinkDirective) -> None:
        """Append a directive unless an identical one is already planned."""
        if directive in self._seen:
            return
        self._seen.add(directive)
        self.directives.append(directive)

    def search(self, path: Path) -> None:
        self.add(LinkDirective(DirectiveKind.SEARCH, str(path)))

    def library(self, name: str, link_kind: LinkKind) -> None:
        self.add(LinkDirective(DirectiveKind.LIBRARY, name, link_kind))

    def framework(self, name: str) -> None:
        self.add(LinkDirective(DirectiveKind.FRAMEWORK, name))

    def rerun_if_changed(self, path: Path) -> None:
        self.add(LinkDirective(DirectiveKind.RERUN_IF_CHANGED, str(path)))

    def rerun_if_env_changed(self, name: str) -> None:
        self.add(LinkDirective(DirectiveKind.RERUN_IF_ENV_CHANGED, name))

    def warning(self, message: str) -> None:
        self.add(LinkDirective(DirectiveKind.WARNING, message))

    def of_kind(self, kind: DirectiveKind) -> list[LinkDirective]:
        return [d for d in self.directives if d.kind is kind]

    def extension_kwargs(self) -> dict[str, list[str]]:
        """Express the plan as setuptools.Extension / cffi set_source keyword arguments.

        Returns:
            Dict with library_dirs, libraries and extra_link_args
        """
        extra_link_args: list[str] = []
        for directive in self.of_kind(DirectiveKind.FRAMEWORK):
            extra_link_args.extend(["-framework", directive.value])
        return {
            "library_dirs": [d.value for d in self.of_kind(DirectiveKind.SEARCH)],
            "libraries": [d.value for d in self.of_kind(DirectiveKind.LIBRARY)],
            "extra_link_args": extra_link_args,
        }


def discover_artifacts(
    directory: Path,
    pattern: str,
    prefix: Optional[str],
    on_warning: Callable[[str], None] = logger.warning,
) -> list[DiscoveredArtifact]:
    """Find files matching a glob pattern in one directory.

    Args:
        directory: Directory to enumerate (not recursive)
        pattern: fnmatch pattern such as "*.a"
        prefix: Library-name prefix to strip, or None
        on_warning: Called with a message for every entry that cannot be read

    Returns:
        Artifacts sorted by file name
    """
    artifacts = []
    try:
        with os.scandir(directory) as entries:
            for entry in entries:
                if not fnmatch.fnmatch(entry.name, pattern):
                    continue
                try:
                    is_file = entry.is_file()
                except OSError as e:
                    on_warning(f"Skipping unreadable entry {entry.path}: {e}")
                    continue
                if is_file:
                    path = Path(entry.path)
                    artifacts.append(DiscoveredArtifact(path=path, lib_name=derive_lib_name(path.stem, prefix)))
    except OSError as e:
        on_warning(f"Couldn't read library directory {directory}: {e}")
    return sorted(artifacts, key=lambda a: a.path.name)


def probe_macos_runtime_dir() -> Optional[Path]:
    """Locate the clang runtime library directory for legacy macOS targets.

    Runs ``clang --print-search-dirs`` and takes the path after
    "libraries: =", appending lib/darwin.

    Returns:
        The directory if the probe succeeds and it exists, else None
    """
    try:
        result = safe_run(["clang", "--print-search-dirs"], capture_output=True, text=True)
    except OSError as e:
        logger.warning(f"clang probe failed: {e}")
        return None
    if result.returncode != 0:
        logger.warning(f"clang probe exited with code {result.returncode}")
        return None

    for line in result.stdout.splitlines():
        if line.startswith(_LIBRARIES_MARKER):
            runtime_dir = Path(line[len(_LIBRARIES_MARKER):].strip()) / "lib" / "darwin"
            if runtime_dir.is_dir():
                return runtime_dir
            logger.warning(f"clang runtime directory does not exist: {runtime_dir}")
            return None

    logger.warning("clang --print-search-dirs reported no libraries path")
    return None


def plan_links(
    ctx: BuildContext,
    output_dir: Path,
    probe: Callable[[], Optional[Path]] = probe_macos_runtime_dir,
) -> LinkPlan:
    """Plan the link directives for a completed native build.

    Args:
        ctx: Resolved build context
        output_dir: Output directory reported by the native build
        probe: Compiler probe used for legacy macOS targets

    Returns:
        LinkPlan; search directives only reference directories that exist
    """
    plan = LinkPlan()
    rules = rules_for(ctx.platform, ctx.shared_libs)
    link_kind = LinkKind.DYNAMIC if ctx.shared_libs else LinkKind.STATIC

    def warn(message: str) -> None:
        logger.warning(message)
        plan.warning(message)

    lib_dirs = [d for d in (ctx.out_dir / "lib", ctx.out_dir / "lib64") if d.is_dir()]
    for directory in lib_dirs:
        plan.search(directory)
    if output_dir.is_dir():
        plan.search(output_dir)

    for directory in lib_dirs:
        logger.debug(f"Linking {rules.link_pattern} from {directory}")
        for artifact in discover_artifacts(directory, rules.link_pattern, rules.lib_prefix, on_warning=warn):
            plan.library(artifact.lib_name, link_kind)

    for framework in rules.frameworks:
        plan.framework(framework)
    for runtime_lib in rules.runtime_libs:
        plan.library(runtime_lib, LinkKind.DYNAMIC)

    if ctx.is_legacy_macos:
        runtime_dir = probe()
        if runtime_dir is not None and runtime_dir.is_dir():
            plan.search(runtime_dir)
            plan.library("clang_rt.osx", LinkKind.STATIC)
        else:
            warn("clang runtime directory not found; clang_rt.osx is not linked")

    if ctx.platform is TargetPlatform.LINUX and ctx.is_gnu_toolchain:
        plan.library("gomp", LinkKind.DYNAMIC)

    if ctx.platform is TargetPlatform.WINDOWS and ctx.profile is BuildProfile.DEBUG:
        plan.library("msvcrtd", LinkKind.DYNAMIC)

    return plan


def _render_cargo(directive: LinkDirective) -> str:
    kind = directive.kind
    if kind is DirectiveKind.SEARCH:
        return f"cargo:rustc-link-search=native={directive.value}"
    if kind is DirectiveKind.LIBRARY:
        assert directive.link_kind is not None
        return f"cargo:rustc-link-lib={directive.link_kind.value}={directive.value}"
    if kind is DirectiveKind.FRAMEWORK:
        return f"cargo:rustc-link-lib=framework={directive.value}"
    return f"cargo:{kind.value}={directive.value}"


def _render_flag(directive: LinkDirective) -> Optional[str]:
    kind = directive.kind
    if kind is DirectiveKind.SEARCH:
        return f"-L{directive.value}"
    if kind is DirectiveKind.LIBRARY:
        if directive.link_kind is LinkKind.STATIC:
            return f"-Wl,-Bstatic -l{directive.value} -Wl,-Bdynamic"
        return f"-l{directive.value}"
    if kind is DirectiveKind.FRAMEWORK:
        return f"-framework {directive.value}"
    # Rerun hints and warnings have no linker-flag form
    return None


def render_directives(plan: LinkPlan, style: str = CARGO) -> list[str]:
    """Render a plan as output lines.

    Args:
        plan: Link plan
        style: "cargo" for build-script directive lines, "flags" for linker flags

    Returns:
        One line per directive (flags style omits directives with no flag form)

    Raises:
        ValueError: If style is unknown
    """
    if style == CARGO:
        return [_render_cargo(d) for d in plan]
    if style == FLAGS:
        return [line for line in (_render_flag(d) for d in plan) if line is not None]
    raise ValueError(f"Unknown directive style '{style}' (expected one of: {', '.join(STYLES)})")
