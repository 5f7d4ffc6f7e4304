"""Source staging for the vendored llama.cpp tree.

The vendored tree is copied into the scratch output directory before CMake
runs, so the build never writes into the consumer's source checkout.

Staging is idempotent by existence: if the destination already exists it is
used as-is. Its contents are never compared with the source or refreshed,
and a copy interrupted halfway is not rolled back (delete the destination to
force a fresh copy). Two processes staging into the same destination at once
is unsupported. Symbolic links are copied as links, never followed.
"""

import logging
import os
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path

from tqdm import tqdm

from .errors import StagingError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StagedSource:
    """Outcome of a staging call.

    Attributes:
        src: Vendored source directory
        dst: Staging destination
        copied: False when the destination already existed
        files_copied: Number of files copied by this call
    """

    src: Path
    dst: Path
    copied: bool
    files_copied: int


def _raise(error: OSError) -> None:
    raise error


def _collect(src: Path) -> list[tuple[Path, list[str], list[str]]]:
    """List (directory, filenames, symlinked subdirectories) under src.

    Symlinked directories are not descended into, so a link pointing back up
    the tree cannot make the walk loop.
    """
    entries = []
    for dirpath, dirnames, filenames in os.walk(src, followlinks=False, onerror=_raise):
        directory = Path(dirpath)
        linked = sorted(d for d in dirnames if (directory / d).is_symlink())
        entries.append((directory, sorted(filenames), linked))
    return entries


def stage_source(src: Path, dst: Path, show_progress: bool = False) -> StagedSource:
    """Copy the vendored source tree to its staging destination.

    Args:
        src: Vendored source directory
        dst: Destination directory; skipped entirely when it already exists
        show_progress: Show a tqdm progress bar on stderr

    Returns:
        StagedSource describing what happened

    Raises:
        StagingError: If the source is missing or any read/write fails
    """
    if dst.exists():
        logger.debug(f"Staging skipped, destination exists: {dst}")
        return StagedSource(src=src, dst=dst, copied=False, files_copied=0)

    if not src.is_dir():
        raise StagingError(f"Vendored source directory not found: {src}")

    try:
        entries = _collect(src)
        total = sum(len(filenames) + len(linked) for _, filenames, linked in entries)
        dst.mkdir(parents=True)

        copied = 0
        with tqdm(
            total=total,
            desc=f"Staging {src.name}",
            unit="file",
            ncols=80,
            leave=False,
            file=sys.stderr,
            disable=not show_progress,
        ) as pbar:
            for directory, filenames, linked in entries:
                target_dir = dst / directory.relative_to(src)
                target_dir.mkdir(parents=True, exist_ok=True)
                for filename in filenames:
                    # Symlinked files are recreated as links
                    shutil.copy2(directory / filename, target_dir / filename, follow_symlinks=False)
                    copied += 1
                    pbar.update(1)
                for name in linked:
                    os.symlink(os.readlink(directory / name), target_dir / name, target_is_directory=True)
                    copied += 1
                    pbar.update(1)
    except OSError as e:
        raise StagingError(f"Failed to stage {src} -> {dst}: {e}") from e

    logger.info(f"Staged {copied} files from {src} to {dst}")
    return StagedSource(src=src, dst=dst, copied=True, files_copied=copied)
