"""Directory walks that turn a root path into deletion candidates."""

import logging
import os
import stat
from dataclasses import dataclass, field
from pathlib import Path

from .fs import run_blocking
from .logging import log_with_context
from .models import Candidate, CandidateKind, TraversalResult


@dataclass
class DirectoryListing:
    """Classified immediate children of one directory."""

    files: list[Candidate] = field(default_factory=list)
    subdirs: list[Candidate] = field(default_factory=list)
    errors: list[tuple[Path, OSError]] = field(default_factory=list)


def _list_directory(directory: Path) -> DirectoryListing:
    """
    List and classify the immediate children of ``directory``.

    Symlinks are never followed: a link is reported as a file so that only the
    link itself is ever removed. Sockets, FIFOs and device nodes are files too,
    with size 0 so they never draw on the throttle. Errors opening ``directory`` propagate; errors on a single
    entry are collected so the siblings stay eligible.
    """
    listing = DirectoryListing()
    with os.scandir(directory) as entries:
        for entry in entries:
            entry_path = Path(entry.path)
            try:
                st = entry.stat(follow_symlinks=False)
            except OSError as e:
                listing.errors.append((entry_path, e))
                continue

            if stat.S_ISDIR(st.st_mode):
                listing.subdirs.append(Candidate(entry_path, CandidateKind.DIRECTORY, st.st_mtime))
            else:
                size = st.st_size if stat.S_ISREG(st.st_mode) or stat.S_ISLNK(st.st_mode) else 0
                listing.files.append(Candidate(entry_path, CandidateKind.FILE, st.st_mtime, size))
    return listing


async def list_directory(directory: Path, logger: logging.Logger, result: TraversalResult) -> DirectoryListing | None:
    """
    List one directory, folding problems into ``result``.

    Returns None when the directory itself cannot be listed; the caller skips
    that subtree.
    """
    try:
        listing = await run_blocking(_list_directory, directory)
    except OSError as e:
        log_with_context(
            logger,
            "error",
            f"Skipping directory {directory}: {e}",
            {"error_type": type(e).__name__},
        )
        result.errors += 1
        return None

    result.dirs_scanned += 1
    result.files_scanned += len(listing.files)

    for entry_path, error in listing.errors:
        log_with_context(
            logger,
            "error",
            f"Skipping entry {entry_path}: {error}",
            {"error_type": type(error).__name__},
        )
        result.errors += 1

    return listing


async def walk_aged(root: Path, cutoff: float, logger: logging.Logger) -> TraversalResult:
    """
    Collect stale files and every subdirectory under ``root``.

    Uses an explicit stack instead of recursion so deep trees cannot exhaust
    the call stack. Files whose mtime is older than ``cutoff`` are returned in
    visit order; all visited subdirectories are returned for pruning. The root
    itself is never part of ``directories``.

    Args:
        root: Directory to walk
        cutoff: Epoch seconds; files modified before this are selected
        logger: Logger receiving skip lines

    Returns:
        TraversalResult with candidate files, directories and counters
    """
    result = TraversalResult()
    stack = [root]

    while stack:
        directory = stack.pop()
        listing = await list_directory(directory, logger, result)
        if listing is None:
            continue

        for candidate in listing.files:
            if candidate.mtime < cutoff:
                result.files.append(candidate)

        for subdir in listing.subdirs:
            result.directories.append(subdir)
            stack.append(subdir.path)

    return result


async def list_top_level(root: Path, logger: logging.Logger) -> TraversalResult:
    """
    Collect the immediate children of ``root`` for delete-all mode.

    Subdirectories are not expanded: each one is removed later as a single
    recursive unit, so age no longer matters below the top level.
    """
    result = TraversalResult()
    listing = await list_directory(root, logger, result)
    if listing is not None:
        result.files.extend(listing.files)
        result.directories.extend(listing.subdirs)
    return result
