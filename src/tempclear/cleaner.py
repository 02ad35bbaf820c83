"""Async cleanup engine: parallel, throttled, retried deletion of stale entries."""

import asyncio
import logging
import shutil
import time
from pathlib import Path
from typing import Awaitable, Callable, Iterable, TypeVar

import aiofiles.os
import psutil

from . import __version__
from .autodetect import auto_detect_parallelism
from .fs import async_scandir, file_size_safe, is_empty_directory, run_blocking
from .logging import VERBOSE, log_with_context, setup_logging
from .models import Candidate, CleanupRequest, DeletionOutcome, TraversalResult
from .retry import delete_with_retry
from .throttle import TokenBucket
from .traversal import list_top_level, walk_aged

T = TypeVar("T")

# Never clean these: they hold device nodes, virtual filesystems and the OS itself
DANGEROUS_PATHS = {
    "/proc",
    "/sys",
    "/dev",
    "/run",
    "/var/run",
    "/boot",
    "/bin",
    "/sbin",
    "/lib",
    "/lib64",
    "/usr/bin",
    "/usr/sbin",
    "/usr/lib",
    "/etc",
}

_FILE_OUTCOME_STATS = {
    DeletionOutcome.DELETED: "files_deleted",
    DeletionOutcome.SKIPPED_DRY_RUN: "files_would_delete",
    DeletionOutcome.FAILED_TRANSIENT: "files_failed",
    DeletionOutcome.FAILED_FATAL: "files_failed",
}

_DIR_OUTCOME_STATS = {
    DeletionOutcome.DELETED: "dirs_deleted",
    DeletionOutcome.SKIPPED_DRY_RUN: "dirs_would_delete",
    DeletionOutcome.FAILED_TRANSIENT: "dirs_failed",
    DeletionOutcome.FAILED_FATAL: "dirs_failed",
}


def get_memory_usage_mb() -> float:
    """Get current memory usage in MB."""
    return psutil.Process().memory_info().rss / 1024 / 1024


def check_root_path(root_path: Path) -> Path:
    """
    Return ``root_path`` as an absolute path, refusing system directories.

    Raises:
        ValueError: If the path is ``/`` or lies inside a system directory
    """
    if not root_path.is_absolute():
        root_path = root_path.resolve()

    root_str = str(root_path)
    if root_str == root_path.anchor:
        raise ValueError(f"Refusing to clean filesystem root: {root_path}")

    for dangerous in DANGEROUS_PATHS:
        if root_str == dangerous or root_str.startswith(dangerous + "/"):
            raise ValueError(
                f"Refusing to clean system directory: {root_path}. "
                f"This path is inside '{dangerous}' which contains critical system files."
            )
    return root_path


async def ensure_root_exists(root_path: Path, logger: logging.Logger) -> None:
    """Raise FileNotFoundError, after logging it, unless ``root_path`` is a directory."""
    if not await aiofiles.os.path.isdir(root_path):
        error_msg = f"Root path does not exist: {root_path}"
        log_with_context(logger, "error", error_msg, {"root_path": str(root_path)})
        raise FileNotFoundError(error_msg)


class TempCleaner:
    """
    Deletes stale entries beneath a root directory.

    Two modes are supported:
    - Age-filtered: walk the whole tree, delete files older than the cutoff,
      then prune empty stale directories deepest first
    - Delete-all: remove every immediate child of the root, subdirectories as
      whole trees with a per-file fallback when the recursive delete fails

    Per-item problems are logged and counted, never raised.
    """

    def __init__(
        self,
        request: CleanupRequest,
        logger: logging.Logger | None = None,
        rate_limiter: TokenBucket | None = None,
    ):
        """
        Initialize the cleaner.

        Args:
            request: What to clean and how
            logger: Logger sink for every notification (a default one is created if omitted)
            rate_limiter: Shared token bucket; built from request.throttle_bytes when omitted

        Raises:
            ValueError: If the root is a protected system directory
        """
        self.request = request
        self.root_path = check_root_path(request.root_path)
        self.dry_run = request.dry_run
        self.parallelism = request.parallelism
        self.cutoff_time = request.cutoff

        if rate_limiter is None and request.throttle_bytes:
            rate_limiter = TokenBucket(request.throttle_bytes)
        self.rate_limiter = rate_limiter

        self.logger = logger or setup_logging("tempclear")

        # Statistics
        self.stats = {
            "files_scanned": 0,
            "dirs_scanned": 0,
            "files_to_delete": 0,
            "files_deleted": 0,
            "files_would_delete": 0,
            "files_failed": 0,
            "dirs_deleted": 0,
            "dirs_would_delete": 0,
            "dirs_failed": 0,
            "bytes_freed": 0,
            "errors": 0,
        }
        self.stats_lock = asyncio.Lock()

    async def update_stats(self, **kwargs) -> None:
        """Lock-protected update of statistics."""
        async with self.stats_lock:
            for key, value in kwargs.items():
                if key in self.stats:
                    self.stats[key] += value

    async def _absorb_traversal(self, result: TraversalResult) -> None:
        await self.update_stats(
            files_scanned=result.files_scanned,
            dirs_scanned=result.dirs_scanned,
            files_to_delete=len(result.files),
            errors=result.errors,
        )

    async def _run_pool(self, units: Iterable[T], handler: Callable[[T], Awaitable[object]]) -> None:
        """
        Run ``handler`` over every unit of work.

        With parallelism 1 units run strictly in order. Otherwise a fixed pool
        of worker tasks drains a shared queue, so completion order is arbitrary.
        Handlers recover their own per-item errors; anything else escaping a
        worker is re-raised once every worker has finished.
        """
        units = list(units)
        if not units:
            return

        if self.parallelism == 1:
            for unit in units:
                await handler(unit)
            return

        queue: asyncio.Queue[T] = asyncio.Queue()
        for unit in units:
            queue.put_nowait(unit)

        async def worker() -> None:
            while True:
                try:
                    unit = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                await handler(unit)

        workers = [asyncio.create_task(worker()) for _ in range(min(self.parallelism, len(units)))]
        results = await asyncio.gather(*workers, return_exceptions=True)

        failures = [r for r in results if isinstance(r, BaseException)]
        for failure in failures:
            log_with_context(
                self.logger,
                "error",
                "Unexpected exception in deletion worker",
                {"error": str(failure), "error_type": type(failure).__name__},
            )
        if failures:
            raise failures[0]

    async def process_file(self, candidate: Candidate) -> DeletionOutcome:
        """
        Delete one file: size lookup, throttle, then delete with retry.

        Args:
            candidate: File selected by the traversal

        Returns:
            The outcome, also folded into the statistics
        """
        if self.dry_run:
            log_with_context(self.logger, "dry", f"Would delete file: {candidate.path}")
            await self.update_stats(files_would_delete=1)
            return DeletionOutcome.SKIPPED_DRY_RUN

        size = await file_size_safe(candidate.path)
        if self.rate_limiter is not None and size > 0:
            await self.rate_limiter.acquire(size)

        outcome = await delete_with_retry(candidate.path, self.logger)
        if outcome.succeeded:
            self.logger.log(VERBOSE, f"Deleted file: {candidate.path}")
            await self.update_stats(files_deleted=1, bytes_freed=size)
        else:
            await self.update_stats(**{_FILE_OUTCOME_STATS[outcome]: 1})
        return outcome

    async def _remove_directory(self, directory: Path) -> DeletionOutcome:
        """Remove one directory that is expected to be empty."""
        try:
            await aiofiles.os.rmdir(directory)
        except FileNotFoundError:
            self.logger.log(VERBOSE, f"Directory already deleted: {directory}")
            return DeletionOutcome.DELETED
        except OSError as e:
            log_with_context(
                self.logger,
                "error",
                f"Failed to delete directory {directory}: {e}",
                {"error_type": type(e).__name__},
            )
            return DeletionOutcome.FAILED_FATAL

        self.logger.log(VERBOSE, f"Removed directory: {directory}")
        return DeletionOutcome.DELETED

    async def prune_directories(self, directories: Iterable[Candidate]) -> None:
        """
        Remove empty stale directories in a single deepest-first pass.

        A directory is removed only if it is empty right now and its current
        mtime is older than the cutoff. Deleting a child updates the parent's
        mtime, so a parent emptied during this run normally survives until a
        later run.
        """
        for directory in sorted(directories, key=lambda c: c.depth, reverse=True):
            path = directory.path
            if path == self.root_path:
                continue

            if not await is_empty_directory(path):
                continue

            try:
                st = await aiofiles.os.stat(path, follow_symlinks=False)
            except FileNotFoundError:
                continue
            except OSError as e:
                log_with_context(
                    self.logger,
                    "error",
                    f"Skipping directory {path}: {e}",
                    {"error_type": type(e).__name__},
                )
                await self.update_stats(errors=1)
                continue

            if st.st_mtime >= self.cutoff_time:
                continue

            if self.dry_run:
                log_with_context(self.logger, "dry", f"Would remove directory: {path}")
                outcome = DeletionOutcome.SKIPPED_DRY_RUN
            else:
                outcome = await self._remove_directory(path)
            await self.update_stats(**{_DIR_OUTCOME_STATS[outcome]: 1})

    async def clean_aged(self) -> None:
        """Age-filtered mode: delete stale files, then prune empty directories."""
        result = await walk_aged(self.root_path, self.cutoff_time, self.logger)
        await self._absorb_traversal(result)

        log_with_context(
            self.logger,
            "verb",
            "Traversal completed",
            {
                "candidate_files": len(result.files),
                "directories": len(result.directories),
            },
        )

        await self._run_pool(result.files, self.process_file)
        await self.prune_directories(result.directories)

    async def _delete_tree_contents(self, directory: Path) -> None:
        """
        Best-effort per-file removal of everything under ``directory``.

        Each file gets a single attempt; failures are logged and left behind.
        Emptied subdirectories are removed deepest first. ``directory`` itself
        is left for the caller.
        """
        stack = [directory]
        subdirs: list[Path] = []

        while stack:
            current = stack.pop()
            try:
                entries = await async_scandir(current)
            except OSError as e:
                log_with_context(
                    self.logger,
                    "error",
                    f"Skipping directory {current}: {e}",
                    {"error_type": type(e).__name__},
                )
                await self.update_stats(errors=1)
                continue

            for entry in entries:
                entry_path = Path(entry.path)
                try:
                    is_dir = entry.is_dir(follow_symlinks=False)
                except OSError:
                    is_dir = False

                if is_dir:
                    subdirs.append(entry_path)
                    stack.append(entry_path)
                    continue

                outcome = await delete_with_retry(entry_path, self.logger, attempts=1)
                await self.update_stats(**{_FILE_OUTCOME_STATS[outcome]: 1})

        for subdir in sorted(subdirs, key=lambda p: len(p.parts), reverse=True):
            outcome = await self._remove_directory(subdir)
            await self.update_stats(**{_DIR_OUTCOME_STATS[outcome]: 1})

    async def delete_tree(self, candidate: Candidate) -> DeletionOutcome:
        """
        Remove a whole subdirectory of the root as one unit of work.

        Falls back to per-file deletion when the recursive delete fails, then
        tries to remove the directory itself. Residue is reported, not retried.
        """
        directory = candidate.path
        if self.dry_run:
            log_with_context(self.logger, "dry", f"Would delete directory tree: {directory}")
            await self.update_stats(dirs_would_delete=1)
            return DeletionOutcome.SKIPPED_DRY_RUN

        try:
            await run_blocking(shutil.rmtree, directory)
        except FileNotFoundError:
            self.logger.log(VERBOSE, f"Directory already deleted: {directory}")
            outcome = DeletionOutcome.DELETED
        except OSError as e:
            log_with_context(
                self.logger,
                "error",
                f"Failed to fully delete directory {directory}, deleting contents individually",
                {"error": str(e), "error_type": type(e).__name__},
            )
            await self._delete_tree_contents(directory)
            outcome = await self._remove_directory(directory)
        else:
            self.logger.log(VERBOSE, f"Deleted directory tree: {directory}")
            outcome = DeletionOutcome.DELETED

        await self.update_stats(**{_DIR_OUTCOME_STATS[outcome]: 1})
        return outcome

    async def clean_all(self) -> None:
        """Delete-all mode: remove every immediate child of the root regardless of age."""
        result = await list_top_level(self.root_path, self.logger)
        await self._absorb_traversal(result)

        await self._run_pool(result.files, self.process_file)
        await self._run_pool(result.directories, self.delete_tree)

    async def run(self) -> dict:
        """
        Main cleanup operation.

        Returns:
            Dictionary with operation statistics

        Raises:
            FileNotFoundError: If the root directory does not exist
        """
        start_time = time.time()
        mode = "DRY RUN" if self.dry_run else "EXECUTE"

        log_with_context(
            self.logger,
            "info",
            f"Starting temp cleanup - {mode} MODE",
            {
                "version": __version__,
                "root_path": str(self.root_path),
                "mode": self.request.mode.value,
                "cutoff_time": time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(self.cutoff_time)),
                "parallelism": self.parallelism,
                "throttle_bytes_per_second": self.request.throttle_bytes,
            },
        )

        await ensure_root_exists(self.root_path, self.logger)

        if self.request.delete_all:
            await self.clean_all()
        else:
            await self.clean_aged()

        duration = time.time() - start_time
        final_stats = {
            "duration_seconds": round(duration, 2),
            **self.stats,
            "mb_freed": round(self.stats["bytes_freed"] / (1024 * 1024), 2),
            "peak_memory_mb": round(get_memory_usage_mb(), 1),
        }

        log_with_context(self.logger, "info", "Cleanup completed", final_stats)
        return final_stats


async def async_main(
    path: str,
    older_than_days: float = 7,
    delete_all: bool = False,
    dry_run: bool = True,
    parallelism: int | None = None,
    auto_detect: bool = True,
    throttle_bytes: int | None = None,
    logger: logging.Logger | None = None,
) -> dict:
    """
    Async entry point for the cleaner.

    Args:
        path: Root directory to clean
        older_than_days: Files older than this many days are stale
        delete_all: Remove every immediate child of the root regardless of age
        dry_run: If True, only report what would be deleted
        parallelism: Worker count; None lets the auto-detector decide
        auto_detect: Benchmark the filesystem when parallelism is None
        throttle_bytes: Byte-rate cap per second, None or 0 for unlimited
        logger: Logger sink shared by every component

    Returns:
        Operation statistics
    """
    logger = logger or setup_logging("tempclear")
    log_with_context(logger, "info", f"Temp path: {path}")

    # The benchmark writes into the root, so the root is vetted first
    root = check_root_path(Path(path))
    await ensure_root_exists(root, logger)

    if parallelism is None:
        parallelism = 1
        if auto_detect:
            try:
                parallelism = await auto_detect_parallelism(root, logger)
            except OSError as e:
                log_with_context(
                    logger,
                    "error",
                    f"Parallelism auto-detection failed, using 1 worker: {e}",
                    {"error_type": type(e).__name__},
                )
    log_with_context(logger, "info", f"Parallelism: {parallelism}")

    if throttle_bytes:
        log_with_context(logger, "info", f"Throttling deletion to {throttle_bytes} bytes/sec")

    request = CleanupRequest.from_days(
        root_path=path,
        older_than_days=older_than_days,
        delete_all=delete_all,
        dry_run=dry_run,
        parallelism=parallelism,
        throttle_bytes=throttle_bytes,
    )
    cleaner = TempCleaner(request, logger=logger)
    return await cleaner.run()
