"""Bounded retry around a single file deletion."""

import asyncio
import errno
import logging
import os
import stat
from pathlib import Path
from typing import Callable

import aiofiles.os

from .fs import run_blocking
from .logging import VERBOSE, log_with_context
from .models import DeletionOutcome

DELETE_ATTEMPTS = 3
DELETE_RETRY_DELAY = 0.2

# Lock contention and short-lived access denials, typically another process
# holding the file open for a moment
TRANSIENT_ERRNOS = frozenset({errno.EACCES, errno.EPERM, errno.EBUSY, errno.EAGAIN, errno.ETXTBSY})


def is_transient_error(exc: OSError) -> bool:
    """Classify a delete failure as worth retrying."""
    if isinstance(exc, (PermissionError, BlockingIOError)):
        return True
    return exc.errno in TRANSIENT_ERRNOS


def _clear_read_only(path: Path) -> None:
    st = os.lstat(path)
    if stat.S_ISLNK(st.st_mode) or st.st_mode & stat.S_IWUSR:
        return
    os.chmod(path, stat.S_IMODE(st.st_mode) | stat.S_IWUSR)


async def delete_with_retry(
    path: Path,
    logger: logging.Logger,
    attempts: int = DELETE_ATTEMPTS,
    delay: float = DELETE_RETRY_DELAY,
    is_transient: Callable[[OSError], bool] = is_transient_error,
) -> DeletionOutcome:
    """
    Delete one file, retrying transient failures.

    The owner write bit is restored before every attempt so a read-only flag
    alone never blocks removal. A file that is already gone counts as deleted.

    Args:
        path: File (or symlink) to remove
        logger: Logger receiving failure and retry lines
        attempts: Total number of delete attempts
        delay: Seconds to wait between attempts
        is_transient: Classifier deciding whether an OSError is retried

    Returns:
        DELETED, FAILED_TRANSIENT after exhausting attempts, or FAILED_FATAL
    """
    if attempts < 1:
        raise ValueError(f"attempts must be >= 1, got {attempts}")

    last_error: OSError | None = None
    for attempt in range(1, attempts + 1):
        try:
            await run_blocking(_clear_read_only, path)
        except FileNotFoundError:
            logger.log(VERBOSE, f"File already deleted: {path}")
            return DeletionOutcome.DELETED
        except OSError as e:
            log_with_context(
                logger, "verb", f"Could not clear read-only flag on {path}", {"error": str(e)}
            )

        try:
            await aiofiles.os.remove(path)
            return DeletionOutcome.DELETED
        except FileNotFoundError:
            logger.log(VERBOSE, f"File already deleted: {path}")
            return DeletionOutcome.DELETED
        except OSError as e:
            if not is_transient(e):
                log_with_context(
                    logger,
                    "error",
                    f"Skipping file {path}: {e}",
                    {"error_type": type(e).__name__},
                )
                return DeletionOutcome.FAILED_FATAL

            last_error = e
            if attempt < attempts:
                log_with_context(
                    logger,
                    "verb",
                    f"Retrying delete of {path}",
                    {"attempt": attempt, "error": str(e)},
                )
                await asyncio.sleep(delay)

    log_with_context(
        logger,
        "error",
        f"Failed to delete {path} after {attempts} attempts: {last_error}",
        {"error_type": type(last_error).__name__},
    )
    return DeletionOutcome.FAILED_TRANSIENT
