"""Async wrappers around blocking filesystem calls."""

import asyncio
import functools
import os
from pathlib import Path
from typing import Any, Callable, TypeVar

import aiofiles.os

T = TypeVar("T")


async def run_blocking(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a blocking call on the default executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))


async def async_scandir(path: Path) -> list[os.DirEntry]:
    """Async wrapper for os.scandir."""

    def _scandir():
        with os.scandir(path) as entries:
            return list(entries)

    return await run_blocking(_scandir)


async def is_empty_directory(path: Path) -> bool:
    """True when ``path`` lists no entries; unreadable directories count as non-empty."""

    def _is_empty():
        with os.scandir(path) as entries:
            return next(entries, None) is None

    try:
        return await run_blocking(_is_empty)
    except OSError:
        return False


async def file_size_safe(path: Path) -> int:
    """Size of ``path`` without following symlinks, 0 if it cannot be read."""
    try:
        stat = await aiofiles.os.stat(path, follow_symlinks=False)
    except OSError:
        return 0
    return stat.st_size
