"""Pick a parallelism level by timing a few deletions on the target filesystem."""

import logging
import shutil
import time
import uuid
from pathlib import Path

import aiofiles
import aiofiles.os
import psutil

from .fs import run_blocking
from .logging import log_with_context

SAMPLE_FILES = 4
SAMPLE_SIZE_BYTES = 64 * 1024

# Average seconds per delete
FAST_DELETE_SECONDS = 0.005
MODERATE_DELETE_SECONDS = 0.02


def logical_cpu_count() -> int:
    return psutil.cpu_count(logical=True) or 1


def recommend_parallelism(seconds_per_delete: float, cpu_count: int | None = None) -> int:
    """
    Map an average per-file delete latency to a worker count.

    Fast storage gets twice the CPU count, moderate storage one worker per
    CPU, and slow storage a single worker since extra workers only contend.
    """
    cpus = cpu_count or logical_cpu_count()
    if seconds_per_delete < FAST_DELETE_SECONDS:
        return max(2, cpus * 2)
    if seconds_per_delete < MODERATE_DELETE_SECONDS:
        return max(1, cpus)
    return 1


async def measure_delete_latency(
    directory: Path,
    logger: logging.Logger,
    sample_files: int = SAMPLE_FILES,
    sample_size: int = SAMPLE_SIZE_BYTES,
) -> float:
    """
    Average seconds needed to delete one small file under ``directory``.

    Writes ``sample_files`` files of ``sample_size`` bytes into a uniquely named
    scratch directory, times their sequential removal, and always removes the
    scratch directory afterwards, including when writing the samples fails.
    """
    scratch = Path(directory) / f"tempclear_autodetect_{uuid.uuid4().hex}"
    await aiofiles.os.mkdir(scratch)

    try:
        payload = bytes(sample_size)
        samples = []
        for i in range(sample_files):
            sample = scratch / f"{i}.tmp"
            async with aiofiles.open(sample, "wb") as f:
                await f.write(payload)
            samples.append(sample)

        started = time.perf_counter()
        for sample in samples:
            await aiofiles.os.remove(sample)
        elapsed = time.perf_counter() - started
    finally:
        try:
            await run_blocking(shutil.rmtree, scratch)
        except FileNotFoundError:
            pass
        except OSError as e:
            log_with_context(
                logger,
                "error",
                f"Could not remove auto-detect scratch directory {scratch}: {e}",
                {"error_type": type(e).__name__},
            )

    return elapsed / sample_files


async def auto_detect_parallelism(
    directory: Path, logger: logging.Logger, cpu_count: int | None = None
) -> int:
    """Benchmark ``directory`` and return the recommended parallelism."""
    cpus = cpu_count or logical_cpu_count()
    latency = await measure_delete_latency(directory, logger)
    parallelism = recommend_parallelism(latency, cpus)

    log_with_context(
        logger,
        "verb",
        "Auto-detected parallelism",
        {
            "seconds_per_delete": round(latency, 6),
            "logical_cpus": cpus,
            "parallelism": parallelism,
        },
    )
    return parallelism
