"""Tests for the parallelism auto-detection benchmark."""

import errno

import aiofiles
import pytest

from tempclear import autodetect
from tempclear.autodetect import auto_detect_parallelism, measure_delete_latency, recommend_parallelism


@pytest.mark.parametrize(
    "latency, cpus, expected",
    [
        (0.001, 4, 8),
        (0.0049, 1, 2),
        (0.005, 4, 4),
        (0.019, 8, 8),
        (0.02, 8, 1),
        (0.5, 16, 1),
    ],
)
def test_recommend_parallelism(latency, cpus, expected):
    assert recommend_parallelism(latency, cpus) == expected


def test_logical_cpu_count_positive():
    assert autodetect.logical_cpu_count() >= 1


@pytest.mark.asyncio
async def test_measure_removes_scratch_directory(temp_dir, test_logger):
    latency = await measure_delete_latency(temp_dir, test_logger)

    assert latency >= 0
    assert list(temp_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_scratch_removed_when_sample_write_fails(temp_dir, test_logger, monkeypatch):
    """A failure part-way through writing samples still leaves no scratch directory."""
    real_open = aiofiles.open
    opened = []

    def failing_open(path, *args, **kwargs):
        opened.append(path)
        if len(opened) > 2:
            raise OSError(errno.ENOSPC, "No space left on device", str(path))
        return real_open(path, *args, **kwargs)

    monkeypatch.setattr(aiofiles, "open", failing_open)

    with pytest.raises(OSError, match="No space left"):
        await measure_delete_latency(temp_dir, test_logger)

    assert len(opened) == 3
    assert list(temp_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_measure_missing_directory_raises(temp_dir, test_logger):
    with pytest.raises(FileNotFoundError):
        await measure_delete_latency(temp_dir / "missing", test_logger)


@pytest.mark.asyncio
async def test_auto_detect_uses_measurement(temp_dir, test_logger, monkeypatch):
    async def fast(directory, logger):
        return 0.001

    monkeypatch.setattr(autodetect, "measure_delete_latency", fast)

    assert await auto_detect_parallelism(temp_dir, test_logger, cpu_count=3) == 6


@pytest.mark.asyncio
async def test_auto_detect_slow_storage(temp_dir, test_logger, monkeypatch):
    async def slow(directory, logger):
        return 0.1

    monkeypatch.setattr(autodetect, "measure_delete_latency", slow)

    assert await auto_detect_parallelism(temp_dir, test_logger, cpu_count=32) == 1
