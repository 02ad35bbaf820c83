"""Pytest configuration to ensure tests use local source code."""

import logging
import os
import sys
import tempfile
import time
from pathlib import Path

import pytest

# Add src directory to Python path to ensure tests use local source code
# instead of installed package
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from tempclear.logging import VERBOSE, shutdown_logging  # noqa: E402

DAY = 86400


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_logger():
    """Propagating logger so caplog sees every level, including VERB."""
    logger = logging.getLogger("tempclear_test")
    logger.setLevel(VERBOSE)
    logger.propagate = True
    return logger


@pytest.fixture(autouse=True)
def _reset_tempclear_logger():
    """Drop handlers bound to a previous test's stdout/stderr."""
    yield
    shutdown_logging(logging.getLogger("tempclear"))


def make_file(path: Path, age_days: float = 0, size: int = 4) -> Path:
    """Create ``path`` with ``size`` bytes and an mtime ``age_days`` in the past."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"x" * size)
    set_age(path, age_days)
    return path


def set_age(path: Path, age_days: float) -> None:
    stamp = time.time() - age_days * DAY
    os.utime(path, (stamp, stamp))
