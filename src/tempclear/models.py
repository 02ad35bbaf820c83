"""Value types shared by the traversal and deletion stages."""

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

SECONDS_PER_DAY = 86400


class CleanupMode(Enum):
    AGE_FILTERED = "age_filtered"
    DELETE_ALL = "delete_all"


class CandidateKind(Enum):
    FILE = "file"
    DIRECTORY = "directory"


class DeletionOutcome(Enum):
    """Result of one delete attempt on one candidate."""

    DELETED = "deleted"
    SKIPPED_DRY_RUN = "skipped_dry_run"
    FAILED_TRANSIENT = "failed_transient"
    FAILED_FATAL = "failed_fatal"

    @property
    def succeeded(self) -> bool:
        return self in (DeletionOutcome.DELETED, DeletionOutcome.SKIPPED_DRY_RUN)


@dataclass(frozen=True)
class CleanupRequest:
    """
    Immutable description of one cleanup run.

    Attributes:
        root_path: Directory whose contents are cleaned (never removed itself)
        cutoff: Epoch seconds; entries modified before this are stale
        mode: Age-filtered walk or delete-all of root's immediate children
        dry_run: Report candidates without touching the filesystem
        parallelism: Number of concurrent deletion workers
        throttle_bytes: Byte-rate cap per second, None for unlimited
    """

    root_path: Path
    cutoff: float
    mode: CleanupMode = CleanupMode.AGE_FILTERED
    dry_run: bool = True
    parallelism: int = 1
    throttle_bytes: int | None = None

    def __post_init__(self):
        if self.parallelism < 1:
            raise ValueError(f"parallelism must be >= 1, got {self.parallelism}")
        if self.throttle_bytes is not None and self.throttle_bytes < 0:
            raise ValueError(f"throttle_bytes must be >= 0, got {self.throttle_bytes}")

    @classmethod
    def from_days(
        cls,
        root_path: str | Path,
        older_than_days: float = 7,
        delete_all: bool = False,
        dry_run: bool = True,
        parallelism: int = 1,
        throttle_bytes: int | None = None,
        now: float | None = None,
    ) -> "CleanupRequest":
        if older_than_days < 0:
            raise ValueError(f"older_than_days must be >= 0, got {older_than_days}")

        now = time.time() if now is None else now
        return cls(
            root_path=Path(root_path),
            cutoff=now - older_than_days * SECONDS_PER_DAY,
            mode=CleanupMode.DELETE_ALL if delete_all else CleanupMode.AGE_FILTERED,
            dry_run=dry_run,
            parallelism=parallelism,
            throttle_bytes=throttle_bytes or None,
        )

    @property
    def delete_all(self) -> bool:
        return self.mode is CleanupMode.DELETE_ALL


@dataclass(frozen=True)
class Candidate:
    path: Path
    kind: CandidateKind
    mtime: float = 0.0
    size: int = 0

    @property
    def depth(self) -> int:
        """Path component count, used to order directories deepest first."""
        return len(self.path.parts)


@dataclass
class TraversalResult:
    """Candidates produced by one walk plus what the walk ran into."""

    files: list[Candidate] = field(default_factory=list)
    directories: list[Candidate] = field(default_factory=list)
    files_scanned: int = 0
    dirs_scanned: int = 0
    errors: int = 0
