"""Type definitions and errors for the chunked scoring pipeline."""

from __future__ import annotations

import numbers
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


# ─────────────────────────────────────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────────────────────────────────────


class ChunkScoreError(Exception):
    """Base class for pipeline errors.

    ``index`` names the chunk the failure belongs to, when there is one.
    """

    def __init__(self, message: str, *, index: Optional[int] = None):
        super().__init__(message)
        self.index = index


class InvalidConfiguration(ChunkScoreError):
    """Raised for bad parameters, before any work starts."""

    pass


class StorageWriteError(ChunkScoreError):
    """Raised when a staged artifact cannot be written."""

    pass


class StorageReadError(ChunkScoreError):
    """Raised when a staged artifact is absent or malformed."""

    pass


class ModelLoadError(ChunkScoreError):
    """Raised when the serialized model cannot be loaded."""

    pass


class ScoringError(ChunkScoreError):
    """Raised when a chunk's records are incompatible with the model."""

    pass


class SchemaMismatchError(ChunkScoreError):
    """Raised when an appended chunk diverges from the created relation."""

    pass


class MissingArtifactError(ChunkScoreError):
    """Raised when aggregation finds egress artifacts missing."""

    def __init__(self, message: str, *, indices: List[int]):
        super().__init__(message, index=indices[0] if indices else None)
        self.indices = list(indices)


# ─────────────────────────────────────────────────────────────────────────────
# Chunk identity and staging roles
# ─────────────────────────────────────────────────────────────────────────────


class Role(str, Enum):
    """Which side of scoring a staged artifact belongs to."""
    INGRESS = "ingress"     # Pulled from the source, not yet scored
    EGRESS = "egress"       # Scored, waiting for aggregation


@dataclass(frozen=True, order=True)
class ChunkDescriptor:
    """One partition of the source: ``index`` in ``[1, total]``."""

    index: int
    total: int

    def __post_init__(self) -> None:
        for name in ("index", "total"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, numbers.Integral):
                raise InvalidConfiguration(f"{name} must be an integer, got {value!r}")
            # Normalise numpy integers so equality and hashing match plain ints.
            object.__setattr__(self, name, int(value))
        if self.total < 1:
            raise InvalidConfiguration(f"total must be a positive integer, got {self.total!r}")
        if not 1 <= self.index <= self.total:
            raise InvalidConfiguration(
                f"index {self.index} out of range for total {self.total}",
                index=self.index,
            )

    @property
    def label(self) -> str:
        return f"{self.index}/{self.total}"


# ─────────────────────────────────────────────────────────────────────────────
# Lifecycle and reporting
# ─────────────────────────────────────────────────────────────────────────────


class ChunkState(str, Enum):
    """Per-chunk lifecycle. Linear, with ``FAILED`` reachable from any stage."""
    PLANNED = "planned"
    INGRESSED = "ingressed"
    SCORED = "scored"
    EGRESSED = "egressed"
    AGGREGATED = "aggregated"
    FAILED = "failed"


# Allowed forward transitions; FAILED is handled separately.
_NEXT_STATE: Dict[ChunkState, ChunkState] = {
    ChunkState.PLANNED: ChunkState.INGRESSED,
    ChunkState.INGRESSED: ChunkState.SCORED,
    ChunkState.SCORED: ChunkState.EGRESSED,
    ChunkState.EGRESSED: ChunkState.AGGREGATED,
}


@dataclass
class ChunkResult:
    """Outcome of one pool task for one descriptor."""

    descriptor: ChunkDescriptor
    ok: bool
    error: Optional[BaseException] = None
    rows: int = 0
    digest: Optional[str] = None
    elapsed_sec: float = 0.0
    worker_id: Optional[str] = None

    @property
    def index(self) -> int:
        return self.descriptor.index


@dataclass
class ChunkStatus:
    """Where a chunk is in the pipeline and, if it failed, why."""

    descriptor: ChunkDescriptor
    state: ChunkState = ChunkState.PLANNED
    failed_stage: Optional[ChunkState] = None
    error: Optional[str] = None
    rows: int = 0
    digest: Optional[str] = None

    def advance(self, state: ChunkState) -> None:
        """Move to the next state. Skipping stages or leaving FAILED is an error."""
        if self.state == ChunkState.FAILED:
            raise ValueError(f"chunk {self.descriptor.label} already failed")
        expected = _NEXT_STATE.get(self.state)
        if state != expected:
            raise ValueError(
                f"illegal transition {self.state.value} -> {state.value} "
                f"for chunk {self.descriptor.label}"
            )
        self.state = state

    def fail(self, stage: ChunkState, error: BaseException | str) -> None:
        self.failed_stage = stage
        self.error = str(error)
        self.state = ChunkState.FAILED


@dataclass
class RunReport:
    """Summary of a pipeline run, one status per planned chunk."""

    total_chunks: int
    chunks: Dict[int, ChunkStatus] = field(default_factory=dict)
    aggregated: bool = False
    rows_written: int = 0
    skipped: List[int] = field(default_factory=list)
    run_digest: Optional[str] = None

    @property
    def failed_indices(self) -> List[int]:
        return sorted(i for i, s in self.chunks.items() if s.state == ChunkState.FAILED)

    @property
    def succeeded_indices(self) -> List[int]:
        return sorted(i for i, s in self.chunks.items() if s.state != ChunkState.FAILED)

    @property
    def is_success(self) -> bool:
        return not self.failed_indices and self.aggregated

    def failures(self) -> Dict[int, str]:
        """Map failed chunk index to ``"<stage>: <reason>"``."""
        out: Dict[int, str] = {}
        for idx in self.failed_indices:
            status = self.chunks[idx]
            stage = status.failed_stage.value if status.failed_stage else "unknown"
            out[idx] = f"{stage}: {status.error}"
        return out

    def summary(self) -> Dict[str, object]:
        return {
            "total_chunks": self.total_chunks,
            "succeeded": len(self.succeeded_indices),
            "failed": self.failed_indices,
            "skipped": sorted(self.skipped),
            "aggregated": self.aggregated,
            "rows_written": self.rows_written,
            "run_digest": self.run_digest,
        }


__all__ = [
    "ChunkScoreError",
    "InvalidConfiguration",
    "StorageWriteError",
    "StorageReadError",
    "ModelLoadError",
    "ScoringError",
    "SchemaMismatchError",
    "MissingArtifactError",
    "Role",
    "ChunkDescriptor",
    "ChunkState",
    "ChunkResult",
    "ChunkStatus",
    "RunReport",
]
