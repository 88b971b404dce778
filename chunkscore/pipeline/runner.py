"""End-to-end chunked scoring run.

Phases, each finishing before the next begins:

1. Partition ``total_chunks`` into descriptors (no I/O).
2. Ingress: one source session, chunks pulled sequentially into the stage store.
3. Load the model once.
4. Score: the worker pool turns ingress artifacts into egress artifacts.
5. Aggregate: one destination session, egress artifacts merged in index order.

Chunk failures in phases 2 and 4 are isolated and reported. A run with any
failed chunk stops before aggregation and leaves every successful egress
artifact in place, so the caller can re-run just the failed indices.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional

import pandas as pd

from chunkscore.pipeline.aggregate import aggregate
from chunkscore.pipeline.hashing import compute_frame_hash, compute_run_hash
from chunkscore.pipeline.partition import partition, predicate_for_descriptor
from chunkscore.pipeline.scorer import ChunkScorer, load_model
from chunkscore.pipeline.stage import StageStore
from chunkscore.pipeline.types import (
    ChunkDescriptor,
    ChunkScoreError,
    ChunkState,
    ChunkStatus,
    InvalidConfiguration,
    Role,
    RunReport,
    StorageWriteError,
)
from chunkscore.pipeline.worker import WorkerPool
from chunkscore.shared.logging import log_event

if TYPE_CHECKING:
    from chunkscore.config.settings import Settings

logger = logging.getLogger(__name__)


class BatchScoringPipeline:
    """Drives one partition -> ingress -> score -> aggregate run.

    ``source`` must provide ``session()`` yielding an object with
    ``query(predicate)``; ``destination`` must provide ``session()`` yielding
    an object with ``create_table`` and ``append_table``.
    """

    def __init__(
        self,
        settings: "Settings",
        source: Any,
        destination: Any,
        *,
        store: Optional[StageStore] = None,
    ):
        self.settings = settings
        self.source = source
        self.destination = destination
        self.store = store or StageStore(settings.staging.directory)
        self.model: Any = None

    # ─────────────────────────────────────────────────────────────────────
    # Public entry point
    # ─────────────────────────────────────────────────────────────────────

    def run(self, *, resume: bool = False, indices: Optional[Iterable[int]] = None) -> RunReport:
        """Execute the pipeline.

        Args:
            resume: Skip ingress and scoring for chunks whose egress artifact
                already exists.
            indices: Restrict ingress and scoring to these chunk indices.
                Aggregation still requires all chunks' egress artifacts.

        Raises:
            InvalidConfiguration: before any I/O, for bad parameters.
            ModelLoadError: after ingress, before any scoring.
            MissingArtifactError, SchemaMismatchError, StorageReadError:
                during aggregation; the destination transaction is rolled back.
        """
        params = self.settings.chunks
        descriptors = partition(params.total_chunks)
        pool = WorkerPool(params.concurrency)
        selected = self._select(descriptors, indices)

        report = RunReport(total_chunks=params.total_chunks)
        for d in descriptors:
            report.chunks[d.index] = ChunkStatus(descriptor=d)

        pending = []
        for d in selected:
            if resume and self.store.exists(Role.EGRESS, d):
                report.skipped.append(d.index)
                self._mark_already_egressed(report.chunks[d.index])
            else:
                pending.append(d)
        for d in descriptors:
            if d not in selected:
                report.skipped.append(d.index)
                if self.store.exists(Role.EGRESS, d):
                    self._mark_already_egressed(report.chunks[d.index])
        if report.skipped:
            logger.info(f"Skipping chunks {sorted(report.skipped)}")

        logger.info({
            "run": "start",
            "total_chunks": params.total_chunks,
            "concurrency": params.concurrency,
            "pending": len(pending),
        })

        ingressed = self.ingress(pending, report)
        if ingressed:
            self.model = load_model(self.settings.model.path)
            self.score(ingressed, report, pool)

        if report.failed_indices:
            logger.error({
                "run": "failed_before_aggregation",
                "failed": report.failures(),
            })
            return report

        not_ready = [
            d.index for d in descriptors
            if report.chunks[d.index].state != ChunkState.EGRESSED
        ]
        if not_ready:
            # Only possible for a targeted run over a partial set of chunks.
            logger.warning(f"Aggregation deferred; chunks {not_ready} have no egress artifact")
            return report

        self.aggregate(descriptors, report)
        logger.info({"run": "complete", **report.summary()})
        return report

    # ─────────────────────────────────────────────────────────────────────
    # Phases
    # ─────────────────────────────────────────────────────────────────────

    def ingress(self, descriptors: List[ChunkDescriptor], report: RunReport) -> List[ChunkDescriptor]:
        """Pull each chunk from the source into the stage store, one at a time."""
        if not descriptors:
            return []
        ordinal = self.settings.source.ordinal_column
        done: List[ChunkDescriptor] = []
        with self.source.session() as source:
            for d in descriptors:
                status = report.chunks[d.index]
                try:
                    records = source.query(predicate_for_descriptor(d, ordinal))
                    self.store.write(Role.INGRESS, d, records)
                except ChunkScoreError as e:
                    self._fail(status, ChunkState.INGRESSED, e)
                    continue
                except Exception as e:
                    logger.exception(f"Unexpected ingress failure for chunk {d.label}")
                    self._fail(status, ChunkState.INGRESSED, e)
                    continue
                status.rows = len(records)
                self._advance(status, ChunkState.INGRESSED)
                done.append(d)
        return done

    def score(
        self,
        descriptors: List[ChunkDescriptor],
        report: RunReport,
        pool: Optional[WorkerPool] = None,
    ) -> None:
        """Score ingressed chunks concurrently; record per-chunk outcomes."""
        params = self.settings.chunks
        task = ChunkScorer(self.model, self.store, params.score_column)
        results = (pool or WorkerPool(params.concurrency)).run(descriptors, task)
        for result in results:
            status = report.chunks[result.index]
            if result.ok:
                status.rows = result.rows
                status.digest = result.digest
                self._advance(status, ChunkState.SCORED)
                self._advance(status, ChunkState.EGRESSED)
            else:
                stage = ChunkState.EGRESSED if isinstance(result.error, StorageWriteError) else ChunkState.SCORED
                self._fail(status, stage, result.error)

    def aggregate(self, descriptors: List[ChunkDescriptor], report: RunReport) -> None:
        """Merge all egress artifacts into the destination in one transaction."""
        table = self.settings.destination.table
        aggregated: List[ChunkDescriptor] = []
        digests: Dict[int, str] = {}

        def _on_chunk(d: ChunkDescriptor, frame: pd.DataFrame) -> None:
            aggregated.append(d)
            digests[d.index] = compute_frame_hash(frame)

        try:
            with self.destination.session() as sink:
                report.rows_written = aggregate(
                    descriptors, self.store, sink, table, on_chunk=_on_chunk
                )
        except ChunkScoreError as e:
            logger.error({"aggregation": "rolled_back", "table": table, "error": str(e)})
            report.rows_written = 0
            raise

        for d in aggregated:
            self._advance(report.chunks[d.index], ChunkState.AGGREGATED)
        report.aggregated = True
        report.run_digest = compute_run_hash(digests)

    # ─────────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────────

    @staticmethod
    def _select(
        descriptors: List[ChunkDescriptor],
        indices: Optional[Iterable[int]],
    ) -> List[ChunkDescriptor]:
        if indices is None:
            return list(descriptors)
        wanted = set(indices)
        by_index: Dict[int, ChunkDescriptor] = {d.index: d for d in descriptors}
        unknown = sorted(i for i in wanted if i not in by_index)
        if unknown:
            raise InvalidConfiguration(
                f"chunk indices {unknown} out of range 1..{len(descriptors)}"
            )
        return [by_index[i] for i in sorted(wanted)]

    def _mark_already_egressed(self, status: ChunkStatus) -> None:
        for state in (ChunkState.INGRESSED, ChunkState.SCORED, ChunkState.EGRESSED):
            status.advance(state)

    def _advance(self, status: ChunkStatus, state: ChunkState) -> None:
        status.advance(state)
        log_event({
            "chunk": status.descriptor.index,
            "total": status.descriptor.total,
            "state": state.value,
            "rows": status.rows,
        })

    def _fail(self, status: ChunkStatus, stage: ChunkState, error: Any) -> None:
        status.fail(stage, f"{type(error).__name__}: {error}")
        log_event({
            "chunk": status.descriptor.index,
            "total": status.descriptor.total,
            "state": ChunkState.FAILED.value,
            "stage": stage.value,
            "error": status.error,
        })


__all__ = ["BatchScoringPipeline"]
