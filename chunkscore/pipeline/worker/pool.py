"""Bounded worker pool draining a shared queue of chunk descriptors.

Exactly ``concurrency`` worker threads are started. Each one claims the next
unclaimed descriptor from the queue, runs the task to completion, records the
result, and claims again until the queue is empty. There is no static
assignment of descriptors to workers and no retry: a failing task is recorded
and the worker moves on.
"""

from __future__ import annotations

import logging
import os
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from chunkscore.pipeline.types import (
    ChunkDescriptor,
    ChunkResult,
    InvalidConfiguration,
)

logger = logging.getLogger(__name__)

Task = Callable[[ChunkDescriptor], Any]


@dataclass
class WorkerSlot:
    """Tracking info for one worker thread."""
    worker_id: str
    thread: Optional[threading.Thread] = None
    claimed: List[int] = field(default_factory=list)


class WorkerPool:
    """Fixed-size pool of worker loops over a shared descriptor queue.

    The pool is reusable: every ``run`` call builds a fresh queue and fresh
    threads, and returns only after all of them have exited.
    """

    def __init__(self, concurrency: int, *, name: str = "chunk-worker"):
        if isinstance(concurrency, bool) or not isinstance(concurrency, int):
            raise InvalidConfiguration(f"concurrency must be an integer, got {concurrency!r}")
        if concurrency < 1:
            raise InvalidConfiguration(f"concurrency must be >= 1, got {concurrency}")

        cpus = os.cpu_count() or 1
        if concurrency > cpus:
            logger.warning(
                f"concurrency={concurrency} exceeds available CPUs ({cpus}); "
                "workers will contend for cores"
            )
        self.concurrency = concurrency
        self.name = name
        self.workers: List[WorkerSlot] = []

    def run(self, descriptors: Sequence[ChunkDescriptor], task: Task) -> List[ChunkResult]:
        """Run ``task`` once per descriptor; return results in descriptor order.

        A task's return value is attached to its result when it exposes
        ``rows``, ``digest`` or ``elapsed_sec``. Exceptions are captured per
        descriptor and never stop other tasks.
        """
        seen = set()
        for d in descriptors:
            if d in seen:
                raise InvalidConfiguration(f"duplicate descriptor {d.label}", index=d.index)
            seen.add(d)

        work: "queue.Queue[ChunkDescriptor]" = queue.Queue()
        for d in descriptors:
            work.put(d)

        results: Dict[ChunkDescriptor, ChunkResult] = {}
        lock = threading.Lock()

        self.workers = [
            WorkerSlot(worker_id=f"{self.name}-{i}") for i in range(self.concurrency)
        ]
        for slot in self.workers:
            slot.thread = threading.Thread(
                target=self._worker_loop,
                args=(slot, work, task, results, lock),
                name=slot.worker_id,
                daemon=True,
            )
            slot.thread.start()

        logger.info(
            f"Started {self.concurrency} workers for {len(descriptors)} chunks"
        )
        for slot in self.workers:
            slot.thread.join()

        # A task raising a non-Exception BaseException kills its worker thread
        # before a result is recorded; its descriptor, and any the dead
        # workers never claimed, are reported as failed.
        for d in descriptors:
            if d not in results:
                results[d] = ChunkResult(
                    descriptor=d,
                    ok=False,
                    error=RuntimeError(f"worker exited without a result for chunk {d.label}"),
                )
                logger.error(f"Chunk {d.label} has no result; its worker exited abnormally")

        ordered = [results[d] for d in descriptors]
        failed = [r.index for r in ordered if not r.ok]
        logger.info(
            f"Worker pool drained: {len(ordered) - len(failed)} succeeded, "
            f"{len(failed)} failed"
        )
        return ordered

    def _worker_loop(
        self,
        slot: WorkerSlot,
        work: "queue.Queue[ChunkDescriptor]",
        task: Task,
        results: Dict[ChunkDescriptor, ChunkResult],
        lock: threading.Lock,
    ) -> None:
        while True:
            try:
                descriptor = work.get_nowait()
            except queue.Empty:
                return
            slot.claimed.append(descriptor.index)
            result = self._execute(slot, descriptor, task)
            with lock:
                results[descriptor] = result
            work.task_done()

    def _execute(self, slot: WorkerSlot, descriptor: ChunkDescriptor, task: Task) -> ChunkResult:
        started = time.monotonic()
        try:
            outcome = task(descriptor)
        except Exception as e:
            logger.error(
                f"Chunk {descriptor.label} failed on {slot.worker_id}: "
                f"{type(e).__name__}: {e}"
            )
            return ChunkResult(
                descriptor=descriptor,
                ok=False,
                error=e,
                elapsed_sec=time.monotonic() - started,
                worker_id=slot.worker_id,
            )

        logger.debug(f"Chunk {descriptor.label} done on {slot.worker_id}")
        return ChunkResult(
            descriptor=descriptor,
            ok=True,
            rows=int(getattr(outcome, "rows", 0) or 0),
            digest=getattr(outcome, "digest", None),
            elapsed_sec=getattr(outcome, "elapsed_sec", None) or (time.monotonic() - started),
            worker_id=slot.worker_id,
        )


__all__ = ["WorkerSlot", "WorkerPool"]
