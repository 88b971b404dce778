"""Worker pool for concurrent chunk scoring.

Workers are threads in the host process so the loaded model is shared by
reference rather than copied into each worker.
"""

from __future__ import annotations

from .pool import WorkerPool, WorkerSlot

__all__ = ["WorkerPool", "WorkerSlot"]
