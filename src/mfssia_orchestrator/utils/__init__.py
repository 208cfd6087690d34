"""Utility exports for concurrency helpers."""

from mfssia_orchestrator.utils.concurrency import (
    BoundedSemaphore,
    CancellationToken,
    WorkerPool,
    cancellable_sleep,
    run_with_timeout,
)

__all__ = [
    "BoundedSemaphore",
    "CancellationToken",
    "WorkerPool",
    "cancellable_sleep",
    "run_with_timeout",
]
