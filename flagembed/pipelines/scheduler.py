"""Concurrent batch scheduling.

Splits the inputs into contiguous ``BatchJob`` ranges and runs one asyncio
task per job. The blocking chunk pipeline executes in a worker thread via
``asyncio.to_thread``.

Notes
- Results land in a list pre-sized to ``len(inputs)``; each job writes only
  its own ``[start, end)`` slice, so the list needs no lock
- Failures go onto a bounded error queue; every job runs to completion
  before the first queued error is raised and partial results are dropped
- ``max_concurrency`` bounds in-flight chunks with a semaphore; ``None``
  leaves fan-out unbounded (one task per chunk)
"""

import asyncio
import contextlib
import time
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional, Sequence

import numpy as np
import structlog

from flagembed.common.errors import TensorShapeError
from flagembed.common.metrics import MetricsCollector, get_metrics_collector

logger = structlog.get_logger("batch_scheduler")

DEFAULT_CHUNK_SIZE = 512

ChunkFunction = Callable[[Sequence[str]], List[np.ndarray]]


@dataclass(frozen=True)
class BatchJob:
    """Contiguous slice ``inputs[start:end]`` of the original input list."""

    start: int
    end: int
    inputs: Sequence[str]

    def __len__(self) -> int:
        return self.end - self.start


def resolve_chunk_size(chunk_size: Optional[int]) -> int:
    if chunk_size is None or chunk_size <= 0:
        return DEFAULT_CHUNK_SIZE
    return chunk_size


def iter_jobs(inputs: Sequence[str], chunk_size: Optional[int] = None) -> Iterator[BatchJob]:
    """Yield jobs covering ``inputs`` in order; the last one may be shorter."""
    size = resolve_chunk_size(chunk_size)
    for start in range(0, len(inputs), size):
        end = min(start + size, len(inputs))
        yield BatchJob(start=start, end=end, inputs=inputs[start:end])


class BatchScheduler:
    """Runs a chunk function over all chunks concurrently, preserving order.

    Parameters
    - pipeline: Blocking callable mapping a chunk of strings to its embeddings
    - max_concurrency: Maximum chunks in flight; ``None`` for unbounded
    """

    def __init__(
        self,
        pipeline: ChunkFunction,
        max_concurrency: Optional[int] = None,
        metrics: Optional[MetricsCollector] = None,
        model_name: str = "unknown",
    ):
        self.pipeline = pipeline
        self.max_concurrency = max_concurrency if max_concurrency and max_concurrency > 0 else None
        self.metrics = metrics or get_metrics_collector()
        self.model_name = model_name

    async def run_all(
        self, inputs: Sequence[str], chunk_size: Optional[int] = None
    ) -> List[np.ndarray]:
        """Embed every input; raises the first recorded chunk error after all chunks finish."""
        inputs = list(inputs)
        if not inputs:
            return []

        jobs = list(iter_jobs(inputs, chunk_size))
        results: List[Optional[np.ndarray]] = [None] * len(inputs)
        errors: asyncio.Queue = asyncio.Queue(maxsize=len(jobs))
        semaphore = asyncio.Semaphore(self.max_concurrency) if self.max_concurrency else None

        start_time = time.perf_counter()
        await asyncio.gather(*(self._run_job(job, results, errors, semaphore) for job in jobs))

        if not errors.empty():
            failed = errors.qsize()
            error = errors.get_nowait()
            logger.error(
                "Batch embedding failed",
                inputs=len(inputs),
                chunks=len(jobs),
                failed_chunks=failed,
                error=str(error),
            )
            raise error

        logger.debug(
            "Batch embedding completed",
            inputs=len(inputs),
            chunks=len(jobs),
            chunk_size=resolve_chunk_size(chunk_size),
            duration_ms=(time.perf_counter() - start_time) * 1000,
        )
        return results

    async def _run_job(
        self,
        job: BatchJob,
        results: List[Optional[np.ndarray]],
        errors: asyncio.Queue,
        semaphore: Optional[asyncio.Semaphore],
    ) -> None:
        try:
            async with semaphore or contextlib.nullcontext():
                embeddings = await asyncio.to_thread(self.pipeline, job.inputs)
            if len(embeddings) != len(job):
                raise TensorShapeError(
                    f"chunk [{job.start}, {job.end}) returned {len(embeddings)} embeddings"
                )
            results[job.start:job.end] = embeddings
        except Exception as exc:
            self.metrics.record_chunk_failure(self.model_name)
            logger.warning("Chunk failed", start=job.start, end=job.end, error=str(exc))
            errors.put_nowait(exc)
