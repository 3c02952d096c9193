"""Deferred job queue — the scheduling policy behind post/pre flush.

A JobQueue collects jobs (plain callables, typically effects or watch jobs),
deduplicates them, and runs them later in submission order. Nothing here is
part of the core guarantee: effects opt in by passing ``queue.queue`` (or a
lambda around it) as their scheduler.

    jobs = JobQueue()

    e = engine.effect(render, scheduler=jobs.queue)
    state["a"] = 1
    state["b"] = 2
    jobs.flush()  # render runs once, seeing both writes
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from typing import Callable, Iterator

logger = logging.getLogger(__name__)

Job = Callable[[], object]

LANES = ("pre", "post")


def call_soon(fn: Callable[[], None]) -> bool:
    """Default deferral: run fn on the next turn of the running asyncio loop.

    Returns False when no loop is running; the queue then waits for an
    explicit flush().
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.debug("No running event loop; jobs stay queued until flush()")
        return False
    loop.call_soon(fn)
    return True


def _requeue_front(lane: dict[Job, None], jobs: list[Job]) -> None:
    queued = {job: None for job in jobs}
    queued.update(lane)
    lane.clear()
    lane.update(queued)


class JobQueue:
    """Deduplicating two-lane job queue. The pre lane flushes before post."""

    def __init__(self, defer: Callable[[Callable[[], None]], object] | None = None) -> None:
        self._defer = defer or call_soon
        self._lanes: dict[str, dict[Job, None]] = {lane: {} for lane in LANES}
        self._flush_scheduled = False
        self._flushing = False
        self._batch_depth = 0

    @property
    def pending(self) -> int:
        """Number of jobs waiting to run. Useful for testing."""
        return sum(len(jobs) for jobs in self._lanes.values())

    def queue(self, job: Job, lane: str = "post") -> None:
        """Add job unless already queued, and make sure a flush is coming."""
        if lane not in self._lanes:
            raise ValueError(f"Unknown lane {lane!r}, expected one of {LANES}")
        self._lanes[lane].setdefault(job, None)
        self._schedule_flush()

    def _schedule_flush(self) -> None:
        if self._flush_scheduled or self._flushing or self._batch_depth:
            return
        # a defer returning False (no loop) leaves the queue waiting
        if self._defer(self.flush) is not False:
            self._flush_scheduled = True

    def flush(self) -> None:
        """Run queued jobs, pre lane first. Jobs queued meanwhile run in the same flush.

        A job that raises stops the flush; the jobs behind it stay queued
        for the next one.
        """
        self._flush_scheduled = False
        if self._flushing or self._batch_depth:
            return
        self._flushing = True
        try:
            while self.pending:
                lane = self._lanes["pre"] if self._lanes["pre"] else self._lanes["post"]
                # Snapshot and clear — jobs may queue new ones while running.
                batch = list(lane)
                lane.clear()
                for i, job in enumerate(batch):
                    try:
                        job()
                    except BaseException:
                        # unrun jobs stay queued, ahead of anything queued meanwhile
                        _requeue_front(lane, batch[i + 1 :])
                        raise
        finally:
            self._flushing = False
            if self.pending:
                self._schedule_flush()

    def clear(self) -> None:
        for jobs in self._lanes.values():
            jobs.clear()

    @contextmanager
    def batch(self) -> Iterator[None]:
        """Hold flushing until the outermost batch exits, then flush once.

        Usage:
            with engine.jobs.batch():
                state["a"] = 1
                state["b"] = 2
            # queued jobs run here, after both writes
        """
        self._batch_depth += 1
        try:
            yield
        finally:
            self._batch_depth -= 1
            if self._batch_depth == 0 and self.pending:
                self.flush()

    def __repr__(self) -> str:
        return f"JobQueue(pending={self.pending})"
