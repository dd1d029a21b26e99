from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Tuple

from tokenshift.services.rotation.commands import Command, Dispatch, FinalizeDue
from tokenshift.services.rotation.models import isoformat, utcnow

_log = logging.getLogger("tokenshift.scheduler")


@dataclass
class Job:
    name: str
    command: Command
    next_run: datetime
    # seconds between runs; None marks a one-shot job
    interval: float | None = None
    enabled: bool = True

    @property
    def one_shot(self) -> bool:
        return self.interval is None


class Scheduler:
    """
    Minimal in-process scheduler:
      * jobs are kept in memory; pending rotations re-arm them after a restart;
      * when a job is due it emits a command to ``dispatch`` instead of calling
        coordinator internals, so handlers stay testable without wall-clock time.

    One-shot jobs that are already late fire on the next tick; they are never
    pushed back.
    """

    def __init__(self, dispatch: Dispatch, *, clock: Callable[[], datetime] = utcnow, max_sleep: float = 1.0) -> None:
        self._dispatch = dispatch
        self._clock = clock
        self._max_sleep = max_sleep
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.Lock()
        self._task: asyncio.Task | None = None
        self._stopped = asyncio.Event()
        self._stopped.set()

    async def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stopped.clear()
        self._task = asyncio.create_task(self._run(), name="tokenshift-scheduler")
        _log.info("scheduler started")

    async def stop(self) -> None:
        self._stopped.set()
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    def ensure_every(self, name: str, interval: float, command: Command) -> Job:
        """
        Create or update a simple "every N seconds" job.
        """
        interval = float(interval)
        if interval <= 0:
            raise ValueError("interval must be positive")
        now = self._clock()
        with self._lock:
            job = self._jobs.get(name)
            if job is None:
                job = Job(name=name, command=command, interval=interval, next_run=now + timedelta(seconds=interval))
                self._jobs[name] = job
                _log.info("scheduler job created name=%s interval=%ss", name, interval)
            else:
                job.command = command
                job.interval = interval
                if job.next_run < now:
                    job.next_run = now + timedelta(seconds=interval)
                _log.info("scheduler job updated name=%s interval=%ss", name, interval)
            return job

    def ensure_at(self, name: str, at: datetime, command: Command) -> Job:
        with self._lock:
            job = Job(name=name, command=command, next_run=at)
            self._jobs[name] = job
        _log.info("scheduler one-shot job set name=%s at=%s", name, isoformat(at))
        return job

    def delete(self, name: str) -> bool:
        with self._lock:
            removed = self._jobs.pop(name, None) is not None
        if removed:
            _log.info("scheduler job deleted name=%s", name)
        return removed

    def jobs(self) -> List[Job]:
        with self._lock:
            return list(self._jobs.values())

    # FinalizeTrigger ---------------------------------------------------
    def schedule_finalize(self, rotation_id: str, at: datetime) -> None:
        self.ensure_at(f"finalize:{rotation_id}", at, FinalizeDue(rotation_id=rotation_id))

    def cancel_finalize(self, rotation_id: str) -> None:
        self.delete(f"finalize:{rotation_id}")

    # ticking -----------------------------------------------------------
    def due(self, now: datetime | None = None) -> List[Job]:
        """Collect due jobs, dropping one-shots and advancing recurring ones."""
        now = now or self._clock()
        fired: List[Job] = []
        with self._lock:
            for job in list(self._jobs.values()):
                if not job.enabled or job.next_run > now:
                    continue
                fired.append(job)
                if job.interval is None:
                    del self._jobs[job.name]
                else:
                    job.next_run = now + timedelta(seconds=job.interval)
        return fired

    def run_pending(self, now: datetime | None = None) -> List[Tuple[Job, object]]:
        """Fire every due job inline; used by cron-style invocations and tests."""
        results: List[Tuple[Job, object]] = []
        for job in self.due(now):
            results.append((job, self._fire(job)))
        return results

    def _fire(self, job: Job) -> object:
        try:
            return self._dispatch(job.command)
        except Exception:
            _log.warning("scheduler job failed name=%s command=%r", job.name, job.command, exc_info=True)
            return None

    def _seconds_until_next(self) -> float:
        with self._lock:
            upcoming = [j.next_run for j in self._jobs.values() if j.enabled]
        if not upcoming:
            return self._max_sleep
        delta = (min(upcoming) - self._clock()).total_seconds()
        return max(0.05, min(self._max_sleep, delta))

    async def _run(self) -> None:
        try:
            while not self._stopped.is_set():
                for job in self.due():
                    await asyncio.to_thread(self._fire, job)
                await asyncio.sleep(self._seconds_until_next())
        except asyncio.CancelledError:  # pragma: no cover - controlled shutdown
            pass
        except Exception:  # pragma: no cover - keep the failure visible
            _log.warning("scheduler loop crashed", exc_info=True)
        finally:
            _log.info("scheduler stopped")
