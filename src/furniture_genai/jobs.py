from __future__ import annotations

import asyncio
import logging
import time
import uuid
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Awaitable, Callable, Mapping

from furniture_genai.errors import (
    GenerationError,
    InvalidTransitionError,
    JobCancelledError,
    JobTimeoutError,
    TerminalBackendError,
    TransientBackendError,
)
from furniture_genai.models import GenerationJob, GenerationMethod, JobState, Size
from furniture_genai.providers.base import JobPoll, VideoBackend
from furniture_genai.provenance import ProvenanceRecorder

logger = logging.getLogger(__name__)

ARTIFACT_PATH = "/videos/{backend_job_id}/content"

TRANSITIONS: Mapping[JobState, frozenset[JobState]] = MappingProxyType(
    {
        JobState.CREATED: frozenset({JobState.SUBMITTED, JobState.FAILED, JobState.CANCELLED}),
        JobState.SUBMITTED: frozenset({JobState.POLLING, JobState.FAILED, JobState.CANCELLED}),
        JobState.POLLING: frozenset(
            {JobState.COMPLETED, JobState.FAILED, JobState.TIMED_OUT, JobState.CANCELLED}
        ),
        JobState.COMPLETED: frozenset(),
        JobState.FAILED: frozenset(),
        JobState.TIMED_OUT: frozenset(),
        JobState.CANCELLED: frozenset(),
    }
)

Sleep = Callable[[float], Awaitable[None]]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class JobLifecycleManager:
    """
    Drives long-running backend jobs from submission to a terminal state.

    created -> submitted -> polling -> completed | failed | timed_out
    Any non-terminal state may also move to cancelled (local only; the backend
    job keeps running) or to failed.

    Submission: transient errors are retried up to ``submit_attempts`` times,
    ``submit_retry_delay`` seconds apart. Anything else fails the job at once.

    Polling: the first poll happens right after submission, then every
    ``poll_interval`` seconds. A transient poll error uses up one attempt and
    polling carries on. After ``max_polls`` attempts without a terminal status
    the job is timed_out, which is not the same as failed.
    """

    def __init__(
        self,
        backend: VideoBackend,
        provenance: ProvenanceRecorder | None = None,
        poll_interval: float = 5.0,
        max_polls: int = 120,
        submit_attempts: int = 3,
        submit_retry_delay: float = 3.0,
        max_finished_jobs: int = 500,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.backend = backend
        self.provenance = provenance or ProvenanceRecorder()
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        self.submit_attempts = max(1, submit_attempts)
        self.submit_retry_delay = submit_retry_delay
        self.max_finished_jobs = max(0, max_finished_jobs)
        self._sleep = sleep
        self._clock = clock

        self._jobs: dict[str, GenerationJob] = {}
        self._tasks: dict[str, asyncio.Task[GenerationJob]] = {}
        self._cancel_events: dict[str, asyncio.Event] = {}
        self._errors: dict[str, GenerationError] = {}
        self._listeners: list[Callable[[GenerationJob], None]] = []

    def add_listener(self, callback: Callable[[GenerationJob], None]) -> None:
        """Call ``callback(job)`` whenever a job reaches a terminal state."""
        self._listeners.append(callback)

    # Registry

    def create(self, instruction: str, size: Size, duration_seconds: int) -> GenerationJob:
        job = GenerationJob(
            job_id=uuid.uuid4().hex,
            instruction=instruction,
            size=size,
            duration_seconds=duration_seconds,
            created_at=_now_iso(),
        )
        self._jobs[job.job_id] = job
        self._cancel_events[job.job_id] = asyncio.Event()
        self._evict_finished()
        return job

    def _evict_finished(self) -> None:
        # Oldest terminal jobs go first; dicts keep creation order.
        finished = [job_id for job_id, job in self._jobs.items() if job.state.terminal]
        excess = len(finished) - self.max_finished_jobs
        if excess <= 0:
            return
        for job_id in finished[:excess]:
            del self._jobs[job_id]
            self._cancel_events.pop(job_id, None)
            self._errors.pop(job_id, None)
            self._tasks.pop(job_id, None)
        logger.debug("Evicted %d finished job(s)", excess)

    def get(self, job_id: str) -> GenerationJob:
        try:
            return self._jobs[job_id]
        except KeyError:
            raise KeyError(f"unknown job {job_id}") from None

    def start(
        self,
        instruction: str,
        size: Size,
        duration_seconds: int,
        deadline_seconds: float | None = None,
    ) -> GenerationJob:
        """Create a job and drive it in the background. Returns immediately."""
        job = self.create(instruction, size, duration_seconds)
        task = asyncio.create_task(self.run(job, deadline_seconds), name=f"generation-job-{job.job_id}")
        self._tasks[job.job_id] = task
        task.add_done_callback(lambda _t, job_id=job.job_id: self._tasks.pop(job_id, None))
        return job

    async def wait(self, job_id: str, raise_on_error: bool = False) -> GenerationJob:
        job = self.get(job_id)
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.shield(task)
        if raise_on_error and job_id in self._errors:
            raise self._errors[job_id]
        return job

    def cancel(self, job_id: str) -> GenerationJob:
        job = self.get(job_id)
        if not job.state.terminal:
            logger.info("Cancelling job %s in state %s", job_id, job.state.value)
            self._cancel_events[job_id].set()
        return job

    # Lifecycle

    async def run(self, job: GenerationJob, deadline_seconds: float | None = None) -> GenerationJob:
        """Drive ``job`` inline until it reaches a terminal state. Never raises GenerationError."""
        if job.job_id not in self._jobs:
            self._jobs[job.job_id] = job
            self._cancel_events[job.job_id] = asyncio.Event()
        deadline = None if deadline_seconds is None else self._clock() + deadline_seconds
        t0 = self._clock()

        try:
            if self._cancel_events[job.job_id].is_set():
                raise JobCancelledError(f"job {job.job_id} was cancelled before submission")
            job.backend_job_id = await self._submit(job)
            self._transition(job, JobState.SUBMITTED)
            logger.info("Job %s submitted as %s after %d attempt(s)", job.job_id, job.backend_job_id, job.submission_attempts)
            self._check_cancelled(job)

            self._transition(job, JobState.POLLING)
            poll = await self._poll(job, deadline)
        except JobCancelledError as exc:
            self._finish(job, JobState.CANCELLED, exc)
        except JobTimeoutError as exc:
            logger.error("Job %s timed out after %d polls", job.job_id, job.poll_attempts)
            self._finish(job, JobState.TIMED_OUT, exc)
        except GenerationError as exc:
            logger.error("Job %s failed: %s", job.job_id, exc)
            self._finish(job, JobState.FAILED, exc)
        except asyncio.CancelledError:
            self._finish(job, JobState.CANCELLED, JobCancelledError(f"job {job.job_id} was cancelled"))
            raise
        else:
            job.artifact_handle = poll.artifact_handle or ARTIFACT_PATH.format(backend_job_id=job.backend_job_id)
            job.backend_duration_seconds = poll.duration_seconds
            job.backend_size = poll.size or str(job.size)
            job.source = self.provenance.source_for(
                GenerationMethod.TEXT_TO_IMAGE,
                self.backend.model,
                duration_ms=int((self._clock() - t0) * 1000),
            )
            self._finish(job, JobState.COMPLETED)
            logger.info("Job %s completed after %d polls: %s", job.job_id, job.poll_attempts, job.artifact_handle)
        return job

    async def _submit(self, job: GenerationJob) -> str:
        for attempt in range(1, self.submit_attempts + 1):
            job.submission_attempts = attempt
            try:
                return await self.backend.submit_job(job.instruction, job.size, job.duration_seconds)
            except TransientBackendError as exc:
                if attempt == self.submit_attempts:
                    raise
                logger.warning(
                    "Job %s submit attempt %d/%d failed (%s), retrying in %.1fs",
                    job.job_id,
                    attempt,
                    self.submit_attempts,
                    exc,
                    self.submit_retry_delay,
                )
                await self._wait(job, self.submit_retry_delay)
            except GenerationError:
                raise
            except Exception as exc:
                raise TerminalBackendError(f"{self.backend.name} submit failed: {exc}") from exc
        raise TerminalBackendError(f"job {job.job_id} was never submitted")

    async def _poll(self, job: GenerationJob, deadline: float | None) -> JobPoll:
        while job.poll_attempts < self.max_polls:
            if job.poll_attempts:
                self._check_deadline(job, deadline)
                await self._wait(job, self.poll_interval)
                self._check_deadline(job, deadline)
            self._check_cancelled(job)

            job.poll_attempts += 1
            try:
                poll = await self.backend.poll_job(job.backend_job_id)
            except TransientBackendError as exc:
                logger.warning("Job %s poll %d failed transiently: %s", job.job_id, job.poll_attempts, exc)
                continue
            except GenerationError:
                raise
            except Exception as exc:
                raise TerminalBackendError(f"{self.backend.name} poll failed: {exc}") from exc

            if poll.status == "completed":
                return poll
            if poll.status == "failed":
                raise TerminalBackendError(poll.error or "backend reported failure without a reason")
            logger.debug("Job %s still pending (poll %d, progress=%s)", job.job_id, job.poll_attempts, poll.progress)

        raise JobTimeoutError(f"job {job.job_id} did not finish after {self.max_polls} polls")

    def _check_cancelled(self, job: GenerationJob) -> None:
        if self._cancel_events[job.job_id].is_set():
            raise JobCancelledError(f"job {job.job_id} was cancelled")

    def _check_deadline(self, job: GenerationJob, deadline: float | None) -> None:
        if deadline is not None and self._clock() >= deadline:
            raise JobTimeoutError(f"job {job.job_id} exceeded its deadline after {job.poll_attempts} polls")

    async def _wait(self, job: GenerationJob, delay: float) -> None:
        # Races the sleep against the cancel event so cancel() takes effect mid-wait.
        event = self._cancel_events[job.job_id]
        if not event.is_set():
            sleeper = asyncio.ensure_future(self._sleep(delay))
            watcher = asyncio.ensure_future(event.wait())
            try:
                await asyncio.wait({sleeper, watcher}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for t in (sleeper, watcher):
                    if not t.done():
                        t.cancel()
        if event.is_set():
            raise JobCancelledError(f"job {job.job_id} was cancelled")

    def _transition(self, job: GenerationJob, target: JobState) -> None:
        if target not in TRANSITIONS[job.state]:
            raise InvalidTransitionError(f"job {job.job_id}: {job.state.value} -> {target.value} is not allowed")
        job.state = target
        job.history.append(target)

    def _finish(self, job: GenerationJob, target: JobState, exc: GenerationError | None = None) -> None:
        self._transition(job, target)
        job.finished_at = _now_iso()
        if exc is not None:
            job.error = exc.message
            job.error_kind = exc.kind
            self._errors[job.job_id] = exc
        for callback in self._listeners:
            try:
                callback(job)
            except Exception:
                logger.exception("Listener %r failed for job %s", callback, job.job_id)
