"""
Tests for the JobLifecycleManager state machine, retry budgets and timing.
"""
import asyncio

import pytest

from fakes import FakeVideoBackend

from furniture_genai.errors import (
    InvalidTransitionError,
    JobTimeoutError,
    TerminalBackendError,
    TransientBackendError,
)
from furniture_genai.jobs import JobLifecycleManager
from furniture_genai.models import GenerationMethod, JobState, Size
from furniture_genai.providers.base import JobPoll

SIZE = Size(1280, 720)
PENDING = None  # an empty script slot means "pending"


def completed(**kw):
    return JobPoll(status="completed", duration_seconds=kw.get("seconds", 4.0), size=kw.get("size", "1280x720"))


def failed(reason):
    return JobPoll(status="failed", error=reason)


def make_manager(backend, sleep, clock, **kw):
    return JobLifecycleManager(backend, sleep=sleep, clock=clock, **kw)


async def run_job(manager, deadline_seconds=None):
    job = manager.create("a cinematic ad", SIZE, 4)
    return await manager.run(job, deadline_seconds)


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_completes_on_third_poll(self, sleep, clock):
        backend = FakeVideoBackend(poll_script=[PENDING, PENDING, completed()])
        job = await run_job(make_manager(backend, sleep, clock))

        assert job.state is JobState.COMPLETED
        assert job.history == [JobState.CREATED, JobState.SUBMITTED, JobState.POLLING, JobState.COMPLETED]
        assert job.poll_attempts == 3
        assert len(backend.poll_calls) == 3
        assert sleep.delays == [5.0, 5.0]

    @pytest.mark.asyncio
    async def test_records_artifact_and_backend_metadata(self, sleep, clock):
        backend = FakeVideoBackend(submit_script=["video_abc"], poll_script=[completed(seconds=8.0, size="720x1280")])
        job = await run_job(make_manager(backend, sleep, clock))

        assert job.backend_job_id == "video_abc"
        assert job.artifact_handle == "/videos/video_abc/content"
        assert job.backend_duration_seconds == 8.0
        assert job.backend_size == "720x1280"
        assert job.source.method is GenerationMethod.TEXT_TO_IMAGE
        assert job.source.model == "fake-video-1"
        assert job.finished_at is not None
        assert job.error is None

    @pytest.mark.asyncio
    async def test_counters_do_not_leak_between_jobs(self, sleep, clock):
        backend = FakeVideoBackend(poll_script=[PENDING, completed(), completed()])
        manager = make_manager(backend, sleep, clock)
        first = await run_job(manager)
        second = await run_job(manager)
        assert (first.poll_attempts, second.poll_attempts) == (2, 1)
        assert first.job_id != second.job_id


class TestSubmission:
    @pytest.mark.asyncio
    async def test_transient_submit_errors_are_retried(self, sleep, clock):
        backend = FakeVideoBackend(
            submit_script=[TransientBackendError("502"), TransientBackendError("520"), "video_ok"],
            poll_script=[completed()],
        )
        job = await run_job(make_manager(backend, sleep, clock))

        assert job.state is JobState.COMPLETED
        assert job.submission_attempts == 3
        assert sleep.delays == [3.0, 3.0]

    @pytest.mark.asyncio
    async def test_transient_exhaustion_fails(self, sleep, clock):
        backend = FakeVideoBackend(submit_script=[TransientBackendError("503")] * 3)
        job = await run_job(make_manager(backend, sleep, clock))

        assert job.state is JobState.FAILED
        assert job.submission_attempts == 3
        assert job.error_kind == "transient_backend"
        assert backend.poll_calls == []

    @pytest.mark.asyncio
    async def test_terminal_submit_error_fails_immediately(self, sleep, clock):
        backend = FakeVideoBackend(submit_script=[TerminalBackendError("invalid size", status_code=400)])
        job = await run_job(make_manager(backend, sleep, clock))

        assert job.state is JobState.FAILED
        assert job.submission_attempts == 1
        assert job.history == [JobState.CREATED, JobState.FAILED]
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_unexpected_submit_error_is_terminal(self, sleep, clock):
        backend = FakeVideoBackend(submit_script=[RuntimeError("socket closed")])
        job = await run_job(make_manager(backend, sleep, clock))
        assert job.state is JobState.FAILED
        assert job.error_kind == "terminal_backend"


class TestPolling:
    @pytest.mark.asyncio
    async def test_backend_failure_reason_is_propagated(self, sleep, clock):
        backend = FakeVideoBackend(poll_script=[PENDING, failed("content policy violation")])
        manager = make_manager(backend, sleep, clock)
        job = await run_job(manager)

        assert job.state is JobState.FAILED
        assert job.error == "content policy violation"
        assert job.error_kind == "terminal_backend"
        with pytest.raises(TerminalBackendError, match="content policy violation"):
            await manager.wait(job.job_id, raise_on_error=True)

    @pytest.mark.asyncio
    async def test_transient_poll_error_uses_an_attempt(self, sleep, clock):
        backend = FakeVideoBackend(poll_script=[TransientBackendError("520"), completed()])
        job = await run_job(make_manager(backend, sleep, clock))

        assert job.state is JobState.COMPLETED
        assert job.poll_attempts == 2
        assert sleep.delays == [5.0]

    @pytest.mark.asyncio
    async def test_terminal_poll_error_fails(self, sleep, clock):
        backend = FakeVideoBackend(poll_script=[TerminalBackendError("404 not found", status_code=404)])
        job = await run_job(make_manager(backend, sleep, clock))
        assert job.state is JobState.FAILED
        assert job.poll_attempts == 1

    @pytest.mark.asyncio
    async def test_times_out_after_exactly_120_polls(self, sleep, clock):
        backend = FakeVideoBackend()
        manager = make_manager(backend, sleep, clock)
        job = await run_job(manager)

        assert job.state is JobState.TIMED_OUT
        assert job.poll_attempts == 120
        assert len(backend.poll_calls) == 120
        assert len(sleep.delays) == 119
        assert job.error_kind == "timeout"
        with pytest.raises(JobTimeoutError) as excinfo:
            await manager.wait(job.job_id, raise_on_error=True)
        assert isinstance(excinfo.value, TimeoutError)

    @pytest.mark.asyncio
    async def test_transient_errors_count_toward_the_budget(self, sleep, clock):
        backend = FakeVideoBackend(poll_script=[TransientBackendError("520")] * 5)
        job = await run_job(make_manager(backend, sleep, clock, max_polls=5))
        assert job.state is JobState.TIMED_OUT
        assert job.poll_attempts == 5

    @pytest.mark.asyncio
    async def test_deadline_times_out_between_polls(self, sleep, clock):
        backend = FakeVideoBackend()
        job = await run_job(make_manager(backend, sleep, clock), deadline_seconds=12)
        # polls at t=0, 5, 10; the wait to t=15 passes the deadline
        assert job.state is JobState.TIMED_OUT
        assert job.poll_attempts == 3


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_stops_polling(self, sleep, clock):
        holder = {}

        def on_poll(n):
            if n == 2:
                holder["manager"].cancel(holder["job"].job_id)

        backend = FakeVideoBackend(on_poll=on_poll)
        manager = make_manager(backend, sleep, clock)
        holder["manager"] = manager
        holder["job"] = manager.create("a cinematic ad", SIZE, 4)
        job = await manager.run(holder["job"])

        assert job.state is JobState.CANCELLED
        assert job.poll_attempts == 2
        assert len(backend.poll_calls) == 2

    @pytest.mark.asyncio
    async def test_cancel_interrupts_a_long_wait(self, clock):
        backend = FakeVideoBackend()
        manager = JobLifecycleManager(backend, poll_interval=3600, clock=clock)
        job = manager.start("a cinematic ad", SIZE, 4)
        while not backend.poll_calls:
            await asyncio.sleep(0)

        manager.cancel(job.job_id)
        finished = await asyncio.wait_for(manager.wait(job.job_id), timeout=1)
        assert finished.state is JobState.CANCELLED
        assert len(backend.poll_calls) == 1

    @pytest.mark.asyncio
    async def test_cancel_during_submission_skips_polling(self, sleep, clock):
        holder = {}
        backend = FakeVideoBackend(
            poll_script=[completed()],
            on_submit=lambda n: holder["manager"].cancel(holder["job"].job_id),
        )
        manager = make_manager(backend, sleep, clock)
        holder["manager"] = manager
        holder["job"] = manager.create("a cinematic ad", SIZE, 4)
        job = await manager.run(holder["job"])

        assert job.state is JobState.CANCELLED
        assert job.history == [JobState.CREATED, JobState.SUBMITTED, JobState.CANCELLED]
        assert job.backend_job_id == "video_123"
        assert backend.poll_calls == []
        assert job.artifact_handle is None

    @pytest.mark.asyncio
    async def test_cancel_on_finished_job_is_a_no_op(self, sleep, clock):
        backend = FakeVideoBackend(poll_script=[completed()])
        manager = make_manager(backend, sleep, clock)
        job = await run_job(manager)
        assert manager.cancel(job.job_id).state is JobState.COMPLETED


class TestRegistry:
    @pytest.mark.asyncio
    async def test_start_returns_immediately(self, sleep, clock):
        backend = FakeVideoBackend(poll_script=[PENDING, completed()])
        manager = make_manager(backend, sleep, clock)
        job = manager.start("a cinematic ad", SIZE, 4)
        assert job.state is JobState.CREATED
        assert manager.get(job.job_id) is job

        done = await manager.wait(job.job_id)
        assert done.state is JobState.COMPLETED

    def test_unknown_job(self, video_backend):
        with pytest.raises(KeyError):
            JobLifecycleManager(video_backend).get("missing")

    @pytest.mark.asyncio
    async def test_listeners_see_terminal_jobs(self, sleep, clock):
        seen = []
        manager = make_manager(FakeVideoBackend(poll_script=[completed()]), sleep, clock)
        manager.add_listener(lambda job: seen.append(job.state))
        await run_job(manager)
        assert seen == [JobState.COMPLETED]

    def test_illegal_transition(self, video_backend):
        manager = JobLifecycleManager(video_backend)
        job = manager.create("x", SIZE, 4)
        with pytest.raises(InvalidTransitionError):
            manager._transition(job, JobState.COMPLETED)

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_the_job(self, sleep, clock):
        seen = []

        def broken(job):
            raise RuntimeError("usage sink down")

        manager = make_manager(FakeVideoBackend(poll_script=[completed()]), sleep, clock)
        manager.add_listener(broken)
        manager.add_listener(lambda job: seen.append(job.state))
        job = await run_job(manager)
        assert job.state is JobState.COMPLETED
        assert seen == [JobState.COMPLETED]


class TestEviction:
    @pytest.mark.asyncio
    async def test_oldest_finished_jobs_are_dropped(self, sleep, clock):
        backend = FakeVideoBackend(poll_script=[completed(), completed(), completed()])
        manager = make_manager(backend, sleep, clock, max_finished_jobs=2)
        first = await run_job(manager)
        second = await run_job(manager)
        third = await run_job(manager)

        fresh = manager.create("another ad", SIZE, 4)
        with pytest.raises(KeyError):
            manager.get(first.job_id)
        for job in (second, third, fresh):
            assert manager.get(job.job_id) is job

    def test_unfinished_jobs_are_kept(self, video_backend):
        manager = JobLifecycleManager(video_backend, max_finished_jobs=0)
        pending = manager.create("x", SIZE, 4)
        manager.create("y", SIZE, 4)
        assert manager.get(pending.job_id) is pending

    @pytest.mark.asyncio
    async def test_task_is_released_when_done(self, sleep, clock):
        manager = make_manager(FakeVideoBackend(poll_script=[completed()]), sleep, clock)
        job = manager.start("a cinematic ad", SIZE, 4)
        await manager.wait(job.job_id)
        await asyncio.sleep(0)
        assert job.job_id not in manager._tasks
        assert (await manager.wait(job.job_id)).state is JobState.COMPLETED
