"""
Background task queue.
"""

from __future__ import annotations

from apscheduler.schedulers.background import BackgroundScheduler

from pjn_sync.services.task_queue import (
    InlineTaskQueue,
    SchedulerTaskQueue,
    _run_task,
    create_task_queue,
)


class TestInlineTaskQueue:
    def test_runs_immediately(self) -> None:
        seen = []
        queue = InlineTaskQueue()

        key = queue.enqueue("record", "record:1", lambda item: seen.append(item), item="x")

        assert key == "record:1"
        assert seen == ["x"]
        assert queue.executed == [{"name": "record", "key": "record:1", "kwargs": {"item": "x"}}]

    def test_failure_does_not_reach_caller(self) -> None:
        def boom():
            raise RuntimeError("task failed")

        queue = InlineTaskQueue()
        assert queue.enqueue("boom", "boom:1", boom) == "boom:1"
        assert queue.executed[0]["name"] == "boom"


class TestSchedulerTaskQueue:
    def test_same_key_collapses_into_one_job(self) -> None:
        scheduler = BackgroundScheduler(timezone="UTC")
        scheduler.start(paused=True)
        queue = SchedulerTaskQueue(scheduler)
        try:
            queue.enqueue("match_participant", "match_participant:p1", print, value=1)
            queue.enqueue("match_participant", "match_participant:p1", print, value=2)
            queue.enqueue("match_participant", "match_participant:p2", print, value=3)

            jobs = {job.id: job for job in scheduler.get_jobs()}
            assert set(jobs) == {"match_participant:p1", "match_participant:p2"}
            assert jobs["match_participant:p1"].kwargs["kwargs"] == {"value": 2}
        finally:
            queue.shutdown()
        assert queue.running is False

    def test_requests_during_a_run_become_one_follow_up(self) -> None:
        scheduler = BackgroundScheduler(timezone="UTC")
        scheduler.start(paused=True)
        queue = SchedulerTaskQueue(scheduler)
        seen = []
        jobs_during_run = []

        def sync(value):
            seen.append(value)
            queue.enqueue("sync_case", "sync_case:c1", sync, value=2)
            queue.enqueue("sync_case", "sync_case:c1", sync, value=3)
            jobs_during_run.extend(scheduler.get_jobs())

        try:
            queue._execute("sync_case", "sync_case:c1", sync, {"value": 1})

            assert seen == [1]
            assert jobs_during_run == []
            jobs = scheduler.get_jobs()
            assert [job.id for job in jobs] == ["sync_case:c1"]
            assert jobs[0].kwargs["kwargs"] == {"value": 3}
        finally:
            queue.shutdown()

    def test_overlapping_dispatch_is_deferred_not_run(self) -> None:
        scheduler = BackgroundScheduler(timezone="UTC")
        scheduler.start(paused=True)
        queue = SchedulerTaskQueue(scheduler)
        seen = []

        def outer():
            seen.append("outer")
            queue._execute("match_participant", "match_participant:p1", lambda: seen.append("inner"), {})

        try:
            queue._execute("match_participant", "match_participant:p1", outer, {})

            assert seen == ["outer"]
            assert [job.id for job in scheduler.get_jobs()] == ["match_participant:p1"]
        finally:
            queue.shutdown()

    def test_failed_run_still_releases_the_key(self) -> None:
        scheduler = BackgroundScheduler(timezone="UTC")
        scheduler.start(paused=True)
        queue = SchedulerTaskQueue(scheduler)

        def boom():
            raise RuntimeError("task failed")

        try:
            queue._execute("boom", "boom:1", boom, {})
            queue.enqueue("boom", "boom:1", boom)

            assert [job.id for job in scheduler.get_jobs()] == ["boom:1"]
        finally:
            queue.shutdown()

    def test_run_task_swallows_errors(self) -> None:
        calls = []

        def flaky(n):
            calls.append(n)
            raise ValueError("nope")

        _run_task("flaky", "flaky:1", flaky, {"n": 1})
        assert calls == [1]


def test_factory_modes() -> None:
    assert isinstance(create_task_queue("inline"), InlineTaskQueue)
    assert isinstance(create_task_queue("scheduler"), SchedulerTaskQueue)
