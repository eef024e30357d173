"""
services/task_queue.py

Fire-and-forget work decoupled from the request that produced it
(participant matching after ingestion, case syncs triggered over HTTP).

Two implementations behind the same ``enqueue(name, key, func, **kwargs)``:

  * SchedulerTaskQueue: APScheduler ``BackgroundScheduler``; the dedupe key
    is the job id, so a task enqueued again before it runs collapses into
    the one pending job, and one enqueued while it runs becomes a single
    follow-up run.
  * InlineTaskQueue: runs the task on the spot (development, tests).

Consumers must be idempotent: a redelivered task has to converge.

Setup (FastAPI lifespan, see pjn_sync.main):

    from pjn_sync.services.task_queue import task_queue

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        task_queue.start()
        yield
        task_queue.shutdown()
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Set, Tuple

from apscheduler.events import EVENT_JOB_MAX_INSTANCES, JobExecutionEvent
from apscheduler.schedulers.background import BackgroundScheduler

from pjn_sync.core.config import settings

logger = logging.getLogger(__name__)


class InlineTaskQueue:
    def __init__(self):
        self.executed: List[Dict[str, Any]] = []

    def start(self) -> None:
        pass

    def shutdown(self) -> None:
        pass

    def enqueue(self, name: str, key: str, func: Callable[..., Any], **kwargs: Any) -> str:
        logger.info("Running task inline", extra={"task": name, "key": key})
        try:
            func(**kwargs)
        except Exception:
            # Same contract as the scheduler: a failing task never reaches the caller.
            logger.exception("Inline task failed", extra={"task": name, "key": key})
        self.executed.append({"name": name, "key": key, "kwargs": kwargs})
        return key


class SchedulerTaskQueue:
    def __init__(self, scheduler: BackgroundScheduler | None = None):
        self._scheduler = scheduler or BackgroundScheduler(timezone="UTC")
        self._scheduler.add_listener(_log_dropped_run, EVENT_JOB_MAX_INSTANCES)
        self._lock = threading.Lock()
        self._running: Set[str] = set()
        # key -> (name, func, kwargs) of the run requested while ``key`` was executing
        self._followups: Dict[str, Tuple[str, Callable[..., Any], Dict[str, Any]]] = {}

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Task queue scheduler started")

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Task queue scheduler shut down")

    def enqueue(self, name: str, key: str, func: Callable[..., Any], **kwargs: Any) -> str:
        """
        Schedule ``func`` under ``key``. While a run for ``key`` is executing,
        further requests coalesce into a single follow-up run (latest kwargs
        win) started once the current one finishes.
        """
        with self._lock:
            if key in self._running:
                self._followups[key] = (name, func, kwargs)
                logger.info("Task running, follow-up queued", extra={"task": name, "key": key})
                return key
            self._add_job(name, key, func, kwargs)
        logger.info("Task enqueued", extra={"task": name, "key": key})
        return key

    def _add_job(self, name: str, key: str, func: Callable[..., Any], kwargs: Dict[str, Any]) -> None:
        self._scheduler.add_job(
            self._execute,
            trigger="date",
            run_date=datetime.utcnow(),
            id=key,
            name=name,
            kwargs={"name": name, "key": key, "func": func, "kwargs": kwargs},
            replace_existing=True,
            max_instances=2,
            misfire_grace_time=300,
        )

    def _execute(self, name: str, key: str, func: Callable[..., Any], kwargs: Dict[str, Any]) -> None:
        with self._lock:
            if key in self._running:
                # a second dispatch of a key whose run has not finished
                self._followups[key] = (name, func, kwargs)
                logger.info("Task already running, deferred to follow-up", extra={"task": name, "key": key})
                return
            self._running.add(key)
        try:
            _run_task(name, key, func, kwargs)
        finally:
            with self._lock:
                self._running.discard(key)
                followup = self._followups.pop(key, None)
                if followup is not None:
                    follow_name, follow_func, follow_kwargs = followup
                    self._add_job(follow_name, key, follow_func, follow_kwargs)
            if followup is not None:
                logger.info("Follow-up task enqueued", extra={"task": followup[0], "key": key})


def _log_dropped_run(event: JobExecutionEvent) -> None:
    logger.warning("Task run dropped, previous run still active", extra={"key": event.job_id})


def _run_task(name: str, key: str, func: Callable[..., Any], kwargs: Dict[str, Any]) -> None:
    logger.info("Task starting", extra={"task": name, "key": key})
    try:
        func(**kwargs)
    except Exception:
        logger.exception("Task failed", extra={"task": name, "key": key})
        return
    logger.info("Task completed", extra={"task": name, "key": key})


def create_task_queue(mode: str | None = None):
    mode = (mode or settings.TASK_QUEUE_MODE).lower()
    if mode == "inline":
        return InlineTaskQueue()
    return SchedulerTaskQueue()


task_queue = create_task_queue()
