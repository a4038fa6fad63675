"""Deferred execution of lifecycle actions.

A job runs its action exactly once and reconciles the operation state store
with the outcome. Both runners expose the same ``submit`` interface and hand
back a ``concurrent.futures.Future``: the inline runner returns one that is
already resolved, the thread-pool runner one that resolves when a worker is
done.

Whatever happens inside the action, the job leaves the operation in a
terminal state and releases any parent scope lock it holds.
"""
from __future__ import annotations
import logging
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional

from app.core.lifecycle.actions import ActionOutcome, LifecycleAction
from app.core.lifecycle.models import OperationState
from app.core.lifecycle.operations import OperationStateStore, ScopeLock

logger = logging.getLogger(__name__)

GENERIC_FAILURE_DETAIL = "Operation failed: an unexpected error occurred."


def _generate_job_id() -> str:
    return f"job-{uuid.uuid4().hex[:8]}"


@dataclass
class ActionJob:
    """One action bound to the resource whose operation it reports on.

    Attributes:
        action: Work to perform
        resource_guid: Resource whose operation record is completed
        scope_lock: Lock held on the owning instance (service keys only)
        job_id: Identifier for log correlation
    """

    action: LifecycleAction
    resource_guid: str
    scope_lock: Optional[ScopeLock] = None
    job_id: str = field(default_factory=_generate_job_id)


def perform(job: ActionJob, store: OperationStateStore) -> ActionOutcome:
    """Execute a job and record its outcome.

    Never raises for failures of the action itself; state store errors while
    recording the outcome do propagate (after the scope lock is released).
    """
    try:
        try:
            outcome = job.action.execute()
        except Exception:
            logger.exception(f"[{job.job_id}] {job.action.kind.value} of {job.resource_guid} crashed")
            outcome = ActionOutcome.errored(GENERIC_FAILURE_DETAIL)

        if outcome.done:
            store.complete_operation(job.resource_guid, OperationState.SUCCEEDED, outcome.description)
            if outcome.resource_deleted:
                store.clear_operation(job.resource_guid)
            logger.info(f"[{job.job_id}] {job.action.kind.value} of {job.resource_guid} succeeded")
        else:
            store.complete_operation(job.resource_guid, OperationState.FAILED, outcome.detail)
            logger.warning(f"[{job.job_id}] {job.action.kind.value} of {job.resource_guid} failed: {outcome.detail}")
        return outcome
    finally:
        if job.scope_lock is not None:
            job.scope_lock.release()


class JobRunner:
    """Interface shared by the execution backends."""

    is_async = False

    def __init__(self, store: OperationStateStore):
        self.store = store

    def submit(self, job: ActionJob) -> "Future[ActionOutcome]":
        raise NotImplementedError

    def shutdown(self, wait: bool = True) -> None:
        pass


class InlineJobRunner(JobRunner):
    """Runs jobs in the caller's thread."""

    def submit(self, job: ActionJob) -> "Future[ActionOutcome]":
        future: Future = Future()
        try:
            future.set_result(perform(job, self.store))
        except Exception as exc:
            future.set_exception(exc)
        return future


class ThreadPoolJobRunner(JobRunner):
    """Runs jobs on a bounded pool of worker threads.

    Failures are only visible through the persisted operation state (and the
    returned future, for callers that choose to wait).
    """

    is_async = True

    def __init__(self, store: OperationStateStore, max_workers: int = 4):
        super().__init__(store)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="lifecycle-job")

    def submit(self, job: ActionJob) -> "Future[ActionOutcome]":
        logger.debug(f"[{job.job_id}] queued {job.action.kind.value} of {job.resource_guid}")
        future = self._executor.submit(perform, job, self.store)
        future.add_done_callback(_log_unexpected_failure(job))
        return future

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def _log_unexpected_failure(job: ActionJob):
    def _callback(future: Future) -> None:
        exc = future.exception()
        if exc is not None:
            logger.error(f"[{job.job_id}] could not record outcome for {job.resource_guid}: {exc}")
    return _callback


def make_job_runner(store: OperationStateStore, mode: str = "inline", workers: int = 4) -> JobRunner:
    """Build the runner selected by configuration (``inline`` or ``async``)."""
    if mode == "async":
        return ThreadPoolJobRunner(store, max_workers=workers)
    if mode == "inline":
        return InlineJobRunner(store)
    raise ValueError(f"Unknown job execution mode: {mode!r}")
