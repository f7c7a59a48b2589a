"""Background execution of slide conversions."""

from __future__ import annotations

import contextlib
import logging
import threading
import time
import uuid
from collections import OrderedDict
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional

from .events import emit_task_event
from .ingestion import UploadOrchestrator, UploadOutcome, UploadPlan, UploadState


LOGGER = logging.getLogger(__name__)


JobStatus = Literal["queued", "running", "succeeded", "failed"]


@dataclass
class ConversionJob:
    """Represents a slide conversion scheduled on the worker."""

    id: str
    project_id: str
    filename: str
    status: JobStatus = "queued"
    created_at: float = field(default_factory=time.time)
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    set_id: Optional[str] = None
    pages_done: int = 0
    pages_total: Optional[int] = None
    error: Optional[str] = None

    def mark_running(self) -> None:
        self.status = "running"
        self.started_at = time.time()
        self.error = None

    def mark_finished(self, outcome: UploadOutcome) -> None:
        self.status = "succeeded"
        self.completed_at = time.time()
        self.set_id = outcome.slide_set.set_id if outcome.slide_set else None
        self.pages_total = outcome.page_count
        self.pages_done = outcome.page_count

    def mark_failed(self, message: str, *, set_id: Optional[str] = None) -> None:
        self.status = "failed"
        self.completed_at = time.time()
        self.set_id = set_id
        self.error = message

    @property
    def done(self) -> bool:
        return self.status in {"succeeded", "failed"}


def _close_stream(plan: UploadPlan) -> None:
    with contextlib.suppress(OSError, ValueError):
        plan.document.stream.close()


class ConversionJobQueue:
    """FIFO queue that runs conversions one at a time on a worker thread."""

    def __init__(self, orchestrator: UploadOrchestrator, *, history_limit: int = 200) -> None:
        self._orchestrator = orchestrator
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="slide-conversion")
        self._jobs: "OrderedDict[str, ConversionJob]" = OrderedDict()
        self._futures: Dict[str, Future] = {}
        self._plans: Dict[str, UploadPlan] = {}
        self._lock = threading.Lock()
        self._history_limit = history_limit

    def enqueue(self, plan: UploadPlan) -> ConversionJob:
        job = ConversionJob(
            id=uuid.uuid4().hex,
            project_id=plan.project_id,
            filename=plan.document.base_name,
        )
        with self._lock:
            self._jobs[job.id] = job
            self._plans[job.id] = plan
            self._prune_history_locked()
            self._futures[job.id] = self._executor.submit(self._process, job, plan)
        emit_task_event(
            "queued",
            "Slide conversion queued",
            payload={"job_id": job.id, "project_id": job.project_id, "filename": job.filename},
        )
        return job

    def get(self, job_id: str) -> Optional[ConversionJob]:
        with self._lock:
            return self._jobs.get(job_id)

    def list(self) -> List[ConversionJob]:
        with self._lock:
            return list(self._jobs.values())

    def wait(self, job_id: str, timeout: Optional[float] = None) -> Optional[ConversionJob]:
        """Block until *job_id* completes (or *timeout* elapses) and return it."""

        with self._lock:
            future = self._futures.get(job_id)
        if future is not None:
            try:
                future.result(timeout=timeout)
            except FutureTimeoutError:
                LOGGER.debug("Timed out waiting for job %s", job_id)
            except CancelledError:
                LOGGER.debug("Job %s was cancelled before it started", job_id)
        return self.get(job_id)

    def shutdown(self, *, wait: bool = True) -> None:
        """Stop the worker, failing jobs that never got to run."""

        self._executor.shutdown(wait=wait, cancel_futures=True)
        cancelled: List[ConversionJob] = []
        with self._lock:
            for job_id, future in self._futures.items():
                job = self._jobs.get(job_id)
                if not future.cancelled() or job is None or job.done:
                    continue
                job.mark_failed("Server shut down before the conversion started")
                cancelled.append(job)
                plan = self._plans.pop(job_id, None)
                if plan is not None:
                    _close_stream(plan)
        for job in cancelled:
            emit_task_event(
                "failed",
                "Slide conversion cancelled by shutdown",
                payload={"job_id": job.id, "project_id": job.project_id},
                level=logging.WARNING,
            )

    def _process(self, job: ConversionJob, plan: UploadPlan) -> None:
        with self._lock:
            job.mark_running()

        def _progress(done: int, total: int) -> None:
            with self._lock:
                job.pages_done = done
                job.pages_total = total

        try:
            outcome = self._orchestrator.run(plan, progress_callback=_progress)
        except Exception as error:  # noqa: BLE001 - surface task failure
            LOGGER.exception("Conversion job %s crashed", job.id)
            with self._lock:
                job.mark_failed(str(error) or "Conversion failed")
            return
        finally:
            with self._lock:
                self._plans.pop(job.id, None)
            _close_stream(plan)

        with self._lock:
            if outcome.state is UploadState.READY:
                job.mark_finished(outcome)
            else:
                job.mark_failed(
                    outcome.message,
                    set_id=outcome.slide_set.set_id if outcome.slide_set else None,
                )
        emit_task_event(
            job.status,
            "Slide conversion job finished",
            payload={"job_id": job.id, "project_id": job.project_id, "set_id": job.set_id},
            duration_ms=((job.completed_at or time.time()) - (job.started_at or job.created_at))
            * 1000.0,
        )

    def _prune_history_locked(self) -> None:
        while len(self._jobs) > self._history_limit:
            oldest_id, oldest = next(iter(self._jobs.items()))
            if not oldest.done:
                break
            self._jobs.pop(oldest_id)
            self._futures.pop(oldest_id, None)
            self._plans.pop(oldest_id, None)


__all__ = ["ConversionJob", "ConversionJobQueue", "JobStatus"]
