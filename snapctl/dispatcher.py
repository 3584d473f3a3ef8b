"""Submission and polling of snapshot jobs under a concurrency cap."""

from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union
from loguru import logger

from .client import ManagementClient
from .clock import Clock
from .config import OrchestratorConfig
from .errors import DispatchFailed, SnapctlError
from .events import ProgressReporter
from .models import (
    BatchResult,
    CreateAction,
    Job,
    JobKind,
    JobStatus,
    Phase,
    RemoveAction,
    SnapshotDescriptor,
    Target,
    utcnow,
)


class InvalidTransition(Exception):
    """A job was moved out of a terminal state."""


class JobDispatcher:
    """Submits one job per target and polls until the batch drains.

    Admission control only: a new job is submitted when fewer than
    ``max_concurrent_jobs`` jobs are Pending or Running. Submission order is
    the target order. No retries happen here.
    """

    def __init__(self, client: ManagementClient, config: OrchestratorConfig,
                 clock: Optional[Clock] = None, reporter: Optional[ProgressReporter] = None):
        self.client = client
        self.config = config
        self.clock = clock or Clock()
        self.reporter = reporter or ProgressReporter()
        self.jobs: List[Job] = []
        self.peak_outstanding = 0

    # Job state transitions

    def mark_running(self, job: Job) -> None:
        if job.status != JobStatus.PENDING:
            raise InvalidTransition(f"job {job.id} is {job.status.value}, expected Pending")
        job.status = JobStatus.RUNNING
        job.submitted_at = utcnow()
        job.submitted_tick = self.clock.now()

    def mark_succeeded(self, job: Job) -> None:
        if job.status != JobStatus.RUNNING:
            raise InvalidTransition(f"job {job.id} is {job.status.value}, expected Running")
        job.status = JobStatus.SUCCEEDED
        job.error = None

    def mark_failed(self, job: Job, error_message: str, error_kind: Optional[str] = None) -> None:
        if job.status.is_terminal:
            raise InvalidTransition(f"job {job.id} is already {job.status.value}")
        job.status = JobStatus.FAILED
        job.error = error_message
        job.error_kind = error_kind

    # Batch

    def run_batch(self, targets: Sequence[Target], action: Union[CreateAction, RemoveAction],
                  removals: Optional[Mapping[str, Sequence[SnapshotDescriptor]]] = None) -> BatchResult:
        kind = action.job_kind
        interval = (
            self.config.create_poll_interval if kind == JobKind.CREATE
            else self.config.remove_poll_interval
        )
        cap = self.config.max_concurrent_jobs
        result = BatchResult(kind=kind)
        outstanding: Dict[str, Tuple[Job, Target]] = {}

        for target in targets:
            if target.id in outstanding or target.id in result.results:
                logger.warning("Target {} appears twice in the batch; ignoring the repeat", target.id)
                continue

            selection: List[SnapshotDescriptor] = []
            if kind == JobKind.REMOVE:
                selection = list((removals or {}).get(target.id) or [])
                if not selection:
                    continue

            while len(outstanding) >= cap and not self.clock.cancelled:
                self._refresh(outstanding, result)
                if len(outstanding) >= cap:
                    self.clock.wait(interval)

            if self.clock.cancelled:
                result.record_failure(target.id, "cancelled before submission", "Cancelled")
                continue

            job = Job(
                target_id=target.id,
                kind=kind,
                remove_count=len(selection),
                snapshots=selection,
            )
            self.jobs.append(job)
            self._submit(job, target, action, result)
            if not job.status.is_terminal:
                outstanding[target.id] = (job, target)
            self.peak_outstanding = max(self.peak_outstanding, len(outstanding))

        while outstanding:
            if not self.clock.wait(interval):
                for job, target in outstanding.values():
                    self.mark_failed(job, "cancelled while waiting for completion", "Cancelled")
                    result.record_failure(target.id, job.error, job.error_kind)
                    self.reporter.emit(Phase.POLL, "cancelled", target.id)
                outstanding.clear()
                break
            self._refresh(outstanding, result)

        return result

    def _submit(self, job: Job, target: Target, action: Union[CreateAction, RemoveAction],
                result: BatchResult) -> None:
        try:
            if job.kind == JobKind.CREATE:
                job.handle = self.client.create_snapshot(target, action.name, action.description)
            else:
                job.handle = self.client.delete_snapshots(target, job.snapshots)
        except SnapctlError as e:
            error = DispatchFailed(target.id, str(e))
            logger.error("Submission for {} failed: {}", target.label, e)
            self.mark_failed(job, error.reason, type(error).__name__)
            result.record_failure(target.id, job.error, job.error_kind)
            self.reporter.emit(Phase.DISPATCH, "submission failed", target.id, error.reason)
            return

        self.mark_running(job)
        if job.kind == JobKind.CREATE:
            detail = f"creating '{action.name}'"
        else:
            detail = f"removing {job.remove_count} snapshot(s): {', '.join(s.name for s in job.snapshots)}"
        self.reporter.emit(Phase.DISPATCH, "submitted", target.id, detail)

    def _refresh(self, outstanding: Dict[str, Tuple[Job, Target]], result: BatchResult) -> None:
        """Poll every outstanding job once and retire the finished ones."""
        for target_id, (job, target) in list(outstanding.items()):
            try:
                status = self.client.poll_job(job.handle)
            except SnapctlError as e:
                logger.warning("Polling {} failed: {}", target.label, e)
                self.mark_failed(job, f"status poll failed: {e}", type(e).__name__)
            else:
                if status == JobStatus.SUCCEEDED:
                    self.mark_succeeded(job)
                elif status == JobStatus.FAILED:
                    self.mark_failed(job, "remote task failed", "TaskFailed")
                elif self.clock.now() - job.submitted_tick >= self.config.job_timeout:
                    self.mark_failed(
                        job, f"timed out after {self.config.job_timeout:g}s", "Timeout"
                    )

            if not job.status.is_terminal:
                continue
            del outstanding[target_id]
            if job.status == JobStatus.SUCCEEDED:
                if job.kind == JobKind.CREATE:
                    result.record_success(target_id)
                else:
                    result.record_success(target_id, f"removed {job.remove_count} snapshot(s)")
                self.reporter.emit(Phase.POLL, "succeeded", target_id)
            else:
                result.record_failure(target_id, job.error, job.error_kind)
                self.reporter.emit(Phase.POLL, "failed", target_id, job.error)
