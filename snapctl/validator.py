"""Post-batch validation and the single retry pass."""

from typing import List, Mapping, Optional, Sequence
from loguru import logger

from .client import ManagementClient
from .clock import Clock
from .config import OrchestratorConfig
from .errors import DispatchFailed, SnapctlError, ValidationMismatch
from .events import ProgressReporter
from .models import BatchResult, CreateAction, JobKind, Outcome, Phase, SnapshotDescriptor, Target


class OutcomeValidator:
    """Re-reads snapshot state after a batch and classifies each target."""

    def __init__(self, client: ManagementClient, config: OrchestratorConfig,
                 clock: Optional[Clock] = None, reporter: Optional[ProgressReporter] = None):
        self.client = client
        self.config = config
        self.clock = clock or Clock()
        self.reporter = reporter or ProgressReporter()

    def settle(self) -> bool:
        if self.config.settle_delay > 0:
            self.reporter.emit(Phase.SETTLE, f"waiting {self.config.settle_delay:g}s for state to settle")
        return self.clock.wait(self.config.settle_delay)

    def validate(self, targets: Sequence[Target], expected_name: str,
                 prior: Optional[BatchResult] = None) -> BatchResult:
        """Check every target for a snapshot named exactly ``expected_name``.

        Targets whose submission failed keep their dispatch result and are
        not re-checked. Everything else is judged by what the plane reports
        now, so a create that landed despite a failed poll counts as Success.
        """
        result = BatchResult(kind=JobKind.CREATE)
        if not self.settle():
            logger.warning("Validation cancelled during settle delay")
            if prior is not None:
                result.results.update(prior.results)
            return result

        for target in targets:
            previous = prior.results.get(target.id) if prior is not None else None
            if previous is not None and previous.error_kind == DispatchFailed.__name__:
                result.results[target.id] = previous
                continue
            try:
                snapshots = self.client.list_snapshots(target)
            except SnapctlError as e:
                result.record_failure(target.id, f"could not list snapshots: {e}", type(e).__name__)
                self.reporter.emit(Phase.VALIDATE, "failed", target.id, str(e))
                continue

            if any(s.name == expected_name for s in snapshots):
                result.record_success(target.id)
                self.reporter.emit(Phase.VALIDATE, "succeeded", target.id)
                continue

            error = ValidationMismatch(target.id, expected_name)
            diagnostic = error.reason
            if previous is not None and previous.outcome == Outcome.FAILED and previous.diagnostic:
                diagnostic = f"{previous.diagnostic}; {diagnostic}"
            result.record_failure(target.id, diagnostic, type(error).__name__)
            self.reporter.emit(Phase.VALIDATE, "failed", target.id, diagnostic)

        return result

    def retry_candidates(self, result: BatchResult, targets: Sequence[Target]) -> List[Target]:
        """Failed targets that a retry pass would resubmit.

        Targets outside ``targets`` (e.g. skipped by the power phase) and
        targets whose original submission failed are excluded.
        """
        by_id = {t.id: t for t in targets}
        return [
            by_id[target_id]
            for target_id in result.failed
            if target_id in by_id and result.results[target_id].error_kind != DispatchFailed.__name__
        ]

    def retry_failed(self, result: BatchResult, action: CreateAction,
                     targets: Sequence[Target]) -> List[str]:
        """Submit one more create for each retry candidate, without waiting.

        The retry's own outcome is not validated.
        """
        retried = []
        for target in self.retry_candidates(result, targets):
            target_id = target.id
            try:
                self.client.create_snapshot(target, action.name, action.description)
            except SnapctlError as e:
                logger.error("Retry submission for {} failed: {}", target.label, e)
                self.reporter.emit(Phase.RETRY, "submission failed", target_id, str(e))
                continue
            retried.append(target_id)
            self.reporter.emit(Phase.RETRY, "resubmitted", target_id)
        result.retried = retried
        return retried

    def validate_removals(self, targets: Sequence[Target],
                          removals: Mapping[str, Sequence[SnapshotDescriptor]],
                          result: BatchResult) -> BatchResult:
        """Fail any successful removal whose selected snapshots still exist."""
        if not self.settle():
            return result
        for target in targets:
            entry = result.results.get(target.id)
            if entry is None or entry.outcome != Outcome.SUCCESS:
                continue
            try:
                remaining = {s.name for s in self.client.list_snapshots(target)}
            except SnapctlError as e:
                result.record_failure(target.id, f"could not list snapshots: {e}", type(e).__name__)
                continue
            leftover = [s.name for s in removals.get(target.id, []) if s.name in remaining]
            if leftover:
                result.record_failure(
                    target.id,
                    f"snapshot(s) still present: {', '.join(leftover)}",
                    ValidationMismatch.__name__,
                )
                self.reporter.emit(Phase.VALIDATE, "failed", target.id, ", ".join(leftover))
            else:
                self.reporter.emit(Phase.VALIDATE, "succeeded", target.id)
        return result
