"""Run create and prune batches end to end."""

from typing import Callable, Dict, Iterable, List, Optional, Union
from loguru import logger

from .client import ManagementClient
from .clock import Clock
from .config import OrchestratorConfig
from .dispatcher import JobDispatcher
from .errors import PowerTransitionFailed, SnapctlError
from .events import ProgressCallback, ProgressReporter
from .inventory import InventoryResolver
from .models import (
    BatchResult,
    CreateAction,
    NoopReason,
    Phase,
    RemoveAction,
    SnapshotDescriptor,
    Target,
)
from .power import PowerManager
from . import retention
from .validator import OutcomeValidator


ConfirmCallback = Callable[[BatchResult], bool]


def _always_confirm(result: BatchResult) -> bool:
    return True


class SnapshotOrchestrator:
    """Inventory, power prerequisites, dispatch, validation and restore.

    ``confirm`` is asked before the create-path retry pass; returning False
    skips it. Each run clears any earlier cancellation and builds a fresh
    reporter and phase objects, so an instance can run several batches.
    """

    def __init__(self, client: ManagementClient, config: Optional[OrchestratorConfig] = None,
                 clock: Optional[Clock] = None, progress: Optional[ProgressCallback] = None,
                 confirm: Optional[ConfirmCallback] = None):
        self.client = client
        self.config = config or OrchestratorConfig()
        self.clock = clock or Clock()
        self.progress = progress
        self.reporter = ProgressReporter(progress)
        self.confirm = confirm or _always_confirm
        self.inventory = InventoryResolver(client)
        # Last run's phases, kept for inspection
        self.power: Optional[PowerManager] = None
        self.dispatcher: Optional[JobDispatcher] = None

    def cancel(self) -> None:
        """Interrupt waits and stop admitting new jobs."""
        self.clock.cancel()

    def run_create(self, tag: str, name: str, description: str = "",
                   must_shutdown: Iterable[str] = ()) -> BatchResult:
        return self.run(tag, CreateAction(name=name, description=description), must_shutdown)

    def run_remove(self, tag: str, max_retained: int,
                   must_shutdown: Iterable[str] = ()) -> Union[BatchResult, NoopReason]:
        return self.run(tag, RemoveAction(max_retained=max_retained), must_shutdown)

    def run(self, tag: str, action: Union[CreateAction, RemoveAction],
            must_shutdown: Iterable[str] = ()) -> Union[BatchResult, NoopReason]:
        self.clock.reset()
        self.reporter = ProgressReporter(self.progress)
        targets = self.inventory.resolve(tag, must_shutdown)
        self.reporter.emit(Phase.INVENTORY, f"{len(targets)} target(s) tagged '{tag}'")

        result = BatchResult(kind=action.job_kind)
        removals: Optional[Dict[str, List[SnapshotDescriptor]]] = None
        if isinstance(action, RemoveAction):
            removals = self._plan_removals(targets, action, result)
            if not removals:
                if result.results:
                    self.reporter.emit(Phase.DONE, "no removable snapshots found", detail=f"{result.failure_count} failed")
                    return result
                noop = NoopReason(tag=tag, max_retained=action.max_retained, targets_checked=len(targets))
                self.reporter.emit(Phase.DONE, noop.message)
                return noop
            targets = [t for t in targets if t.id in removals]

        self.power = PowerManager(self.client, self.config, self.clock, self.reporter)
        self.dispatcher = JobDispatcher(self.client, self.config, self.clock, self.reporter)
        validator = OutcomeValidator(self.client, self.config, self.clock, self.reporter)

        try:
            self.power.ensure_off([t for t in targets if t.must_shutdown])
            for target_id, reason in self.power.failed.items():
                result.record_failure(target_id, reason, PowerTransitionFailed.__name__)
            runnable = [t for t in targets if t.id not in self.power.failed]

            batch = self.dispatcher.run_batch(runnable, action, removals)
            result.results.update(batch.results)

            if isinstance(action, CreateAction):
                self._validate_create(validator, runnable, action, batch, result)
            elif self.config.verify_removals:
                validator.validate_removals(runnable, removals, result)
        finally:
            self.power.restore(set(self.power.tracked))

        self.reporter.emit(
            Phase.DONE,
            f"{len(result.succeeded)} succeeded, {result.failure_count} failed",
            detail=f"retried: {', '.join(result.retried)}" if result.retried else None,
        )
        return result

    def _plan_removals(self, targets: List[Target], action: RemoveAction,
                       result: BatchResult) -> Dict[str, List[SnapshotDescriptor]]:
        snapshot_inventory: Dict[str, List[SnapshotDescriptor]] = {}
        for target in targets:
            try:
                snapshot_inventory[target.id] = self.client.list_snapshots(target)
            except SnapctlError as e:
                logger.warning("Could not list snapshots for {}: {}", target.label, e)
                result.record_failure(target.id, f"could not list snapshots: {e}", type(e).__name__)

        policy = action.policy
        total = retention.snaps_to_remove(snapshot_inventory, policy)
        self.reporter.emit(
            Phase.RETENTION,
            f"{total} snapshot(s) over the limit of {policy.max_retained}",
        )
        if not retention.needs_work(snapshot_inventory, policy):
            return {}
        return retention.plan_removals(snapshot_inventory, policy)

    def _validate_create(self, validator: OutcomeValidator, targets: List[Target],
                         action: CreateAction, batch: BatchResult, result: BatchResult) -> None:
        validated = validator.validate(targets, action.name, prior=batch)
        result.results.update(validated.results)
        candidates = validator.retry_candidates(result, targets)
        if not candidates:
            return
        logger.warning(
            "{} target(s) eligible for retry: {}",
            len(candidates), ", ".join(t.id for t in candidates),
        )
        if self.clock.cancelled or not self.confirm(result):
            logger.info("Retry pass skipped")
            return
        validator.retry_failed(result, action, targets)
