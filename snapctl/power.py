"""Prerequisite power-state transitions."""

from typing import Dict, Iterable, List, Optional, Set
from loguru import logger

from .client import ManagementClient
from .clock import Clock
from .config import OrchestratorConfig
from .errors import PowerTransitionFailed, SnapctlError
from .events import ProgressReporter
from .models import Phase, PowerState, Target


class PowerManager:
    """Powers off sensitive targets before a batch and restores them after.

    ``tracked`` holds the ids this manager powered off, and is the only set
    ever restored. ``failed`` maps ids that could not be powered off to a
    diagnostic; those targets are skipped for the rest of the run.
    """

    def __init__(self, client: ManagementClient, config: OrchestratorConfig,
                 clock: Optional[Clock] = None, reporter: Optional[ProgressReporter] = None):
        self.client = client
        self.config = config
        self.clock = clock or Clock()
        self.reporter = reporter or ProgressReporter()
        self.tracked: Set[str] = set()
        self.failed: Dict[str, str] = {}
        self._targets: Dict[str, Target] = {}

    def _fail(self, target: Target, reason: str) -> None:
        error = PowerTransitionFailed(target.id, reason)
        logger.warning("Skipping {}: {}", target.label, error)
        self.failed[target.id] = reason
        self.reporter.emit(Phase.POWER_OFF, "failed", target.id, reason)

    def ensure_off(self, targets: Iterable[Target]) -> Set[str]:
        """Power off every ``must_shutdown`` target that is not already off.

        Returns the ids actually powered off by this call.
        """
        waiting: Dict[str, Target] = {}
        for target in targets:
            if not target.must_shutdown or target.id in self.tracked or target.id in self.failed:
                continue
            try:
                target.power_state = self.client.get_power_state(target)
            except SnapctlError as e:
                self._fail(target, f"could not read power state: {e}")
                continue
            if target.power_state == PowerState.POWERED_OFF:
                logger.debug("{} is already powered off", target.label)
                continue
            try:
                self.client.shutdown(target)
            except SnapctlError as e:
                self._fail(target, f"shutdown request failed: {e}")
                continue
            self._targets[target.id] = target
            waiting[target.id] = target
            self.reporter.emit(Phase.POWER_OFF, "shutdown requested", target.id)

        powered_off: Set[str] = set()
        deadline = self.clock.now() + self.config.power_timeout
        while waiting:
            if not self.clock.wait(self.config.power_poll_interval):
                # Shutdowns already requested still complete; track those that have
                for target_id, target in waiting.items():
                    try:
                        target.power_state = self.client.get_power_state(target)
                    except SnapctlError as e:
                        logger.warning("Could not read power state of {}: {}", target.label, e)
                    if target.power_state == PowerState.POWERED_OFF:
                        self.tracked.add(target_id)
                        powered_off.add(target_id)
                        self.reporter.emit(Phase.POWER_OFF, "powered off", target_id)
                    else:
                        self._fail(target, "cancelled while waiting for shutdown")
                break
            for target_id, target in list(waiting.items()):
                try:
                    target.power_state = self.client.get_power_state(target)
                except SnapctlError as e:
                    self._fail(target, f"could not read power state: {e}")
                    del waiting[target_id]
                    continue
                if target.power_state == PowerState.POWERED_OFF:
                    self.tracked.add(target_id)
                    powered_off.add(target_id)
                    del waiting[target_id]
                    self.reporter.emit(Phase.POWER_OFF, "powered off", target_id)
            if waiting and self.clock.now() >= deadline:
                for target in waiting.values():
                    self._fail(target, f"still {target.power_state.value} after {self.config.power_timeout:g}s")
                break

        return powered_off

    def restore(self, target_ids: Iterable[str]) -> List[str]:
        """Request power-on for each tracked id. Does not wait for completion."""
        started = []
        for target_id in sorted(set(target_ids)):
            target = self._targets.get(target_id)
            if target is None or target_id not in self.tracked:
                logger.debug("Not restoring {}: not powered off by this run", target_id)
                continue
            try:
                self.client.power_on(target)
            except SnapctlError as e:
                logger.error("Could not power on {}: {}", target.label, e)
                self.reporter.emit(Phase.RESTORE, "power-on failed", target_id, str(e))
                continue
            self.tracked.discard(target_id)
            started.append(target_id)
            self.reporter.emit(Phase.RESTORE, "power-on requested", target_id)
        return started
