"""Progress event emission."""

from typing import Callable, List, Optional
from loguru import logger

from .models import Phase, ProgressEvent


ProgressCallback = Callable[[ProgressEvent], None]


class ProgressReporter:
    """Logs progress events and forwards them to the caller."""

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self.callback = callback
        self.events: List[ProgressEvent] = []

    def emit(self, phase: Phase, status: str, target_id: Optional[str] = None,
             detail: Optional[str] = None) -> ProgressEvent:
        event = ProgressEvent(phase=phase, status=status, target_id=target_id, detail=detail)
        self.events.append(event)
        if target_id:
            logger.info("[{}] {} {}{}", phase.value, target_id, status, f": {detail}" if detail else "")
        else:
            logger.info("[{}] {}{}", phase.value, status, f": {detail}" if detail else "")
        if self.callback is not None:
            self.callback(event)
        return event
