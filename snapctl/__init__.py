"""Bulk VM snapshot creation and pruning."""

from .errors import (
    DispatchFailed,
    InventoryUnavailable,
    PowerTransitionFailed,
    ProxmoxAPIError,
    RemoteUnreachable,
    SnapctlError,
    ValidationMismatch,
)
from .orchestrator import SnapshotOrchestrator

__version__ = "1.0.0"
