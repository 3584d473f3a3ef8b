"""Exception taxonomy for snapshot orchestration."""

from typing import Any, Dict, Optional


class SnapctlError(Exception):
    """Base class for all snapctl errors."""


class InventoryUnavailable(SnapctlError):
    """The target inventory could not be read. Fatal to the run."""


class RemoteUnreachable(SnapctlError):
    """Network-level failure talking to the management plane."""


class ProxmoxAPIError(SnapctlError):
    """The Proxmox API rejected a request."""

    def __init__(self, message: str, status_code: Optional[int] = None, response_data: Optional[Dict[str, Any]] = None):
        self.message = message
        self.status_code = status_code
        self.response_data = response_data
        super().__init__(self.message)


class TargetError(SnapctlError):
    """A failure localized to a single target."""

    def __init__(self, target_id: str, reason: str):
        self.target_id = target_id
        self.reason = reason
        super().__init__(f"{target_id}: {reason}")


class PowerTransitionFailed(TargetError):
    pass


class DispatchFailed(TargetError):
    pass


class ValidationMismatch(TargetError):
    def __init__(self, target_id: str, expected: str):
        self.expected = expected
        super().__init__(target_id, f"snapshot '{expected}' not found")
