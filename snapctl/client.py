"""Management-plane client interface and the Proxmox VE implementation."""

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence
from urllib.parse import quote, urljoin

import requests
import urllib3
from loguru import logger

from .config import ConnectionSettings
from .errors import ProxmoxAPIError, RemoteUnreachable
from .models import JobHandle, JobStatus, PowerState, SnapshotDescriptor, Target


class ManagementClient(Protocol):
    """Operations the orchestrator needs from an authenticated management plane."""

    def list_by_tag(self, tag: str) -> List[Target]: ...

    def get_power_state(self, target: Target) -> PowerState: ...

    def shutdown(self, target: Target) -> None: ...

    def power_on(self, target: Target) -> None: ...

    def list_snapshots(self, target: Target) -> List[SnapshotDescriptor]: ...

    def create_snapshot(self, target: Target, name: str, description: str) -> JobHandle: ...

    def delete_snapshots(self, target: Target, snapshots: Sequence[SnapshotDescriptor]) -> JobHandle: ...

    def poll_job(self, handle: JobHandle) -> JobStatus: ...


_POWER_STATES = {
    "running": PowerState.POWERED_ON,
    "stopped": PowerState.POWERED_OFF,
}

_TAG_SPLIT = re.compile(r"[;,\s]+")

# Proxmox lists the live state as a pseudo snapshot with this name
CURRENT_STATE_SNAPSHOT = "current"


class ProxmoxClient:
    """Proxmox VE REST client authenticated with an API token."""

    def __init__(self, host: str, user: str, token_name: str, token_value: str,
                 port: int = 8006, verify_ssl: bool = False, timeout: float = 30.0,
                 session: Optional[requests.Session] = None):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.base_url = f"https://{host}:{port}/api2/json"
        self.session = session or requests.Session()
        self.session.verify = verify_ssl
        if not verify_ssl:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
        self.session.headers.update({
            "Authorization": f"PVEAPIToken={user}!{token_name}={token_value}"
        })

    @classmethod
    def from_settings(cls, settings: ConnectionSettings) -> "ProxmoxClient":
        if not settings.is_complete:
            raise ValueError(
                "PVE_HOST, PVE_USER, PVE_TOKEN_NAME and PVE_TOKEN_VALUE must all be set"
            )
        return cls(
            settings.host,
            settings.user,
            settings.token_name,
            settings.token_value.get_secret_value(),
            port=settings.port,
            verify_ssl=settings.verify_ssl,
            timeout=settings.timeout,
        )

    def _request(self, method: str, path: str, data: Optional[Dict[str, Any]] = None,
                 params: Optional[Dict[str, Any]] = None) -> Any:
        """Make an API request and return its ``data`` payload."""
        url = urljoin(self.base_url + "/", path.lstrip("/"))
        logger.debug("{} {}", method, path)
        try:
            response = self.session.request(
                method, url, data=data, params=params, timeout=self.timeout
            )
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            raise RemoteUnreachable(f"{method} {path}: {e}") from e
        except requests.exceptions.RequestException as e:
            raise ProxmoxAPIError(f"{method} {path} failed: {e}") from e

        if not response.ok:
            try:
                error_data = response.json() if response.content else {}
            except ValueError:
                error_data = {}
            detail = error_data.get("errors") or error_data.get("message") or response.reason
            raise ProxmoxAPIError(
                f"{method} {path} failed: {detail}", response.status_code, error_data
            )

        try:
            result = response.json()
        except ValueError as e:
            raise ProxmoxAPIError(
                f"{method} {path} returned a non-JSON body", response.status_code
            ) from e
        if isinstance(result, dict) and "data" in result:
            return result["data"]
        return result

    def _vm_path(self, node: str, vm_type: str, vmid: str) -> str:
        return f"/nodes/{node}/{vm_type}/{vmid}"

    def _target_path(self, target: Target) -> str:
        return self._vm_path(target.node, target.vm_type, target.id)

    def list_by_tag(self, tag: str) -> List[Target]:
        resources = self._request("GET", "/cluster/resources", params={"type": "vm"})
        wanted = tag.strip().lower()
        targets = []
        for entry in resources or []:
            if entry.get("template"):
                continue
            tags = {t.lower() for t in _TAG_SPLIT.split(entry.get("tags") or "") if t}
            if wanted not in tags:
                continue
            targets.append(Target(
                id=str(entry["vmid"]),
                name=entry.get("name", ""),
                node=entry["node"],
                vm_type=entry.get("type", "qemu"),
                power_state=_POWER_STATES.get(entry.get("status"), PowerState.UNKNOWN),
            ))
        return targets

    def get_power_state(self, target: Target) -> PowerState:
        status = self._request("GET", f"{self._target_path(target)}/status/current")
        return _POWER_STATES.get((status or {}).get("status"), PowerState.UNKNOWN)

    def shutdown(self, target: Target) -> None:
        upid = self._request("POST", f"{self._target_path(target)}/status/shutdown")
        logger.debug("Shutdown of {} submitted as {}", target.id, upid)

    def power_on(self, target: Target) -> None:
        upid = self._request("POST", f"{self._target_path(target)}/status/start")
        logger.debug("Start of {} submitted as {}", target.id, upid)

    def list_snapshots(self, target: Target) -> List[SnapshotDescriptor]:
        entries = self._request("GET", f"{self._target_path(target)}/snapshot")
        snapshots = []
        for entry in entries or []:
            if entry.get("name") == CURRENT_STATE_SNAPSHOT:
                continue
            snapshots.append(SnapshotDescriptor(
                target_id=target.id,
                name=entry["name"],
                description=entry.get("description", "") or "",
                created_at=datetime.fromtimestamp(entry.get("snaptime", 0), tz=timezone.utc),
            ))
        return snapshots

    def create_snapshot(self, target: Target, name: str, description: str) -> JobHandle:
        upid = self._request(
            "POST",
            f"{self._target_path(target)}/snapshot",
            data={"snapname": name, "description": description},
        )
        return JobHandle(target_id=target.id, node=target.node, vm_type=target.vm_type, tasks=[upid])

    def delete_snapshots(self, target: Target, snapshots: Sequence[SnapshotDescriptor]) -> JobHandle:
        """Start deleting ``snapshots`` in order.

        Proxmox locks the VM for the duration of a snapshot task, so only the
        first deletion is submitted here; ``poll_job`` submits the rest as
        each task finishes.
        """
        handle = JobHandle(
            target_id=target.id,
            node=target.node,
            vm_type=target.vm_type,
            pending=[s.name for s in snapshots],
        )
        self._submit_next_delete(handle)
        return handle

    def _submit_next_delete(self, handle: JobHandle) -> None:
        name = handle.pending.pop(0)
        path = self._vm_path(handle.node, handle.vm_type, handle.target_id)
        upid = self._request("DELETE", f"{path}/snapshot/{quote(name, safe='')}")
        handle.tasks.append(upid)

    def poll_job(self, handle: JobHandle) -> JobStatus:
        if not handle.tasks:
            return JobStatus.SUCCEEDED
        upid = handle.tasks[-1]
        task = self._request("GET", f"/nodes/{handle.node}/tasks/{quote(upid, safe='')}/status")
        if not isinstance(task, dict):
            raise ProxmoxAPIError(f"task {upid} returned no status", response_data={"data": task})
        if task.get("status") == "running":
            return JobStatus.RUNNING
        exit_status = task.get("exitstatus")
        if exit_status != "OK":
            logger.warning("Task {} on {} ended with {}", upid, handle.target_id, exit_status)
            return JobStatus.FAILED
        if handle.pending:
            self._submit_next_delete(handle)
            return JobStatus.RUNNING
        return JobStatus.SUCCEEDED
