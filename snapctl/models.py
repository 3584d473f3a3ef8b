"""Data models for targets, snapshots, jobs and batch results."""

import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator


SNAPSHOT_NAME_MAX_LENGTH = 40
SNAPSHOT_NAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_-]*$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PowerState(str, Enum):
    """Power state of a target machine."""
    POWERED_ON = "PoweredOn"
    POWERED_OFF = "PoweredOff"
    UNKNOWN = "Unknown"


class JobKind(str, Enum):
    CREATE = "Create"
    REMOVE = "Remove"


class JobStatus(str, Enum):
    """Job lifecycle states."""
    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED)


class Outcome(str, Enum):
    SUCCESS = "Success"
    FAILED = "Failed"


class Target(BaseModel):
    """One managed machine acted upon by a batch."""
    id: str
    name: str = ""
    node: str = ""
    vm_type: str = "qemu"
    power_state: PowerState = PowerState.UNKNOWN
    must_shutdown: bool = False

    @property
    def label(self) -> str:
        return f"{self.id} ({self.name})" if self.name else self.id


class SnapshotDescriptor(BaseModel):
    """A snapshot as reported by the management plane."""
    model_config = ConfigDict(frozen=True)

    target_id: str
    name: str
    description: str = ""
    created_at: datetime


class RetentionPolicy(BaseModel):
    """Maximum number of snapshots kept per target."""
    model_config = ConfigDict(frozen=True)

    max_retained: int = Field(ge=0)


class JobHandle(BaseModel):
    """Remote reference to an asynchronous operation.

    ``tasks`` holds the remote task ids submitted so far. ``pending`` holds
    work the client still has to submit against the same target, for planes
    that serialize operations per machine.
    """
    target_id: str
    node: str = ""
    vm_type: str = "qemu"
    tasks: List[str] = Field(default_factory=list)
    pending: List[str] = Field(default_factory=list)


class Job(BaseModel):
    """One outstanding create or remove operation against one target."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    target_id: str
    kind: JobKind
    status: JobStatus = JobStatus.PENDING
    submitted_at: Optional[datetime] = None
    submitted_tick: Optional[float] = None
    handle: Optional[JobHandle] = None
    remove_count: int = 0
    snapshots: List[SnapshotDescriptor] = Field(default_factory=list)
    error: Optional[str] = None
    error_kind: Optional[str] = None

    @property
    def is_outstanding(self) -> bool:
        return not self.status.is_terminal


class CreateAction(BaseModel):
    """Create one snapshot with the given name on every target."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["create"] = "create"
    name: str
    description: str = ""

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if len(value) > SNAPSHOT_NAME_MAX_LENGTH:
            raise ValueError(
                f"snapshot name is {len(value)} characters, maximum is {SNAPSHOT_NAME_MAX_LENGTH}"
            )
        if not SNAPSHOT_NAME_PATTERN.match(value):
            raise ValueError(
                "snapshot name must start with a letter and contain only letters, digits, '-' or '_'"
            )
        return value

    @property
    def job_kind(self) -> JobKind:
        return JobKind.CREATE


class RemoveAction(BaseModel):
    """Delete the oldest snapshots beyond ``max_retained`` on every target."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["remove"] = "remove"
    max_retained: int = Field(ge=0)

    @property
    def job_kind(self) -> JobKind:
        return JobKind.REMOVE

    @property
    def policy(self) -> RetentionPolicy:
        return RetentionPolicy(max_retained=self.max_retained)


Action = Annotated[Union[CreateAction, RemoveAction], Field(discriminator="kind")]


class TargetResult(BaseModel):
    target_id: str
    outcome: Outcome
    diagnostic: Optional[str] = None
    error_kind: Optional[str] = None


class BatchResult(BaseModel):
    """Per-target outcome of one batch."""
    kind: JobKind
    results: Dict[str, TargetResult] = Field(default_factory=dict)
    retried: List[str] = Field(default_factory=list)

    def record_success(self, target_id: str, diagnostic: Optional[str] = None) -> None:
        self.results[target_id] = TargetResult(
            target_id=target_id, outcome=Outcome.SUCCESS, diagnostic=diagnostic
        )

    def record_failure(
        self, target_id: str, diagnostic: str, error_kind: Optional[str] = None
    ) -> None:
        self.results[target_id] = TargetResult(
            target_id=target_id,
            outcome=Outcome.FAILED,
            diagnostic=diagnostic,
            error_kind=error_kind,
        )

    @property
    def succeeded(self) -> List[str]:
        return [tid for tid, r in self.results.items() if r.outcome == Outcome.SUCCESS]

    @property
    def failed(self) -> List[str]:
        return [tid for tid, r in self.results.items() if r.outcome == Outcome.FAILED]

    @property
    def failure_count(self) -> int:
        return len(self.failed)


class NoopReason(BaseModel):
    """Returned by a prune run when no target exceeds retention."""
    tag: str
    max_retained: int
    targets_checked: int
    message: str = "no excess snapshots"


class Phase(str, Enum):
    INVENTORY = "inventory"
    RETENTION = "retention"
    POWER_OFF = "power_off"
    DISPATCH = "dispatch"
    POLL = "poll"
    SETTLE = "settle"
    VALIDATE = "validate"
    RETRY = "retry"
    RESTORE = "restore"
    DONE = "done"


class ProgressEvent(BaseModel):
    """Structured progress notification for the caller to render."""
    phase: Phase
    status: str
    target_id: Optional[str] = None
    detail: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


class RunRecord(BaseModel):
    """Persisted summary of one orchestrator run."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    tag: str
    action: Action
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    result: Optional[BatchResult] = None
    noop: Optional[NoopReason] = None
    error: Optional[str] = None
