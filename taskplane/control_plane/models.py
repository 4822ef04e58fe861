"""
Control Plane Data Models

Defines the Task, JobInstance and command result models for the Control Plane.
Task and job instance rows are owned by the external persistence layer; the
table models here only map them for read access.
"""
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel
from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from .exceptions import InputValidationError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, PyEnum):
    """Runtime status of a job instance, as reported by the job-management subsystem."""
    CREATED = "created"
    SUBMITTED = "submitted"
    RUNNING = "running"
    RESTARTING = "restarting"
    CANCELED = "canceled"
    FINISHED = "finished"
    FAILED = "failed"
    UNKNOWN = "unknown"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.CANCELED, JobStatus.FINISHED, JobStatus.FAILED)


_TRANSITIONS = {
    JobStatus.CREATED: {JobStatus.SUBMITTED},
    JobStatus.SUBMITTED: {JobStatus.RUNNING, JobStatus.FAILED},
    JobStatus.RUNNING: {JobStatus.RESTARTING, JobStatus.CANCELED, JobStatus.FINISHED, JobStatus.FAILED},
    JobStatus.RESTARTING: {JobStatus.RUNNING, JobStatus.FAILED},
}


def can_transition(source: JobStatus, target: JobStatus) -> bool:
    """Whether the lifecycle allows moving from ``source`` to ``target``."""
    return target in _TRANSITIONS.get(source, set())


def is_reachable(source: JobStatus, target: JobStatus) -> bool:
    """Whether ``target`` can follow ``source`` after one or more transitions."""
    seen = set()
    frontier = [source]
    while frontier:
        status = frontier.pop()
        for nxt in JobStatus:
            if not can_transition(status, nxt):
                continue
            if nxt == target:
                return True
            if nxt not in seen:
                seen.add(nxt)
                frontier.append(nxt)
    return False


class SavePointType(str, PyEnum):
    """Savepoint kinds understood by the job-management subsystem."""
    TRIGGER = "trigger"
    DISPOSE = "dispose"
    STOP = "stop"
    CANCEL = "cancel"

    @property
    def code(self) -> int:
        return list(SavePointType).index(self)

    @classmethod
    def from_code(cls, code: int) -> "SavePointType":
        """Resolve a numeric savepoint code (0=trigger, 1=dispose, 2=stop, 3=cancel)."""
        members = list(cls)
        if isinstance(code, bool) or not isinstance(code, int) or not 0 <= code < len(members):
            raise InputValidationError(f"Unknown savepoint type code: {code!r}")
        return members[code]

    @classmethod
    def from_name(cls, name: str) -> "SavePointType":
        """Resolve a savepoint type by name, ignoring case. Unknown names never default."""
        try:
            return cls[name.upper()]
        except (KeyError, AttributeError):
            raise InputValidationError(f"Unknown savepoint type: {name!r}") from None


@dataclass(frozen=True)
class TenantContext:
    """Tenant scope resolved for one request and passed explicitly to every call."""
    tenant_id: int
    source: str  # "task" or "job_instance"
    key: int

    @classmethod
    def of_task(cls, task: "TaskBase") -> "TenantContext":
        """Context carried by an already-resolved task descriptor."""
        return cls(tenant_id=task.tenant_id, source="task", key=task.id or 0)


class TaskBase(SQLModel):
    """Fields shared by the task table mapping and detached task values."""
    tenant_id: int = Field(index=True, description="Owning tenant")
    name: str = Field(default="", description="Task name")
    dialect: str = Field(default="FlinkSql", description="Statement dialect")
    statement: str = Field(default="", description="SQL statement template source")
    use_result: bool = Field(default=False, description="Collect result rows")
    statement_set: bool = Field(default=False, description="Submit inserts as one statement set")
    max_row_num: int = Field(default=100, description="Engine-level row materialization ceiling")
    lineage_refs: Optional[str] = Field(default=None, description="JSON-encoded list of referenced datasets")

    @property
    def referenced_datasets(self) -> List[str]:
        if not self.lineage_refs:
            return []
        return list(json.loads(self.lineage_refs))


class TaskRecord(TaskBase, table=True):
    """Read-only mapping of the task table."""
    __tablename__ = "task"

    id: Optional[int] = Field(default=None, primary_key=True)


class Task(TaskBase):
    """Detached task value. Derived copies never touch the stored record."""
    id: Optional[int] = None


class JobInstanceBase(SQLModel):
    tenant_id: int = Field(index=True)
    task_id: int = Field(index=True, description="Owning task")
    name: str = Field(default="")
    jid: Optional[str] = Field(default=None, description="Handle to the running/terminated job")
    status: JobStatus = Field(default=JobStatus.UNKNOWN, index=True)
    error: Optional[str] = Field(default=None)
    create_time: datetime = Field(default_factory=utc_now, index=True, sa_type=DateTime(timezone=True))
    update_time: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    finish_time: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))


class JobInstanceRecord(JobInstanceBase, table=True):
    """Read-only mapping of the job instance table."""
    __tablename__ = "job_instance"

    id: Optional[int] = Field(default=None, primary_key=True)


class JobInstance(JobInstanceBase):
    id: Optional[int] = None


class JobResult(BaseModel):
    """Outcome of a dispatched execution (submit, restart, ad-hoc)."""
    success: bool
    error: Optional[str] = None
    job_id: Optional[str] = None
    job_instance_id: Optional[int] = None
    status: Optional[JobStatus] = None
    statement: Optional[str] = None
    result: Optional[Any] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @classmethod
    def failure(cls, error: str, statement: Optional[str] = None) -> "JobResult":
        return cls(success=False, error=error, status=JobStatus.FAILED, statement=statement)


class SavePointResult(BaseModel):
    type: SavePointType
    path: Optional[str] = None
    success: bool = True
    error: Optional[str] = None


class SqlExplainResult(BaseModel):
    """Explain outcome for one statement of a task."""
    index: int
    sql_type: Optional[str] = None
    sql: str
    parse_true: bool = True
    explain_true: bool = True
    explain: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class ExplainOk:
    results: List[SqlExplainResult]


@dataclass(frozen=True)
class ExplainNotSupported:
    reason: str


ExplainOutcome = Union[ExplainOk, ExplainNotSupported]


class TaskSubmitRequest(BaseModel):
    """Submission descriptor: task id plus per-submission overrides."""
    id: int
    save_point_path: Optional[str] = None
    variables: Dict[str, str] = {}


class SavePointTaskRequest(BaseModel):
    task_id: int
    type: int
