"""
Control Plane Core

Core orchestration components: models, template binding, gateway, registry.
"""

from .models import JobInstance, JobResult, JobStatus, SavePointType, Task, TenantContext
from .sql_template import bind, paginate
from .gateway import JobManagerGateway
from .registry import SqlJobInstanceTracker, SqlTaskRegistry
from .job_orchestrator import JobOrchestrator

__all__ = [
    "JobInstance",
    "JobResult",
    "JobStatus",
    "SavePointType",
    "Task",
    "TenantContext",
    "bind",
    "paginate",
    "JobManagerGateway",
    "SqlJobInstanceTracker",
    "SqlTaskRegistry",
    "JobOrchestrator",
]
