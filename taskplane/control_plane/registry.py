"""
Task Registry and Job Instance Tracker

Narrow interfaces to the external persistence layer, plus SQL-backed
read-only implementations. Tenant resolution returns an explicit
TenantContext which callers pass to every subsequent lookup.
"""
import logging
from typing import Protocol, runtime_checkable

from sqlmodel import select

from .exceptions import JobInstanceNotFoundError, TaskNotFoundError, TenantResolutionError
from .models import JobInstance, JobInstanceRecord, Task, TaskRecord, TenantContext

logger = logging.getLogger(__name__)


@runtime_checkable
class TaskRegistry(Protocol):
    """Source of stored task definitions."""

    async def init_tenant_by_task_id(self, task_id: int) -> TenantContext:
        """Resolve the tenant owning ``task_id``."""
        ...

    async def get_task_info_by_id(self, task_id: int, tenant: TenantContext) -> Task:
        """Fetch a detached copy of the task within ``tenant``."""
        ...


@runtime_checkable
class JobInstanceTracker(Protocol):
    """Source of job instance records."""

    async def init_tenant_by_job_instance_id(self, instance_id: int) -> TenantContext:
        ...

    async def get_by_id(self, instance_id: int, tenant: TenantContext) -> JobInstance:
        ...

    async def get_job_instance_by_task_id(self, task_id: int, tenant: TenantContext) -> JobInstance:
        ...


class SqlTaskRegistry:
    """
    Reads tasks from the task table.

    Never writes: task definitions are owned by the persistence layer.
    """

    def __init__(self, db):
        """
        Initialize task registry.

        Args:
            db: Database instance (not just engine)
        """
        self.db = db

    async def init_tenant_by_task_id(self, task_id: int) -> TenantContext:
        async with self.db.session() as session:
            result = await session.execute(
                select(TaskRecord.tenant_id).where(TaskRecord.id == task_id)
            )
            tenant_id = result.scalar_one_or_none()
        if tenant_id is None:
            logger.warning(f"No tenant found for task {task_id}")
            raise TenantResolutionError(f"No tenant found for task {task_id}")
        logger.debug(f"Task {task_id} resolved to tenant {tenant_id}")
        return TenantContext(tenant_id=tenant_id, source="task", key=task_id)

    async def get_task_info_by_id(self, task_id: int, tenant: TenantContext) -> Task:
        async with self.db.session() as session:
            result = await session.execute(
                select(TaskRecord).where(
                    TaskRecord.id == task_id,
                    TaskRecord.tenant_id == tenant.tenant_id,
                )
            )
            record = result.scalar_one_or_none()
            if record is None:
                raise TaskNotFoundError(f"Task {task_id} not found")
            return Task(**record.model_dump())


class SqlJobInstanceTracker:
    """Reads job instances from the job instance table."""

    def __init__(self, db):
        self.db = db

    async def init_tenant_by_job_instance_id(self, instance_id: int) -> TenantContext:
        async with self.db.session() as session:
            result = await session.execute(
                select(JobInstanceRecord.tenant_id).where(JobInstanceRecord.id == instance_id)
            )
            tenant_id = result.scalar_one_or_none()
        if tenant_id is None:
            logger.warning(f"No tenant found for job instance {instance_id}")
            raise TenantResolutionError(f"No tenant found for job instance {instance_id}")
        return TenantContext(tenant_id=tenant_id, source="job_instance", key=instance_id)

    async def get_by_id(self, instance_id: int, tenant: TenantContext) -> JobInstance:
        async with self.db.session() as session:
            result = await session.execute(
                select(JobInstanceRecord).where(
                    JobInstanceRecord.id == instance_id,
                    JobInstanceRecord.tenant_id == tenant.tenant_id,
                )
            )
            record = result.scalar_one_or_none()
            if record is None:
                raise JobInstanceNotFoundError(f"Job instance {instance_id} not found")
            return JobInstance(**record.model_dump())

    async def get_job_instance_by_task_id(self, task_id: int, tenant: TenantContext) -> JobInstance:
        """Latest job instance of ``task_id``."""
        async with self.db.session() as session:
            statement = (
                select(JobInstanceRecord)
                .where(
                    JobInstanceRecord.task_id == task_id,
                    JobInstanceRecord.tenant_id == tenant.tenant_id,
                )
                .order_by(JobInstanceRecord.id.desc())
                .limit(1)
            )
            result = await session.execute(statement)
            record = result.scalar_one_or_none()
            if record is None:
                raise JobInstanceNotFoundError(f"No job instance for task {task_id}")
            return JobInstance(**record.model_dump())
