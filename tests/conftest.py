"""Pytest fixtures for taskplane tests."""

import asyncio
from typing import Dict, List, Tuple
from unittest.mock import AsyncMock

import pytest

from taskplane.control_plane.exceptions import (
    JobInstanceNotFoundError,
    TaskNotFoundError,
    TenantResolutionError,
)
from taskplane.control_plane.gateway import JobManagerGateway
from taskplane.control_plane.job_orchestrator import JobOrchestrator
from taskplane.control_plane.models import JobInstance, JobResult, JobStatus, Task, TenantContext


class InMemoryTaskRegistry:
    """Task registry backed by a dict; records the order of calls."""

    def __init__(self, tasks: Dict[int, Task]):
        self.tasks = tasks
        self.calls: List[Tuple[str, int]] = []

    async def init_tenant_by_task_id(self, task_id: int) -> TenantContext:
        self.calls.append(("init_tenant", task_id))
        task = self.tasks.get(task_id)
        if task is None:
            raise TenantResolutionError(f"No tenant found for task {task_id}")
        return TenantContext(tenant_id=task.tenant_id, source="task", key=task_id)

    async def get_task_info_by_id(self, task_id: int, tenant: TenantContext) -> Task:
        self.calls.append(("get_task", task_id))
        task = self.tasks.get(task_id)
        if task is None or task.tenant_id != tenant.tenant_id:
            raise TaskNotFoundError(f"Task {task_id} not found")
        return task


class InMemoryJobInstanceTracker:
    def __init__(self, instances: Dict[int, JobInstance]):
        self.instances = instances
        self.calls: List[Tuple[str, int]] = []

    async def init_tenant_by_job_instance_id(self, instance_id: int) -> TenantContext:
        self.calls.append(("init_tenant", instance_id))
        instance = self.instances.get(instance_id)
        if instance is None:
            raise TenantResolutionError(f"No tenant found for job instance {instance_id}")
        return TenantContext(tenant_id=instance.tenant_id, source="job_instance", key=instance_id)

    async def get_by_id(self, instance_id: int, tenant: TenantContext) -> JobInstance:
        self.calls.append(("get_by_id", instance_id))
        instance = self.instances.get(instance_id)
        if instance is None or instance.tenant_id != tenant.tenant_id:
            raise JobInstanceNotFoundError(f"Job instance {instance_id} not found")
        return instance

    async def get_job_instance_by_task_id(self, task_id: int, tenant: TenantContext) -> JobInstance:
        self.calls.append(("get_by_task_id", task_id))
        matches = [i for i in self.instances.values() if i.task_id == task_id and i.tenant_id == tenant.tenant_id]
        if not matches:
            raise JobInstanceNotFoundError(f"No job instance for task {task_id}")
        return max(matches, key=lambda i: i.id)


@pytest.fixture
def stored_task() -> Task:
    """A stored task whose own flags differ from the ad-hoc defaults."""
    return Task(
        id=7,
        tenant_id=3,
        name="orders_by_day",
        statement="SELECT * FROM t WHERE d=#{date} AND name=${name}",
        use_result=False,
        statement_set=True,
        max_row_num=100,
        lineage_refs='["t"]',
    )


@pytest.fixture
def task_registry(stored_task: Task) -> InMemoryTaskRegistry:
    return InMemoryTaskRegistry({stored_task.id: stored_task})


@pytest.fixture
def job_instance_tracker() -> InMemoryJobInstanceTracker:
    return InMemoryJobInstanceTracker(
        {
            11: JobInstance(id=11, tenant_id=3, task_id=7, jid="a1", status=JobStatus.FINISHED),
            12: JobInstance(id=12, tenant_id=3, task_id=7, jid="b2", status=JobStatus.RUNNING),
        }
    )


@pytest.fixture
def gateway() -> AsyncMock:
    """Gateway double with the real gateway's interface."""
    mock = AsyncMock(spec=JobManagerGateway)
    mock.submit.return_value = JobResult(success=True, job_id="job-1", status=JobStatus.SUBMITTED)
    mock.restart.return_value = JobResult(success=True, job_id="job-2", status=JobStatus.RESTARTING)
    mock.execute.return_value = JobResult(success=True, job_id="job-3", status=JobStatus.FINISHED, result=[])
    mock.cancel.return_value = True
    return mock


@pytest.fixture
def orchestrator(
    task_registry: InMemoryTaskRegistry,
    job_instance_tracker: InMemoryJobInstanceTracker,
    gateway: AsyncMock,
) -> JobOrchestrator:
    return JobOrchestrator(
        task_registry=task_registry,
        job_instance_tracker=job_instance_tracker,
        gateway=gateway,
    )


class SlowJobInstanceTracker(InMemoryJobInstanceTracker):
    """Tracker whose lookups take ``delay`` seconds."""

    def __init__(self, instances: Dict[int, JobInstance], delay: float):
        super().__init__(instances)
        self.delay = delay

    async def get_by_id(self, instance_id: int, tenant: TenantContext) -> JobInstance:
        await asyncio.sleep(self.delay)
        return await super().get_by_id(instance_id, tenant)

    async def get_job_instance_by_task_id(self, task_id: int, tenant: TenantContext) -> JobInstance:
        await asyncio.sleep(self.delay)
        return await super().get_job_instance_by_task_id(task_id, tenant)


@pytest.fixture
def slow_orchestrator(
    task_registry: InMemoryTaskRegistry,
    job_instance_tracker: InMemoryJobInstanceTracker,
    gateway: AsyncMock,
) -> JobOrchestrator:
    """Orchestrator whose job instance lookups take one second."""
    return JobOrchestrator(
        task_registry=task_registry,
        job_instance_tracker=SlowJobInstanceTracker(job_instance_tracker.instances, delay=1.0),
        gateway=gateway,
    )
