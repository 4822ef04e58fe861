"""
Job Orchestrator

Lifecycle operations for SQL tasks: submit, cancel, restart, savepoints,
explain/plan/graph inspection, lineage and ad-hoc parameterized execution.

The orchestrator keeps no job state of its own. It resolves the tenant for a
bare id, fetches the task from the registry and hands the command to the
job-management gateway. States reported back follow
``Created -> Submitted -> Running -> {Canceled, Finished, Failed}`` with
``Running -> Restarting -> Running`` on restart from a savepoint.
"""
import asyncio
import logging
from typing import Any, Awaitable, Dict, Mapping, Optional, TypeVar

from .. import __version__
from .audit import BusinessType, OperationMeta, audited
from .exceptions import GatewayError, LookupTimeoutError, NotSupportedExplainError
from .gateway import JobManagerGateway
from .models import (
    ExplainNotSupported,
    ExplainOk,
    ExplainOutcome,
    JobInstance,
    JobResult,
    SavePointResult,
    SavePointType,
    Task,
    TaskSubmitRequest,
    TenantContext,
)
from .registry import JobInstanceTracker, TaskRegistry
from .sql_template import bind, paginate

logger = logging.getLogger(__name__)

ADHOC_MAX_ROW_NUM = 5000
LIMIT_KEY = "limit"
OFFSET_KEY = "offset"

T = TypeVar("T")


def build_ad_hoc_task(task: Task, params: Mapping[str, str], max_row_num: int = ADHOC_MAX_ROW_NUM) -> Task:
    """
    Derive the task actually run by the ad-hoc path.

    Forces a single result-returning statement (``use_result=True``,
    ``statement_set=False``), binds the stored template, applies the
    ``limit``/``offset`` parameters and sets the engine row ceiling. The SQL
    LIMIT and the row ceiling are independent caps and are not reconciled.
    The stored task is left untouched.
    """
    sql = bind(task.statement, params)
    sql = paginate(sql, params.get(LIMIT_KEY), params.get(OFFSET_KEY))
    return task.model_copy(
        update={
            "use_result": True,
            "statement_set": False,
            "statement": sql,
            "max_row_num": max_row_num,
        }
    )


class JobOrchestrator:
    def __init__(
        self,
        task_registry: TaskRegistry,
        job_instance_tracker: JobInstanceTracker,
        gateway: JobManagerGateway,
        adhoc_max_row_num: int = ADHOC_MAX_ROW_NUM,
    ):
        self.task_registry = task_registry
        self.job_instance_tracker = job_instance_tracker
        self.gateway = gateway
        self.adhoc_max_row_num = adhoc_max_row_num

    @staticmethod
    async def _lookup(lookup: Awaitable[T], what: str, timeout: Optional[float]) -> T:
        """Await a registry or tracker lookup within the caller's deadline."""
        try:
            return await asyncio.wait_for(lookup, timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Lookup of {what} exceeded {timeout}s")
            raise LookupTimeoutError(f"Lookup of {what} timed out after {timeout}s") from None

    async def _resolve_tenant(self, task_id: int, timeout: Optional[float]) -> TenantContext:
        return await self._lookup(self.task_registry.init_tenant_by_task_id(task_id), f"task {task_id}", timeout)

    async def _fetch_task(self, task_id: int, tenant: TenantContext, timeout: Optional[float]) -> Task:
        return await self._lookup(
            self.task_registry.get_task_info_by_id(task_id, tenant), f"task {task_id}", timeout
        )

    async def _resolve_task(self, task_id: int, timeout: Optional[float] = None) -> tuple[TenantContext, Task]:
        """Resolve tenant for a bare task id, then fetch the task within it."""
        tenant = await self._resolve_tenant(task_id, timeout)
        task = await self._fetch_task(task_id, tenant, timeout)
        return tenant, task

    @audited(OperationMeta("Get Version", BusinessType.QUERY))
    async def get_version(self) -> str:
        return __version__

    @audited(OperationMeta("Submit Task", BusinessType.SUBMIT))
    async def submit_task(self, request: TaskSubmitRequest, timeout: Optional[float] = None) -> JobResult:
        """
        Submit a stored task for execution.

        A downstream failure is returned inside the JobResult rather than raised.
        """
        tenant, task = await self._resolve_task(request.id, timeout)
        try:
            result = await self.gateway.submit(
                task,
                tenant,
                save_point_path=request.save_point_path,
                variables=request.variables,
                timeout=timeout,
            )
        except GatewayError as e:
            logger.error(f"Submit of task {request.id} failed: {e}")
            return JobResult.failure(str(e), statement=task.statement)
        logger.info(f"Submitted task {request.id} (job {result.job_id})")
        return result

    @audited(OperationMeta("Savepoint Task", BusinessType.TRIGGER))
    async def savepoint_task(self, task_id: int, type_code: int, timeout: Optional[float] = None) -> SavePointResult:
        """Trigger a savepoint using the numeric savepoint type code."""
        tenant = await self._resolve_tenant(task_id, timeout)
        save_point_type = SavePointType.from_code(type_code)
        task = await self._fetch_task(task_id, tenant, timeout)
        return await self.gateway.savepoint(task, tenant, save_point_type, timeout=timeout)

    @audited(OperationMeta("Cancel Job", BusinessType.TRIGGER))
    async def cancel(
        self,
        task_id: int,
        with_save_point: bool = False,
        force_cancel: bool = True,
        timeout: Optional[float] = None,
    ) -> bool:
        """
        Request termination of the task's job.

        Returns whether the subsystem accepted the request; the job may still
        be shutting down when this returns.
        """
        tenant, task = await self._resolve_task(task_id, timeout)
        accepted = await self.gateway.cancel(
            task,
            tenant,
            with_save_point=with_save_point,
            force_cancel=force_cancel,
            timeout=timeout,
        )
        logger.info(f"Cancel of task {task_id} accepted={accepted} (savepoint={with_save_point}, force={force_cancel})")
        return accepted

    @audited(OperationMeta("Restart Task", BusinessType.REMOTE_OPERATION))
    async def restart_task(
        self,
        task_id: int,
        save_point_path: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> JobResult:
        tenant, task = await self._resolve_task(task_id, timeout)
        try:
            return await self.gateway.restart(task, tenant, save_point_path=save_point_path, timeout=timeout)
        except GatewayError as e:
            logger.error(f"Restart of task {task_id} failed: {e}")
            return JobResult.failure(str(e), statement=task.statement)

    @audited(OperationMeta("Savepoint Trigger", BusinessType.TRIGGER))
    async def trigger_savepoint(
        self, task_id: int, save_point_type: str, timeout: Optional[float] = None
    ) -> SavePointResult:
        """Trigger a savepoint using the savepoint type name (case-insensitive)."""
        tenant = await self._resolve_tenant(task_id, timeout)
        kind = SavePointType.from_name(save_point_type)
        task = await self._fetch_task(task_id, tenant, timeout)
        return await self.gateway.savepoint(task, tenant, kind, timeout=timeout)

    @audited(OperationMeta("Explain Sql", BusinessType.QUERY))
    async def explain_sql(self, task: Task, timeout: Optional[float] = None) -> ExplainOutcome:
        try:
            results = await self.gateway.explain(task, TenantContext.of_task(task), timeout=timeout)
        except NotSupportedExplainError as e:
            return ExplainNotSupported(reason=str(e))
        return ExplainOk(results=results)

    @audited(OperationMeta("Get Job Plan", BusinessType.QUERY))
    async def get_job_plan(self, task: Task, timeout: Optional[float] = None) -> Dict[str, Any]:
        return await self.gateway.job_plan(task, TenantContext.of_task(task), timeout=timeout)

    @audited(OperationMeta("Get Stream Graph", BusinessType.QUERY))
    async def get_stream_graph(self, task: Task, timeout: Optional[float] = None) -> Dict[str, Any]:
        return await self.gateway.stream_graph(task, TenantContext.of_task(task), timeout=timeout)

    @audited(OperationMeta("Get Job Instance", BusinessType.QUERY))
    async def get_job_instance(self, instance_id: int, timeout: Optional[float] = None) -> JobInstance:
        what = f"job instance {instance_id}"
        tenant = await self._lookup(
            self.job_instance_tracker.init_tenant_by_job_instance_id(instance_id), what, timeout
        )
        return await self._lookup(self.job_instance_tracker.get_by_id(instance_id, tenant), what, timeout)

    @audited(OperationMeta("Get Job Instance By Task Id", BusinessType.QUERY))
    async def get_job_instance_by_task_id(self, task_id: int, timeout: Optional[float] = None) -> JobInstance:
        tenant = await self._resolve_tenant(task_id, timeout)
        return await self._lookup(
            self.job_instance_tracker.get_job_instance_by_task_id(task_id, tenant),
            f"job instances of task {task_id}",
            timeout,
        )

    @audited(OperationMeta("Export Sql", BusinessType.EXPORT))
    async def export_sql(self, task_id: int, timeout: Optional[float] = None) -> str:
        tenant, task = await self._resolve_task(task_id, timeout)
        return await self.gateway.export_sql(task, tenant, timeout=timeout)

    @audited(OperationMeta("Get Task Lineage", BusinessType.OTHER))
    async def get_task_lineage(self, task_id: int, timeout: Optional[float] = None) -> Dict[str, Any]:
        tenant, task = await self._resolve_task(task_id, timeout)
        return await self.gateway.lineage(task, tenant, timeout=timeout)

    @audited(OperationMeta("Ad-hoc Execute", BusinessType.OTHER))
    async def ad_hoc_execute(
        self,
        task_id: int,
        params: Mapping[str, str],
        timeout: Optional[float] = None,
    ) -> JobResult:
        """
        Run a stored task's statement with caller parameters, synchronously.

        Args:
            task_id: Stored task id
            params: Placeholder values plus optional ``limit``/``offset``
            timeout: Seconds to wait for the result

        Returns:
            JobResult carrying the materialized rows, or the failure
        """
        tenant, task = await self._resolve_task(task_id, timeout)
        ad_hoc = build_ad_hoc_task(task, params, self.adhoc_max_row_num)
        logger.debug(f"Ad-hoc statement for task {task_id}: {ad_hoc.statement}")
        try:
            return await self.gateway.execute(ad_hoc, tenant, timeout=timeout)
        except GatewayError as e:
            logger.error(f"Ad-hoc execution of task {task_id} failed: {e}")
            return JobResult.failure(str(e), statement=ad_hoc.statement)
