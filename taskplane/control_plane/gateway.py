"""
Job Management Gateway

Bridges the Control Plane with the job-management subsystem.

Commands are published onto a Redis Stream; the subsystem answers each one by
pushing a JSON reply onto the command's ``reply_to`` list. A reply only means
the subsystem accepted (or answered) the command; submitted jobs keep running
asynchronously.

Each command carries ``reply_ttl``: the subsystem must EXPIRE the reply key
with it so replies nobody waits for any more do not accumulate.

Reply format:
    {"ok": bool, "data": ..., "error": str | None, "error_kind": str | None}
"""
import json
import logging
import time
import uuid
from typing import Any, Dict, List, Optional

import redis.asyncio as redis

from .exceptions import GatewayError, GatewayTimeoutError, NotSupportedExplainError
from .models import (
    JobResult,
    JobStatus,
    SavePointResult,
    SavePointType,
    SqlExplainResult,
    Task,
    TenantContext,
    is_reachable,
)

logger = logging.getLogger(__name__)

NOT_SUPPORTED_EXPLAIN = "not_supported_explain"

# Lifecycle state a command starts from, used to flag odd replies.
_EXPECTED_FROM = {
    "submit": JobStatus.CREATED,
    "restart": JobStatus.RUNNING,
    "execute": JobStatus.CREATED,
}


class JobManagerGateway:
    def __init__(
        self,
        redis_client: redis.Redis,
        stream_key: str = "taskplane:commands",
        reply_prefix: str = "taskplane:reply:",
        default_timeout: float = 30.0,
        maxlen: int = 10000,
        reply_ttl: int = 300,
    ):
        self.redis = redis_client
        self.stream_key = stream_key
        self.reply_prefix = reply_prefix
        self.default_timeout = default_timeout
        self.maxlen = maxlen
        self.reply_ttl = reply_ttl

    async def call(
        self,
        command: str,
        payload: Dict[str, Any],
        tenant: TenantContext,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Publish a command and wait for its reply.

        Args:
            command: Command name (submit, cancel, explain, ...)
            payload: JSON-serializable command arguments
            tenant: Resolved tenant scope for the command
            timeout: Seconds to wait for the reply; falls back to the
                gateway default, never waits unbounded

        Returns:
            The ``data`` field of the reply

        Raises:
            GatewayTimeoutError: No reply before the deadline
            NotSupportedExplainError: Subsystem cannot explain the statement
            GatewayError: Subsystem reported a failure
        """
        wait = self.default_timeout if timeout is None else timeout
        correlation_id = str(uuid.uuid4())
        reply_key = f"{self.reply_prefix}{correlation_id}"
        now = time.time()

        message = {
            "command": command,
            "correlation_id": correlation_id,
            "reply_to": reply_key,
            "tenant_id": tenant.tenant_id,
            "payload": json.dumps(payload, default=str),
            "deadline": now + wait,
            "reply_ttl": self.reply_ttl,
            "timestamp": now,
        }
        message_id = await self.redis.xadd(self.stream_key, message, maxlen=self.maxlen)
        logger.debug(f"Published {command} command {correlation_id} as {message_id}")

        reply = await self.redis.blpop([reply_key], timeout=wait)
        if reply is None:
            logger.warning(f"Command {command} ({correlation_id}) got no reply within {wait}s")
            # Covers a reply that raced the timeout; later replies get reply_ttl from the subsystem.
            await self.redis.expire(reply_key, self.reply_ttl)
            raise GatewayTimeoutError(f"{command} timed out after {wait}s", detail=correlation_id)

        _, raw = reply
        # Decode if bytes
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise GatewayError(f"Malformed reply to {command}: {e}", detail=correlation_id) from e

        if data.get("error_kind") == NOT_SUPPORTED_EXPLAIN:
            raise NotSupportedExplainError(data.get("error") or "Statement cannot be explained", detail=correlation_id)
        if not data.get("ok", False):
            logger.error(f"Command {command} ({correlation_id}) failed: {data.get('error')}")
            raise GatewayError(data.get("error") or f"{command} failed", detail=correlation_id)
        return data.get("data")

    def _job_result(self, command: str, data: Optional[Dict[str, Any]]) -> JobResult:
        result = JobResult.model_validate(data or {"success": True})
        source = _EXPECTED_FROM.get(command)
        if result.status and source and result.status != source and not is_reachable(source, result.status):
            logger.warning(f"Unexpected status {result.status.value} after {command}")
        if command == "execute" and result.status and not result.status.is_terminal:
            # Synchronous runs are expected to have ended
            logger.warning(f"Synchronous execute returned non-terminal status {result.status.value}")
        return result

    @staticmethod
    def _task_payload(task: Task) -> Dict[str, Any]:
        return task.model_dump(mode="json")

    async def submit(
        self,
        task: Task,
        tenant: TenantContext,
        save_point_path: Optional[str] = None,
        variables: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> JobResult:
        payload = {
            "task": self._task_payload(task),
            "save_point_path": save_point_path,
            "variables": variables or {},
        }
        return self._job_result("submit", await self.call("submit", payload, tenant, timeout))

    async def cancel(
        self,
        task: Task,
        tenant: TenantContext,
        with_save_point: bool = False,
        force_cancel: bool = True,
        timeout: Optional[float] = None,
    ) -> bool:
        payload = {
            "task_id": task.id,
            "with_save_point": with_save_point,
            "force_cancel": force_cancel,
        }
        return bool(await self.call("cancel", payload, tenant, timeout))

    async def restart(
        self,
        task: Task,
        tenant: TenantContext,
        save_point_path: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> JobResult:
        # An empty path is forwarded untouched; the subsystem decides its meaning.
        payload = {"task": self._task_payload(task), "save_point_path": save_point_path}
        return self._job_result("restart", await self.call("restart", payload, tenant, timeout))

    async def savepoint(
        self,
        task: Task,
        tenant: TenantContext,
        save_point_type: SavePointType,
        timeout: Optional[float] = None,
    ) -> SavePointResult:
        payload = {"task_id": task.id, "type": save_point_type.value, "type_code": save_point_type.code}
        data = await self.call("savepoint", payload, tenant, timeout) or {}
        return SavePointResult(
            type=save_point_type,
            path=data.get("path"),
            success=data.get("success", True),
            error=data.get("error"),
        )

    async def explain(
        self, task: Task, tenant: TenantContext, timeout: Optional[float] = None
    ) -> List[SqlExplainResult]:
        data = await self.call("explain", {"task": self._task_payload(task)}, tenant, timeout)
        return [SqlExplainResult.model_validate(item) for item in data or []]

    async def job_plan(self, task: Task, tenant: TenantContext, timeout: Optional[float] = None) -> Dict[str, Any]:
        return await self.call("job_plan", {"task": self._task_payload(task)}, tenant, timeout) or {}

    async def stream_graph(
        self, task: Task, tenant: TenantContext, timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        return await self.call("stream_graph", {"task": self._task_payload(task)}, tenant, timeout) or {}

    async def lineage(self, task: Task, tenant: TenantContext, timeout: Optional[float] = None) -> Dict[str, Any]:
        payload = {"task": self._task_payload(task), "datasets": task.referenced_datasets}
        return await self.call("lineage", payload, tenant, timeout) or {}

    async def export_sql(self, task: Task, tenant: TenantContext, timeout: Optional[float] = None) -> str:
        data = await self.call("export_sql", {"task": self._task_payload(task)}, tenant, timeout)
        return data if isinstance(data, str) else task.statement

    async def execute(self, task: Task, tenant: TenantContext, timeout: Optional[float] = None) -> JobResult:
        """Run ``task`` synchronously and return its materialized result."""
        payload = {"task": self._task_payload(task), "sync": True}
        return self._job_result("execute", await self.call("execute", payload, tenant, timeout))
