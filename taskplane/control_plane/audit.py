"""
Operation Audit

Structured audit events around orchestrator operations. Operation metadata is
passed to the decorator as data; every call emits ``operation.started`` and
then ``operation.succeeded`` or ``operation.failed``.
"""
import functools
import time
from dataclasses import dataclass
from enum import Enum

import structlog

from .models import ExplainNotSupported

logger = structlog.get_logger("taskplane.audit")


class BusinessType(str, Enum):
    QUERY = "query"
    SUBMIT = "submit"
    TRIGGER = "trigger"
    REMOTE_OPERATION = "remote_operation"
    EXPORT = "export"
    OTHER = "other"


@dataclass(frozen=True)
class OperationMeta:
    title: str
    business_type: BusinessType = BusinessType.OTHER


def audited(meta: OperationMeta):
    """Wrap an async operation with audit event emission."""

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            log = logger.bind(operation=meta.title, business_type=meta.business_type.value)
            log.info("operation.started")
            started = time.monotonic()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                log.warning(
                    "operation.failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    duration_ms=int((time.monotonic() - started) * 1000),
                )
                raise
            log.info(
                "operation.succeeded",
                outcome=_outcome(result),
                duration_ms=int((time.monotonic() - started) * 1000),
            )
            return result

        wrapper.operation_meta = meta
        return wrapper

    return decorator


def _outcome(result) -> str:
    # JobResult-like values carry their own success flag
    success = getattr(result, "success", None)
    if success is False or result is False:
        return "failure"
    if isinstance(result, ExplainNotSupported):
        return "not_supported"
    return "success"
