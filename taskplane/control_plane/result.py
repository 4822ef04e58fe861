"""
Result Envelope

Uniform success/failure wrapper returned by every control plane operation.
"""
from datetime import datetime
from enum import Enum
from typing import Generic, Optional, TypeVar, Union

from pydantic import BaseModel, Field

from .exceptions import (
    ControlPlaneError,
    GatewayError,
    GatewayTimeoutError,
    InputValidationError,
    JobInstanceNotFoundError,
    LookupTimeoutError,
    NotSupportedExplainError,
    TaskNotFoundError,
    TenantResolutionError,
)
from .models import utc_now

T = TypeVar("T")

SUCCESS_CODE = 0
FAILED_CODE = 1


class Status(Enum):
    """Status taxonomy: (numeric code, default message)."""

    SUCCESS = (200, "Successfully")
    FAILED = (400, "Failed")
    QUERY_SUCCESS = (201, "Query successfully")
    EXECUTE_SUCCESS = (202, "Execute successfully")
    EXECUTE_FAILED = (401, "Execute failed")
    VALIDATION_ERROR = (402, "Invalid parameter")
    NOT_SUPPORT_EXPLAIN = (403, "Statement cannot be explained")
    TENANT_NOT_FOUND = (404, "Tenant could not be resolved")
    TASK_NOT_FOUND = (405, "Task not found")
    JOB_INSTANCE_NOT_FOUND = (406, "Job instance not found")
    GATEWAY_ERROR = (502, "Job management subsystem error")
    GATEWAY_TIMEOUT = (504, "Job management subsystem timed out")
    LOOKUP_TIMEOUT = (505, "Task or job instance lookup timed out")

    def __init__(self, code: int, message: str):
        self.code = code
        self.message = message


# Most specific class first; GatewayTimeoutError subclasses GatewayError.
_ERROR_STATUS = [
    (InputValidationError, Status.VALIDATION_ERROR),
    (NotSupportedExplainError, Status.NOT_SUPPORT_EXPLAIN),
    (TenantResolutionError, Status.TENANT_NOT_FOUND),
    (TaskNotFoundError, Status.TASK_NOT_FOUND),
    (JobInstanceNotFoundError, Status.JOB_INSTANCE_NOT_FOUND),
    (LookupTimeoutError, Status.LOOKUP_TIMEOUT),
    (GatewayTimeoutError, Status.GATEWAY_TIMEOUT),
    (GatewayError, Status.GATEWAY_ERROR),
]


def status_for_error(exc: ControlPlaneError) -> Status:
    """Map a control plane exception onto the status taxonomy."""
    for error_type, status in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return status
    return Status.FAILED


class Result(BaseModel, Generic[T]):
    """Response envelope: code 0 on success, 1 on failure."""

    code: int
    status: str
    msg: str
    data: Optional[T] = None
    success: bool
    time: datetime = Field(default_factory=utc_now)

    @classmethod
    def succeed(
        cls,
        data: Optional[T] = None,
        status: Union[Status, str] = Status.SUCCESS,
    ) -> "Result[T]":
        """Build a success envelope; a plain string is used as the message."""
        if isinstance(status, Status):
            return cls(code=SUCCESS_CODE, status=status.name, msg=status.message, data=data, success=True)
        return cls(code=SUCCESS_CODE, status=Status.SUCCESS.name, msg=status, data=data, success=True)

    @classmethod
    def failed(
        cls,
        data: Optional[T] = None,
        status: Union[Status, str, None] = Status.FAILED,
    ) -> "Result[T]":
        """Build a failure envelope; a plain string is used as the message."""
        if isinstance(status, Status):
            return cls(code=FAILED_CODE, status=status.name, msg=status.message, data=data, success=False)
        return cls(
            code=FAILED_CODE,
            status=Status.FAILED.name,
            msg=status or Status.FAILED.message,
            data=data,
            success=False,
        )

    @classmethod
    def from_error(cls, exc: ControlPlaneError) -> "Result[T]":
        """Failure envelope for a precondition or dispatch error."""
        status = status_for_error(exc)
        message = str(exc) or status.message
        return cls(code=FAILED_CODE, status=status.name, msg=message, data=exc.detail, success=False)
