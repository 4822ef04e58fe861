"""
Control Plane Exceptions

Domain exceptions raised before or during dispatch. The API layer translates
each one into a failed result envelope with the mapped HTTP status.
"""
from typing import Optional


class ControlPlaneError(Exception):
    """Base class for control plane errors."""

    http_status: int = 500

    def __init__(self, message: str = "", *, detail: Optional[str] = None):
        super().__init__(message)
        self.detail = detail


class InputValidationError(ControlPlaneError):
    """Malformed enumerated input, e.g. an unknown savepoint type (HTTP 400)."""

    http_status = 400


class NotSupportedExplainError(ControlPlaneError):
    """Statement construct cannot be statically explained (HTTP 400)."""

    http_status = 400


class TenantResolutionError(ControlPlaneError):
    """Id does not resolve to a tenant context (HTTP 404)."""

    http_status = 404


class TaskNotFoundError(ControlPlaneError):
    """Task does not exist within the resolved tenant (HTTP 404)."""

    http_status = 404


class JobInstanceNotFoundError(ControlPlaneError):
    """Job instance does not exist within the resolved tenant (HTTP 404)."""

    http_status = 404


class GatewayError(ControlPlaneError):
    """Job-management subsystem rejected or failed a command (HTTP 502)."""

    http_status = 502


class GatewayTimeoutError(GatewayError):
    """No reply from the job-management subsystem before the deadline (HTTP 504)."""

    http_status = 504


class LookupTimeoutError(ControlPlaneError):
    """Task registry or job instance tracker did not answer before the deadline (HTTP 504)."""

    http_status = 504
