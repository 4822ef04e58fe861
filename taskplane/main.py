"""
Control Plane API

FastAPI application exposing the task and job lifecycle operations.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional, Union

import structlog
from fastapi import Body, Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from redis.asyncio import Redis

from . import __version__
from .config import ControlPlaneSettings
from .database import Database
from .control_plane.exceptions import ControlPlaneError
from .control_plane.gateway import JobManagerGateway
from .control_plane.job_orchestrator import JobOrchestrator
from .control_plane.models import (
    ExplainNotSupported,
    SavePointTaskRequest,
    Task,
    TaskSubmitRequest,
)
from .control_plane.registry import SqlJobInstanceTracker, SqlTaskRegistry
from .control_plane.result import Result, Status


def setup_logging(level: str = "INFO") -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ]
    )
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO))


# Initialize settings and logging
settings = ControlPlaneSettings()
setup_logging(settings.log_level)
logger = structlog.get_logger(__name__)

# Initialize connections
redis_client = Redis.from_url(settings.redis_url, decode_responses=True)
db = Database(settings)

# Initialize orchestrator (will be created in lifespan)
orchestrator: JobOrchestrator | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    FastAPI lifespan: startup and shutdown.

    - Wire registry, tracker and gateway into the orchestrator
    - Close database and Redis connections on shutdown
    """
    global orchestrator

    logger.info("control_plane_starting")
    gateway = JobManagerGateway(
        redis_client,
        stream_key=settings.command_stream,
        reply_prefix=settings.reply_prefix,
        default_timeout=settings.gateway_timeout_seconds,
        reply_ttl=settings.reply_ttl_seconds,
    )
    orchestrator = JobOrchestrator(
        task_registry=SqlTaskRegistry(db),
        job_instance_tracker=SqlJobInstanceTracker(db),
        gateway=gateway,
        adhoc_max_row_num=settings.adhoc_max_row_num,
    )
    logger.info("control_plane_ready", command_stream=settings.command_stream)

    yield

    logger.info("control_plane_shutting_down")
    orchestrator = None
    await db.dispose()
    await redis_client.aclose()
    logger.info("control_plane_stopped")


app = FastAPI(
    title="Task Control Plane API",
    description="""
    Control plane for SQL-defined streaming analytics jobs.

    * **Lifecycle**: submit, cancel, restart from savepoint, trigger savepoints
    * **Inspection**: explain, job plan, stream graph, lineage, SQL export
    * **Ad-hoc queries**: run stored task statements with bound parameters
    """,
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


def get_orchestrator() -> JobOrchestrator:
    """Dependency to get orchestrator instance."""
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Orchestrator not initialized"
        )
    return orchestrator


def request_timeout(
    x_request_timeout: Optional[float] = Header(default=None, alias="X-Request-Timeout"),
) -> Optional[float]:
    """Caller deadline in seconds, forwarded to the job-management subsystem."""
    if x_request_timeout is not None and x_request_timeout <= 0:
        raise HTTPException(status_code=400, detail="X-Request-Timeout must be positive")
    return x_request_timeout


@app.exception_handler(ControlPlaneError)
async def control_plane_error_handler(request: Request, exc: ControlPlaneError) -> JSONResponse:
    """Map domain errors to failed result envelopes."""
    result = Result.from_error(exc)
    log = logger.error if exc.http_status >= 500 else logger.warning
    log(
        "request_failed",
        status=result.status,
        message=result.msg,
        http_status=exc.http_status,
        path=str(request.url.path),
    )
    return JSONResponse(status_code=exc.http_status, content=result.model_dump(mode="json"))


def _job_result_envelope(job_result) -> Result:
    if job_result.success:
        return Result.succeed(job_result, Status.EXECUTE_SUCCESS)
    return Result.failed(job_result, job_result.error)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "control-plane"}


@app.get("/openapi/version")
async def get_version(orch: JobOrchestrator = Depends(get_orchestrator)):
    return Result.succeed(await orch.get_version(), Status.QUERY_SUCCESS)


@app.post("/openapi/submitTask")
async def submit_task(
    request: TaskSubmitRequest,
    timeout: Optional[float] = Depends(request_timeout),
    orch: JobOrchestrator = Depends(get_orchestrator),
):
    return _job_result_envelope(await orch.submit_task(request, timeout=timeout))


@app.post("/openapi/savepointTask")
async def savepoint_task(
    request: SavePointTaskRequest,
    timeout: Optional[float] = Depends(request_timeout),
    orch: JobOrchestrator = Depends(get_orchestrator),
):
    result = await orch.savepoint_task(request.task_id, request.type, timeout=timeout)
    return Result.succeed(result, Status.EXECUTE_SUCCESS)


@app.get("/openapi/cancel")
async def cancel(
    id: int,
    with_save_point: bool = Query(default=False, alias="withSavePoint"),
    force_cancel: bool = Query(default=True, alias="forceCancel"),
    timeout: Optional[float] = Depends(request_timeout),
    orch: JobOrchestrator = Depends(get_orchestrator),
):
    accepted = await orch.cancel(id, with_save_point=with_save_point, force_cancel=force_cancel, timeout=timeout)
    return Result.succeed(accepted, Status.EXECUTE_SUCCESS)


@app.get("/openapi/restartTask")
async def restart_task(
    id: int,
    save_point_path: Optional[str] = Query(default=None, alias="savePointPath"),
    timeout: Optional[float] = Depends(request_timeout),
    orch: JobOrchestrator = Depends(get_orchestrator),
):
    return _job_result_envelope(await orch.restart_task(id, save_point_path, timeout=timeout))


@app.post("/openapi/savepoint")
async def trigger_savepoint(
    task_id: int = Query(alias="taskId"),
    save_point_type: str = Query(alias="savePointType"),
    timeout: Optional[float] = Depends(request_timeout),
    orch: JobOrchestrator = Depends(get_orchestrator),
):
    result = await orch.trigger_savepoint(task_id, save_point_type, timeout=timeout)
    return Result.succeed(result, Status.EXECUTE_SUCCESS)


@app.post("/openapi/explainSql")
async def explain_sql(
    task: Task,
    timeout: Optional[float] = Depends(request_timeout),
    orch: JobOrchestrator = Depends(get_orchestrator),
):
    outcome = await orch.explain_sql(task, timeout=timeout)
    if isinstance(outcome, ExplainNotSupported):
        failed = Result.failed(None, Status.NOT_SUPPORT_EXPLAIN)
        failed.msg = outcome.reason
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=failed.model_dump(mode="json"))
    return Result.succeed(outcome.results, Status.EXECUTE_SUCCESS)


@app.post("/openapi/getJobPlan")
async def get_job_plan(
    task: Task,
    timeout: Optional[float] = Depends(request_timeout),
    orch: JobOrchestrator = Depends(get_orchestrator),
):
    return Result.succeed(await orch.get_job_plan(task, timeout=timeout), Status.EXECUTE_SUCCESS)


@app.post("/openapi/getStreamGraph")
async def get_stream_graph(
    task: Task,
    timeout: Optional[float] = Depends(request_timeout),
    orch: JobOrchestrator = Depends(get_orchestrator),
):
    return Result.succeed(await orch.get_stream_graph(task, timeout=timeout), Status.EXECUTE_SUCCESS)


@app.get("/openapi/getJobInstance")
async def get_job_instance(
    id: int,
    timeout: Optional[float] = Depends(request_timeout),
    orch: JobOrchestrator = Depends(get_orchestrator),
):
    return Result.succeed(await orch.get_job_instance(id, timeout=timeout), Status.QUERY_SUCCESS)


@app.get("/openapi/getJobInstanceByTaskId")
async def get_job_instance_by_task_id(
    id: int,
    timeout: Optional[float] = Depends(request_timeout),
    orch: JobOrchestrator = Depends(get_orchestrator),
):
    return Result.succeed(await orch.get_job_instance_by_task_id(id, timeout=timeout), Status.QUERY_SUCCESS)


@app.get("/openapi/exportSql")
async def export_sql(
    id: int,
    timeout: Optional[float] = Depends(request_timeout),
    orch: JobOrchestrator = Depends(get_orchestrator),
):
    return Result.succeed(await orch.export_sql(id, timeout=timeout))


@app.get("/openapi/getTaskLineage")
async def get_task_lineage(
    id: int,
    timeout: Optional[float] = Depends(request_timeout),
    orch: JobOrchestrator = Depends(get_orchestrator),
):
    return Result.succeed(await orch.get_task_lineage(id, timeout=timeout), Status.QUERY_SUCCESS)


@app.post("/openapi/adHocExecute/{id}")
async def ad_hoc_execute(
    id: int,
    params: Dict[str, Union[str, int, float, None]] = Body(...),
    timeout: Optional[float] = Depends(request_timeout),
    orch: JobOrchestrator = Depends(get_orchestrator),
):
    # JSON numbers (e.g. "limit": 100) bind as their text; null counts as missing.
    bound = {key: str(value) for key, value in params.items() if value is not None}
    return _job_result_envelope(await orch.ad_hoc_execute(id, bound, timeout=timeout))


# For running directly with python -m
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "taskplane.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )
