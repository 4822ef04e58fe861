"""Tests for the HTTP surface."""

import pytest
from fastapi.testclient import TestClient

from taskplane.control_plane.exceptions import GatewayError, NotSupportedExplainError
from taskplane.control_plane.models import SavePointResult, SavePointType, TenantContext
from taskplane.main import app, get_orchestrator

TENANT = TenantContext(tenant_id=3, source="task", key=7)


@pytest.fixture
def client(orchestrator):
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health():
    response = TestClient(app).get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_uninitialized_orchestrator_is_unavailable():
    response = TestClient(app).get("/openapi/version")
    assert response.status_code == 503


def test_version(client):
    body = client.get("/openapi/version").json()
    assert body["code"] == 0
    assert body["data"] == "1.0.0"


def test_submit_task(client, gateway):
    response = client.post("/openapi/submitTask", json={"id": 7, "variables": {"env": "prod"}})

    body = response.json()
    assert response.status_code == 200
    assert body["code"] == 0
    assert body["status"] == "EXECUTE_SUCCESS"
    assert body["data"]["job_id"] == "job-1"
    assert gateway.submit.await_args.kwargs["variables"] == {"env": "prod"}


def test_submit_failure_is_a_failed_envelope(client, gateway):
    gateway.submit.side_effect = GatewayError("cluster unavailable")
    response = client.post("/openapi/submitTask", json={"id": 7})

    body = response.json()
    assert response.status_code == 200
    assert body["code"] == 1
    assert body["success"] is False
    assert body["msg"] == "cluster unavailable"


def test_cancel_defaults(client, gateway):
    body = client.get("/openapi/cancel", params={"id": 7}).json()
    assert body["data"] is True
    kwargs = gateway.cancel.await_args.kwargs
    assert kwargs["with_save_point"] is False
    assert kwargs["force_cancel"] is True


def test_cancel_with_savepoint_and_deadline(client, gateway):
    client.get(
        "/openapi/cancel",
        params={"id": 7, "withSavePoint": "true", "forceCancel": "false"},
        headers={"X-Request-Timeout": "2.5"},
    )
    kwargs = gateway.cancel.await_args.kwargs
    assert kwargs == {"with_save_point": True, "force_cancel": False, "timeout": 2.5}


def test_non_positive_deadline_rejected(client):
    response = client.get("/openapi/cancel", params={"id": 7}, headers={"X-Request-Timeout": "0"})
    assert response.status_code == 400


def test_unknown_task_is_tenant_not_found(client):
    response = client.get("/openapi/exportSql", params={"id": 999})
    body = response.json()
    assert response.status_code == 404
    assert body["code"] == 1
    assert body["status"] == "TENANT_NOT_FOUND"


def test_restart_task(client, gateway):
    body = client.get("/openapi/restartTask", params={"id": 7, "savePointPath": "s3://sp/1"}).json()
    assert body["data"]["status"] == "restarting"
    assert gateway.restart.await_args.kwargs["save_point_path"] == "s3://sp/1"


def test_savepoint_by_code_and_name(client, gateway):
    gateway.savepoint.return_value = SavePointResult(type=SavePointType.TRIGGER, path="s3://sp/2")

    by_code = client.post("/openapi/savepointTask", json={"task_id": 7, "type": 0}).json()
    by_name = client.post("/openapi/savepoint", params={"taskId": 7, "savePointType": "trigger"}).json()

    assert by_code["data"]["path"] == by_name["data"]["path"] == "s3://sp/2"
    assert [c.args[2] for c in gateway.savepoint.await_args_list] == [SavePointType.TRIGGER] * 2


def test_unknown_savepoint_type(client):
    response = client.post("/openapi/savepoint", params={"taskId": 7, "savePointType": "snapshot"})
    assert response.status_code == 400
    assert response.json()["status"] == "VALIDATION_ERROR"


def test_explain_not_supported(client, gateway):
    gateway.explain.side_effect = NotSupportedExplainError("DDL cannot be explained")
    response = client.post("/openapi/explainSql", json={"id": 7, "tenant_id": 3, "statement": "CREATE TABLE x"})

    body = response.json()
    assert response.status_code == 400
    assert body["status"] == "NOT_SUPPORT_EXPLAIN"
    assert body["msg"] == "DDL cannot be explained"


def test_explain_ok(client, gateway):
    gateway.explain.return_value = []
    response = client.post("/openapi/explainSql", json={"id": 7, "tenant_id": 3, "statement": "SELECT 1"})
    assert response.status_code == 200
    assert response.json()["data"] == []


def test_job_plan_uses_descriptor_tenant(client, gateway):
    gateway.job_plan.return_value = {"nodes": []}
    client.post("/openapi/getJobPlan", json={"id": 7, "tenant_id": 3, "statement": "SELECT 1"})
    assert gateway.job_plan.await_args.args[1] == TENANT


def test_job_instance_lookups(client):
    by_id = client.get("/openapi/getJobInstance", params={"id": 11}).json()
    by_task = client.get("/openapi/getJobInstanceByTaskId", params={"id": 7}).json()
    assert by_id["data"]["jid"] == "a1"
    assert by_task["data"]["id"] == 12


def test_unknown_job_instance(client):
    response = client.get("/openapi/getJobInstance", params={"id": 404})
    assert response.status_code == 404


def test_task_lineage(client, gateway):
    gateway.lineage.return_value = {"tables": [], "relations": []}
    body = client.get("/openapi/getTaskLineage", params={"id": 7}).json()
    assert body["data"] == {"tables": [], "relations": []}


def test_ad_hoc_execute(client, gateway):
    response = client.post(
        "/openapi/adHocExecute/7",
        json={"date": "2024-01-01", "name": "orders", "limit": "100"},
    )

    assert response.json()["code"] == 0
    task = gateway.execute.await_args.args[0]
    assert task.statement == "SELECT * FROM t WHERE d='2024-01-01' AND name=orders LIMIT 100 OFFSET 0"
    assert task.max_row_num == 5000


def test_ad_hoc_failure_envelope(client, gateway):
    gateway.execute.side_effect = GatewayError("table not found")
    body = client.post("/openapi/adHocExecute/7", json={}).json()
    assert body["code"] == 1
    assert body["msg"] == "table not found"
    assert body["data"]["success"] is False


def test_ad_hoc_numeric_pagination(client, gateway):
    response = client.post("/openapi/adHocExecute/7", json={"date": "2024-01-01", "limit": 100, "offset": 20})

    assert response.status_code == 200
    task = gateway.execute.await_args.args[0]
    assert task.statement == "SELECT * FROM t WHERE d='2024-01-01' AND name=null LIMIT 100 OFFSET 20"


def test_ad_hoc_null_value_binds_as_missing(client, gateway):
    client.post("/openapi/adHocExecute/7", json={"date": None})
    assert gateway.execute.await_args.args[0].statement == "SELECT * FROM t WHERE d=null AND name=null"


def test_restart_failure_is_a_failed_envelope(client, gateway):
    gateway.restart.side_effect = GatewayError("savepoint missing")
    response = client.get("/openapi/restartTask", params={"id": 7, "savePointPath": "s3://sp/gone"})

    body = response.json()
    assert response.status_code == 200
    assert body["code"] == 1
    assert body["msg"] == "savepoint missing"


@pytest.fixture
def slow_client(slow_orchestrator):
    app.dependency_overrides[get_orchestrator] = lambda: slow_orchestrator
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.mark.parametrize(
    "path,instance_or_task_id",
    [("/openapi/getJobInstance", 11), ("/openapi/getJobInstanceByTaskId", 7)],
)
def test_job_instance_lookups_honor_request_deadline(slow_client, path, instance_or_task_id):
    response = slow_client.get(path, params={"id": instance_or_task_id}, headers={"X-Request-Timeout": "0.05"})

    assert response.status_code == 504
    assert response.json()["status"] == "LOOKUP_TIMEOUT"
