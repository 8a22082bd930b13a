"""
Integration tests for the HTTP API.
"""

from uuid import uuid4

import httpx
import pytest
import pytest_asyncio

from automation_engine.api.app import create_app
from automation_engine.orchestrator.engine import AutomationEngine


@pytest_asyncio.fixture
async def engine(store, test_settings, email_sender, whatsapp_sender, http_client, clock):
    engine = AutomationEngine(
        store,
        settings=test_settings,
        email_sender=email_sender,
        whatsapp_sender=whatsapp_sender,
        http_client=http_client,
        clock=clock,
    )
    yield engine
    await engine.stop()


@pytest_asyncio.fixture
async def client(engine, test_settings):
    app = create_app(engine=engine, settings=test_settings)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


WEBHOOK_WORKFLOW = {
    "name": "Notify CRM",
    "triggerType": "client_created",
    "nodes": [
        {"id": "t", "kind": "trigger"},
        {"id": "hook", "kind": "action",
         "config": {"actionType": "webhook", "url": "https://crm.example.com/hooks/{{client_id}}"}},
    ],
    "connections": [{"sourceNodeId": "t", "targetNodeId": "hook"}],
}

DELAY_WORKFLOW = {
    "name": "Wait a day",
    "triggerType": "manual",
    "nodes": [
        {"id": "t", "kind": "trigger"},
        {"id": "wait", "kind": "delay", "config": {"duration": 1, "unit": "days"}},
    ],
    "connections": [{"sourceNodeId": "t", "targetNodeId": "wait"}],
}


async def create_active(client: httpx.AsyncClient, body: dict) -> str:
    response = await client.post("/v1/workflows", json=body)
    assert response.status_code == 201
    workflow_id = response.json()["id"]
    response = await client.post(f"/v1/workflows/{workflow_id}/activate")
    assert response.status_code == 200
    return workflow_id


class TestHealth:
    """Tests for the health endpoints."""

    @pytest.mark.asyncio
    async def test_health(self, client):
        """Test health reports the stopped scheduler without failing."""
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["services"] == {"scheduler": "stopped"}

    @pytest.mark.asyncio
    async def test_root(self, client):
        """Test the root endpoint."""
        response = await client.get("/")

        assert response.json()["status"] == "running"


class TestWorkflowRoutes:
    """Tests for workflow management routes."""

    @pytest.mark.asyncio
    async def test_create_activate_execute(self, client):
        """Test the full manual run flow."""
        response = await client.post("/v1/workflows", json=WEBHOOK_WORKFLOW)
        assert response.status_code == 201
        workflow = response.json()
        assert workflow["status"] == "inactive"

        response = await client.post(f"/v1/workflows/{workflow['id']}/execute", json={"trigger_data": {}})
        assert response.status_code == 400

        response = await client.post(f"/v1/workflows/{workflow['id']}/activate")
        assert response.json()["status"] == "active"

        response = await client.post(
            f"/v1/workflows/{workflow['id']}/execute",
            json={"trigger_data": {"client_id": 12}},
        )
        assert response.status_code == 200
        result = response.json()
        assert result["success"] is True
        assert result["status"] == "completed"

        response = await client.get(f"/v1/workflows/{workflow['id']}/executions")
        executions = response.json()
        assert [e["id"] for e in executions] == [result["execution_id"]]
        assert executions[0]["variables"]["webhook_status_code"] == 200

    @pytest.mark.asyncio
    async def test_get_workflow(self, client):
        """Test fetching a workflow with its graph."""
        workflow_id = await create_active(client, WEBHOOK_WORKFLOW)

        response = await client.get(f"/v1/workflows/{workflow_id}")

        assert response.status_code == 200
        assert [n["id"] for n in response.json()["nodes"]] == ["t", "hook"]

    @pytest.mark.asyncio
    async def test_unknown_workflow(self, client):
        """Test 404s for unknown workflow ids."""
        unknown = uuid4()

        assert (await client.get(f"/v1/workflows/{unknown}")).status_code == 404
        assert (await client.post(f"/v1/workflows/{unknown}/activate")).status_code == 404
        assert (await client.post(f"/v1/workflows/{unknown}/execute")).status_code == 404
        assert (await client.delete(f"/v1/workflows/{unknown}")).status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_graphs(self, client):
        """Test 400s for structurally invalid workflows."""
        no_trigger = {**WEBHOOK_WORKFLOW, "nodes": WEBHOOK_WORKFLOW["nodes"][1:], "connections": []}
        duplicate = {**WEBHOOK_WORKFLOW, "nodes": [{"id": "t", "kind": "trigger"}] * 2, "connections": []}

        assert (await client.post("/v1/workflows", json=no_trigger)).status_code == 400
        assert (await client.post("/v1/workflows", json=duplicate)).status_code == 400

    @pytest.mark.asyncio
    async def test_delete(self, client):
        """Test deleting a workflow."""
        workflow_id = await create_active(client, WEBHOOK_WORKFLOW)

        assert (await client.delete(f"/v1/workflows/{workflow_id}")).status_code == 204
        assert (await client.get(f"/v1/workflows/{workflow_id}")).status_code == 404


class TestTemplateRoutes:
    """Tests for template routes."""

    @pytest.mark.asyncio
    async def test_list_and_instantiate(self, client):
        """Test listing and instantiating templates."""
        response = await client.get("/v1/templates")
        keys = {t["key"] for t in response.json()}
        assert "invoice_approval" in keys

        response = await client.post("/v1/templates/invoice_approval", json={"owner_id": "user-1"})
        assert response.status_code == 201
        assert response.json()["status"] == "inactive"

        response = await client.post("/v1/templates/not_a_template")
        assert response.status_code == 404


class TestExecutionRoutes:
    """Tests for approval and resume routes."""

    @pytest.mark.asyncio
    async def test_approval_reject_then_conflict(self, client):
        """Test rejecting once succeeds and a second decision conflicts."""
        response = await client.post("/v1/templates/invoice_approval")
        workflow_id = response.json()["id"]
        await client.post(f"/v1/workflows/{workflow_id}/activate")

        response = await client.post(f"/v1/workflows/{workflow_id}/execute", json={"trigger_data": {"invoice_id": "x"}})
        paused = response.json()
        assert paused["status"] == "paused"

        response = await client.post(f"/v1/executions/{paused['execution_id']}/reject", json={"actor_id": "owner"})
        assert response.status_code == 200
        assert response.json()["status"] == "completed"

        response = await client.post(f"/v1/executions/{paused['execution_id']}/approve")
        assert response.status_code == 409

        response = await client.get(f"/v1/executions/{paused['execution_id']}")
        assert response.json()["variables"]["approval_status"] == "rejected"

    @pytest.mark.asyncio
    async def test_resume_not_due_then_forced(self, client):
        """Test resume conflicts before due and succeeds when forced."""
        workflow_id = await create_active(client, DELAY_WORKFLOW)
        response = await client.post(f"/v1/workflows/{workflow_id}/execute")
        execution_id = response.json()["execution_id"]

        response = await client.post(f"/v1/executions/{execution_id}/resume")
        assert response.status_code == 409

        response = await client.post(f"/v1/executions/{execution_id}/approve")
        assert response.status_code == 409

        response = await client.post(f"/v1/executions/{execution_id}/resume", json={"force": True})
        assert response.status_code == 200
        assert response.json()["status"] == "completed"

    @pytest.mark.asyncio
    async def test_unknown_execution(self, client):
        """Test 404s for unknown execution ids."""
        unknown = uuid4()

        assert (await client.get(f"/v1/executions/{unknown}")).status_code == 404
        assert (await client.post(f"/v1/executions/{unknown}/approve")).status_code == 404
        assert (await client.post(f"/v1/executions/{unknown}/resume")).status_code == 404


class TestEventRoutes:
    """Tests for event emission."""

    @pytest.mark.asyncio
    async def test_emit_event(self, client, engine):
        """Test events are accepted and run in the background."""
        workflow_id = await create_active(client, WEBHOOK_WORKFLOW)

        response = await client.post(
            "/v1/events",
            json={"event_type": "client_created", "entity_data": {"id": 3, "name": "Anna"}},
        )
        assert response.status_code == 202

        await engine.router.drain(timeout=5)
        executions = await engine.list_executions(workflow_id)
        assert len(executions) == 1
        assert executions[0].trigger_data["client_name"] == "Anna"

    @pytest.mark.asyncio
    async def test_unknown_event_type(self, client):
        """Test unknown event types are rejected."""
        response = await client.post("/v1/events", json={"event_type": "planet_created"})

        assert response.status_code == 400
