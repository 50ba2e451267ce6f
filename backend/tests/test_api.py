"""API tests: workflow CRUD, manual and webhook triggers, run history, health."""

import json

import pytest

from db.models import KeyResult, WorkItem, Workflow
from triggers.handlers.webhook import compute_signature

BASE = "/api/v1"

LOG_STEPS = [
    {"id": "first", "type": "log_event", "name": "First", "config": {"message": "Hello {note}"}},
    {"id": "second", "type": "log_event", "name": "Second", "config": {"message": "Bye"}},
]


async def create_workflow(client, **overrides):
    body = {"name": "Test Workflow", "steps": LOG_STEPS}
    body.update(overrides)
    response = await client.post(f"{BASE}/workflows/", json=body)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.integration
class TestWorkflowCrud:
    async def test_create_and_get(self, client):
        created = await create_workflow(client, description="Nightly sync")

        response = await client.get(f"{BASE}/workflows/{created['id']}")
        assert response.status_code == 200
        data = response.json()
        assert data["description"] == "Nightly sync"
        assert data["trigger_type"] == "manual"
        assert [s["id"] for s in data["steps"]] == ["first", "second"]

    async def test_invalid_steps_return_422(self, client):
        response = await client.post(f"{BASE}/workflows/", json={
            "name": "Broken", "steps": [{"id": "x", "type": "teleport", "config": {}}],
        })
        assert response.status_code == 422
        assert "unknown type" in response.json()["detail"]

    async def test_list(self, client):
        await create_workflow(client, name="One")
        await create_workflow(client, name="Two")

        response = await client.get(f"{BASE}/workflows/", params={"page": 1, "per_page": 10})
        assert response.status_code == 200
        assert response.json()["total"] == 2

    async def test_update(self, client):
        created = await create_workflow(client)

        response = await client.put(f"{BASE}/workflows/{created['id']}", json={"name": "Renamed", "is_enabled": False})
        assert response.status_code == 200
        assert response.json()["name"] == "Renamed"
        assert response.json()["is_enabled"] is False

    async def test_empty_update_rejected(self, client):
        created = await create_workflow(client)
        response = await client.put(f"{BASE}/workflows/{created['id']}", json={})
        assert response.status_code == 400

    async def test_delete(self, client):
        created = await create_workflow(client)

        assert (await client.delete(f"{BASE}/workflows/{created['id']}")).status_code == 204
        assert (await client.get(f"{BASE}/workflows/{created['id']}")).status_code == 404
        assert (await client.delete(f"{BASE}/workflows/{created['id']}")).status_code == 404

    async def test_reorder_steps(self, client):
        created = await create_workflow(client)

        response = await client.post(
            f"{BASE}/workflows/{created['id']}/steps/reorder", json={"step_ids": ["second", "first"]},
        )
        assert response.status_code == 200
        assert [s["id"] for s in response.json()["steps"]] == ["second", "first"]

        bad = await client.post(f"{BASE}/workflows/{created['id']}/steps/reorder", json={"step_ids": ["first"]})
        assert bad.status_code == 422


@pytest.mark.integration
class TestManualRuns:
    async def test_execute_and_fetch_run(self, client, dispatcher):
        created = await create_workflow(client)

        response = await client.post(
            f"{BASE}/workflows/{created['id']}/execute", json={"payload": {"note": "world"}},
        )
        assert response.status_code == 202
        run_id = response.json()["run_id"]
        await dispatcher.engine.wait_for_run(run_id)

        run = (await client.get(f"{BASE}/executions/{run_id}")).json()
        assert run["status"] == "completed"
        assert run["trigger_source"] == "manual"
        assert run["steps_completed"] == 2
        assert run["execution_log"][0]["output"]["message"] == "Hello world"
        assert run["result_data"]["note"] == "world"

        log = (await client.get(f"{BASE}/executions/{run_id}/log")).json()
        assert [entry["step_id"] for entry in log] == ["first", "second"]

        history = (await client.get(f"{BASE}/workflows/{created['id']}/runs")).json()
        assert history["total"] == 1
        assert history["executions"][0]["id"] == run_id

        workflow = (await client.get(f"{BASE}/workflows/{created['id']}")).json()
        assert workflow["last_run_status"] == "completed"
        assert workflow["last_successful_run_at"] is not None

    async def test_execute_without_body(self, client, dispatcher):
        created = await create_workflow(client)
        response = await client.post(f"{BASE}/workflows/{created['id']}/execute")
        assert response.status_code == 202
        await dispatcher.engine.wait_for_run(response.json()["run_id"])

    async def test_execute_while_running_returns_409(self, client, dispatcher):
        created = await create_workflow(client)
        dispatcher.engine.run_lock.try_acquire(created["id"], "another-run")

        response = await client.post(f"{BASE}/workflows/{created['id']}/execute")
        assert response.status_code == 409

        history = (await client.get(f"{BASE}/workflows/{created['id']}/runs")).json()
        assert history["total"] == 0

    async def test_execute_missing_workflow(self, client):
        response = await client.post(f"{BASE}/workflows/does-not-exist/execute")
        assert response.status_code == 404

    async def test_execute_workflow_without_steps(self, client):
        created = await create_workflow(client, steps=[])
        response = await client.post(f"{BASE}/workflows/{created['id']}/execute")
        assert response.status_code == 422

    async def test_corrupt_stored_definition_records_failed_run(self, client, dispatcher, session_factory):
        created = await create_workflow(client)
        async with session_factory() as session:
            workflow = await session.get(Workflow, created["id"])
            workflow.steps = [{"type": "log_event", "config": {"message": "no id"}}]
            await session.commit()

        response = await client.post(f"{BASE}/workflows/{created['id']}/execute")
        assert response.status_code == 202

        run = (await client.get(f"{BASE}/executions/{response.json()['run_id']}")).json()
        assert run["status"] == "failed"
        assert run["error_message"] == "Internal engine error"
        assert run["execution_log"] == []
        assert not dispatcher.engine.run_lock.is_locked(created["id"])

    async def test_missing_run(self, client):
        assert (await client.get(f"{BASE}/executions/nope")).status_code == 404

    async def test_failed_run_reports_step(self, client, dispatcher):
        created = await create_workflow(client, steps=[
            {"id": "kr", "type": "strategy_update", "name": "Set KR",
             "config": {"type": "key_result", "targetId": "kr-missing", "value": 1}},
        ])
        run_id = (await client.post(f"{BASE}/workflows/{created['id']}/execute")).json()["run_id"]
        await dispatcher.engine.wait_for_run(run_id)

        run = (await client.get(f"{BASE}/executions/{run_id}")).json()
        assert run["status"] == "failed"
        assert run["error_message"] == "Step 1 (Set KR) failed: Key Result kr-missing not found"

    async def test_query_updates_key_result(self, client, dispatcher, session_factory):
        async with session_factory() as session:
            session.add(KeyResult(id="kr-1", title="Closed items", current_value=0, target_value=10))
            session.add_all([
                WorkItem(title="A", status="Done", data={}),
                WorkItem(title="B", status="Done", data={}),
                WorkItem(title="C", status="Planning", data={}),
            ])
            await session.commit()

        created = await create_workflow(client, steps=[
            {"id": "count", "type": "data_source_query", "config": {
                "sourceTable": "work_items",
                "filters": [{"field": "status", "operator": "equals", "value": "Done"}],
                "resultVariable": "doneCount",
            }},
            {"id": "kr", "type": "strategy_update", "config": {
                "type": "key_result", "targetId": "kr-1", "value": "{doneCount}",
            }},
        ])
        run_id = (await client.post(f"{BASE}/workflows/{created['id']}/execute")).json()["run_id"]
        run = await dispatcher.engine.wait_for_run(run_id)

        assert run.status.value == "completed"
        async with session_factory() as session:
            assert (await session.get(KeyResult, "kr-1")).current_value == 2


@pytest.mark.integration
class TestWebhooks:
    async def _webhook_workflow(self, client, **config):
        trigger_config = {"identifier": "new-lead", **config}
        steps = [{"id": "log", "type": "log_event", "config": {"message": "Lead {leadId}"}}]
        return await create_workflow(client, trigger_type="webhook", trigger_config=trigger_config, steps=steps)

    async def test_unknown_identifier(self, client):
        response = await client.post(f"{BASE}/webhooks/nobody", json={})
        assert response.status_code == 404

    async def test_signed_webhook_starts_run(self, client, dispatcher):
        await self._webhook_workflow(client, secret="s3cret")
        body = json.dumps({"leadId": 77}).encode()

        response = await client.post(
            f"{BASE}/webhooks/new-lead",
            content=body,
            headers={"Content-Type": "application/json", "X-Signature": compute_signature("s3cret", body)},
        )
        assert response.status_code == 202
        run = await dispatcher.engine.wait_for_run(response.json()["run_id"])
        assert run.trigger_source == "webhook"
        assert run.execution_log[0].output["message"] == "Lead 77"

    async def test_bad_signature(self, client):
        await self._webhook_workflow(client, secret="s3cret")
        response = await client.post(
            f"{BASE}/webhooks/new-lead", content=b'{"leadId": 1}', headers={"X-Signature": "sha256=00"},
        )
        assert response.status_code == 401

    async def test_non_object_body(self, client):
        await self._webhook_workflow(client)
        response = await client.post(f"{BASE}/webhooks/new-lead", content=b"[1, 2]")
        assert response.status_code == 422

    async def test_disabled_workflow(self, client):
        created = await self._webhook_workflow(client)
        await client.put(f"{BASE}/workflows/{created['id']}", json={"is_enabled": False})

        response = await client.post(f"{BASE}/webhooks/new-lead", json={"leadId": 1})
        assert response.status_code == 409


@pytest.mark.integration
class TestIntegrations:
    async def test_platforms(self, client):
        response = await client.get(f"{BASE}/integrations/platforms")
        assert response.status_code == 200
        platforms = {p["platform_type"]: p for p in response.json()}
        assert "count_customers" in platforms["splynx"]["actions"]
        assert "data_table" in platforms

    async def test_create_hides_credentials(self, client):
        response = await client.post(f"{BASE}/integrations/", json={
            "name": "Main ISP",
            "platform_type": "splynx",
            "base_url": "https://isp.example.com",
            "credentials": {"apiKey": "key", "apiSecret": "s3cret"},
        })
        assert response.status_code == 201, response.text
        data = response.json()
        assert data["has_credentials"] is True
        assert "credentials" not in data

        listing = await client.get(f"{BASE}/integrations/")
        assert listing.json()["total"] == 1
        assert "s3cret" not in listing.text

    async def test_unknown_platform_is_422(self, client):
        response = await client.post(f"{BASE}/integrations/", json={"name": "CRM", "platform_type": "salesforce"})
        assert response.status_code == 422

    async def test_deactivate_and_delete(self, client):
        created = (await client.post(f"{BASE}/integrations/", json={
            "name": "Tables", "platform_type": "data_table", "settings": {"table": "work_items"},
        })).json()

        response = await client.put(f"{BASE}/integrations/{created['id']}/active", json={"is_active": False})
        assert response.status_code == 200
        assert response.json()["is_active"] is False

        assert (await client.delete(f"{BASE}/integrations/{created['id']}")).status_code == 204
        assert (await client.delete(f"{BASE}/integrations/{created['id']}")).status_code == 404

    async def test_integration_step_uses_registered_connection(self, client, dispatcher, session_factory):
        async with session_factory() as session:
            session.add_all([
                WorkItem(title="A", status="open", data={}),
                WorkItem(title="B", status="open", data={}),
                WorkItem(title="C", status="done", data={}),
            ])
            await session.commit()
        integration = (await client.post(f"{BASE}/integrations/", json={
            "name": "Tables", "platform_type": "data_table", "settings": {"table": "work_items"},
        })).json()
        workflow = await create_workflow(client, steps=[{
            "id": "count", "type": "integration_action", "name": "Count open",
            "config": {
                "integrationId": integration["id"],
                "action": "count",
                "parameters": {"filters": [{"field": "status", "operator": "equals", "value": "open"}]},
                "resultVariable": "open_items",
            },
        }])

        started = await client.post(f"{BASE}/workflows/{workflow['id']}/execute")
        assert started.status_code == 202
        run_id = started.json()["run_id"]
        await dispatcher.engine.wait_for_run(run_id)
        run = (await client.get(f"{BASE}/executions/{run_id}")).json()
        assert run["status"] == "completed", run
        assert run["result_data"]["open_items"] == 2


@pytest.mark.integration
class TestStepTypes:
    async def test_lists_every_step_type(self, client):
        response = await client.get(f"{BASE}/step-types/")
        assert response.status_code == 200
        data = response.json()
        types = {t["task_type"] for t in data["step_types"]}
        assert {"integration_action", "strategy_update", "for_each", "notification"} <= types
        assert data["count"] == 8

    async def test_config_schema_uses_camel_case(self, client):
        response = await client.get(f"{BASE}/step-types/data_source_query")
        assert response.status_code == 200
        assert "sourceTable" in response.json()["config_schema"]["properties"]

    async def test_unknown_step_type(self, client):
        assert (await client.get(f"{BASE}/step-types/teleport")).status_code == 404


@pytest.mark.integration
class TestHealth:
    async def test_liveness(self, client):
        response = await client.get(f"{BASE}/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    async def test_ready(self, client):
        response = await client.get(f"{BASE}/health/ready")
        assert response.status_code == 200
        assert response.json()["database"] == "ok"

    async def test_status(self, client):
        response = await client.get(f"{BASE}/health/status")
        assert response.status_code == 200
        assert response.json()["running_runs"] == []

    async def test_request_id_is_echoed(self, client):
        response = await client.get(f"{BASE}/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"
        assert response.headers["X-Process-Time"].endswith("ms")

    async def test_engine_errors_carry_request_id(self, client):
        response = await client.post(f"{BASE}/webhooks/unknown-hook", json={})
        assert response.status_code == 404
        assert response.json()["request_id"]
