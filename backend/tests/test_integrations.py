"""Tests for integration adapters and the registry (Splynx over httpx.MockTransport)."""

import base64
import json

import httpx
import pytest
from cryptography.fernet import Fernet

from core.constants import Aggregation
from core.exceptions import AdapterError, NotFoundError, ValidationError
from core.security import CredentialVault, get_vault
from db.models import IntegrationConnection as IntegrationConnectionRow
from integrations.base import IntegrationConnection
from integrations.data_tables import DataTableAdapter
from integrations.registry import IntegrationRegistry
from integrations.splynx import SplynxAdapter, extract_count, flatten_params
from services.integration_service import IntegrationService, connection_loader


def splynx_connection(**overrides):
    data = {
        "id": "isp-1",
        "name": "Main ISP",
        "platform_type": "splynx",
        "base_url": "https://isp.example.com",
        "credentials": {"apiKey": "key", "apiSecret": "secret"},
    }
    data.update(overrides)
    return IntegrationConnection(**data)


def mock_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.unit
class TestSplynxAdapter:
    async def test_count_customers_with_filters(self):
        seen = []

        def handler(request: httpx.Request):
            seen.append(request)
            return httpx.Response(200, json=[{"id": 1}, {"id": 2}])

        async with mock_client(handler) as client:
            adapter = SplynxAdapter(splynx_connection(), client=client)
            result = await adapter.invoke("count_customers", {"status": "active", "sinceDate": "2025-01-01T00:00"})

        assert result.value == 2
        request = seen[0]
        assert request.url.path == "/api/2.0/admin/customers/customer"
        assert request.url.params["main_attributes[status]"] == "active"
        assert request.url.params["main_attributes[date_add][0]"] == ">="
        assert request.url.params["main_attributes[date_add][1]"] == "2025-01-01"
        expected = base64.b64encode(b"key:secret").decode()
        assert request.headers["Authorization"] == f"Basic {expected}"

    async def test_base_url_with_api_root_is_kept(self):
        adapter = SplynxAdapter(splynx_connection(base_url="https://isp.example.com/api/2.0/"))
        assert adapter.base_url == "https://isp.example.com/api/2.0"

    async def test_get_leads_respects_limit(self):
        def handler(request):
            return httpx.Response(200, json={"items": [{"id": i} for i in range(5)]})

        async with mock_client(handler) as client:
            adapter = SplynxAdapter(splynx_connection(), client=client)
            result = await adapter.invoke("get_leads", {"limit": 2})

        assert result.value == [{"id": 0}, {"id": 1}]
        assert result.to_dict()["count"] == 2

    async def test_get_customer_by_id(self):
        def handler(request):
            assert request.url.path.endswith("/admin/customers/customer/42")
            return httpx.Response(200, json={"id": 42, "name": "ACME"})

        async with mock_client(handler) as client:
            adapter = SplynxAdapter(splynx_connection(), client=client)
            result = await adapter.invoke("get_customer_by_id", {"customerId": 42})

        assert result.value == {"id": 42, "name": "ACME"}

    async def test_create_task_payload(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"id": 9})

        async with mock_client(handler) as client:
            adapter = SplynxAdapter(splynx_connection(credentials={"authHeader": "Basic abc"}), client=client)
            result = await adapter.invoke(
                "create_splynx_task", {"title": "Install", "customerId": 42, "assigneeId": 3},
            )

        assert result.value == {"id": 9}
        assert bodies[0] == {
            "title": "Install",
            "related_customer_id": 42,
            "assignee": 3,
            "assigned_to": "assigned_to_administrator",
        }

    async def test_http_error_becomes_adapter_error(self):
        def handler(request):
            return httpx.Response(503, text="maintenance")

        async with mock_client(handler) as client:
            adapter = SplynxAdapter(splynx_connection(), client=client)
            with pytest.raises(AdapterError) as exc:
                await adapter.invoke("count_tickets", {})

        assert exc.value.message == "Splynx API error: HTTP 503: maintenance"

    async def test_unknown_action(self):
        adapter = SplynxAdapter(splynx_connection())
        with pytest.raises(AdapterError) as exc:
            await adapter.invoke("delete_everything", {})
        assert "does not support action" in exc.value.message

    async def test_missing_credentials(self):
        def handler(request):
            return httpx.Response(200, json=[])

        async with mock_client(handler) as client:
            adapter = SplynxAdapter(splynx_connection(credentials={}), client=client)
            with pytest.raises(AdapterError):
                await adapter.invoke("count_leads", {})

    def test_missing_base_url(self):
        with pytest.raises(AdapterError):
            SplynxAdapter(splynx_connection(base_url=""))


@pytest.mark.unit
def test_flatten_params():
    assert flatten_params({"main_attributes": {"status": "active", "date": [">=", "2025-01-01"]}}) == [
        ("main_attributes[status]", "active"),
        ("main_attributes[date][0]", ">="),
        ("main_attributes[date][1]", "2025-01-01"),
    ]


@pytest.mark.unit
@pytest.mark.parametrize("body,expected", [([1, 2, 3], 3), ({"total": "7"}, 7), ({"items": [1]}, 1)])
def test_extract_count(body, expected):
    assert extract_count(body) == expected


@pytest.mark.unit
class TestDataTableAdapter:
    async def test_count_goes_through_data_source(self, data_source):
        data_source.results["work_items"] = 4
        connection = IntegrationConnection(id="dt", name="Tables", platform_type="data_table")
        adapter = DataTableAdapter(connection, data_source=data_source)

        result = await adapter.invoke("count", {
            "table": "work_items",
            "filters": [{"field": "status", "operator": "equals", "value": "Done"}],
        })

        assert result.value == 4
        query = data_source.queries[0]
        assert query.aggregation == Aggregation.COUNT
        assert query.filters[0].value == "Done"

    async def test_requires_table(self, data_source):
        connection = IntegrationConnection(id="dt", name="Tables", platform_type="data_table")
        with pytest.raises(AdapterError):
            await DataTableAdapter(connection, data_source=data_source).invoke("list", {})


@pytest.mark.integration
class TestIntegrationRegistry:
    async def _add(self, session_factory, **fields):
        async with session_factory() as session:
            row = await IntegrationService(session).create_connection(**fields)
            await session.commit()
            return row.id

    async def test_builds_splynx_adapter_with_decrypted_credentials(self, session_factory):
        integration_id = await self._add(
            session_factory, name="ISP", platform_type="splynx", base_url="https://isp.example.com",
            credentials={"authHeader": "Basic x"},
        )
        registry = IntegrationRegistry(connection_loader(session_factory))

        adapter = await registry.get_adapter(integration_id)
        assert isinstance(adapter, SplynxAdapter)
        assert adapter.base_url == "https://isp.example.com/api/2.0"
        assert adapter.connection.credentials == {"authHeader": "Basic x"}

    async def test_credentials_are_encrypted_at_rest(self, session_factory):
        integration_id = await self._add(
            session_factory, name="ISP", platform_type="splynx", base_url="https://x",
            credentials={"apiKey": "key", "apiSecret": "s3cret"},
        )
        async with session_factory() as session:
            row = await session.get(IntegrationConnectionRow, integration_id)
        assert row.credentials_encrypted
        assert "s3cret" not in row.credentials_encrypted
        assert get_vault().decrypt_json(row.credentials_encrypted)["apiSecret"] == "s3cret"

    async def test_missing_integration(self, session_factory):
        registry = IntegrationRegistry(connection_loader(session_factory))
        with pytest.raises(NotFoundError):
            await registry.get_adapter("nope")

    async def test_inactive_integration(self, session_factory):
        integration_id = await self._add(
            session_factory, name="Old ISP", platform_type="splynx", base_url="https://x", is_active=False,
        )
        registry = IntegrationRegistry(connection_loader(session_factory))
        with pytest.raises(AdapterError) as exc:
            await registry.get_adapter(integration_id)
        assert "inactive" in exc.value.message

    async def test_unknown_platform_row(self, session_factory):
        async with session_factory() as session:
            row = IntegrationConnectionRow(name="CRM", platform_type="salesforce", base_url="", settings={})
            session.add(row)
            await session.commit()
            integration_id = row.id
        registry = IntegrationRegistry(connection_loader(session_factory))
        with pytest.raises(AdapterError):
            await registry.get_adapter(integration_id)

    async def test_service_rejects_unknown_platform(self, db_session):
        with pytest.raises(ValidationError):
            await IntegrationService(db_session).create_connection(name="CRM", platform_type="salesforce")


@pytest.mark.unit
class TestCredentialVault:
    def test_rejects_missing_key(self):
        with pytest.raises(ValidationError):
            CredentialVault("")

    def test_rejects_malformed_key(self):
        with pytest.raises(ValidationError):
            CredentialVault("not-a-fernet-key")

    def test_foreign_token_is_adapter_error(self):
        token = CredentialVault(Fernet.generate_key().decode()).encrypt_json({"apiKey": "k"})
        with pytest.raises(AdapterError):
            get_vault().decrypt_json(token)
