"""
Splynx Adapter — ISP billing / CRM platform.

Talks to the Splynx REST API (api/2.0) over httpx. Supports counting and
listing customers, leads and tickets, fetching a single customer and
creating scheduling tasks.

Authentication uses the connection's stored `authHeader` (e.g.
"Basic <base64>") or builds a Basic header from `apiKey` / `apiSecret`.
Filters are sent the way Splynx expects nested PHP-style query params:

    main_attributes[status]=active
    main_attributes[date_add][0]=>=
    main_attributes[date_add][1]=2025-01-01
"""

import base64
from typing import Any, Dict, List, Optional

import httpx
import structlog

from core.exceptions import AdapterError
from integrations.base import IntegrationAdapter, IntegrationConnection, IntegrationResult

logger = structlog.get_logger(__name__)

# Endpoint per entity, relative to the API root
ENDPOINTS = {
    "customers": "admin/customers/customer",
    "leads": "admin/crm/leads",
    "tickets": "admin/support/tickets",
    "tasks": "admin/scheduling/tasks",
}

# Parameters that map onto main_attributes filters
_ATTRIBUTE_PARAMS = {
    "customers": {"status": "status", "category": "category", "location": "location_id"},
    "leads": {"status": "status", "source": "source"},
    "tickets": {"status": "status_id", "group": "group_id", "type": "type_id", "priority": "priority"},
}

_DATE_FIELDS = {"customers": "date_add", "leads": "date_add", "tickets": "created_at"}


def flatten_params(params: Dict[str, Any], prefix: str = "") -> List[tuple]:
    """Flatten nested dicts/lists into bracketed query parameters."""
    items: List[tuple] = []
    for key, value in params.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if isinstance(value, dict):
            items.extend(flatten_params(value, name))
        elif isinstance(value, (list, tuple)):
            items.extend(flatten_params({i: v for i, v in enumerate(value)}, name))
        elif value is not None:
            items.append((name, value))
    return items


def build_auth_header(credentials: Dict[str, Any]) -> str:
    auth_header = credentials.get("authHeader") or credentials.get("auth_header")
    if auth_header:
        return auth_header
    api_key = credentials.get("apiKey") or credentials.get("api_key")
    api_secret = credentials.get("apiSecret") or credentials.get("api_secret")
    if not api_key or not api_secret:
        raise AdapterError("Splynx connection is missing credentials (authHeader or apiKey/apiSecret)")
    token = base64.b64encode(f"{api_key}:{api_secret}".encode()).decode()
    return f"Basic {token}"


def extract_count(body: Any) -> int:
    """Count from a Splynx list response: array length, or total/count fields."""
    if isinstance(body, list):
        return len(body)
    if isinstance(body, dict):
        for key in ("total", "count"):
            if body.get(key) is not None:
                try:
                    return int(body[key])
                except (TypeError, ValueError):
                    break
        if isinstance(body.get("items"), list):
            return len(body["items"])
    raise AdapterError(f"Unexpected Splynx response format: {type(body).__name__}")


def extract_records(body: Any) -> List[Dict[str, Any]]:
    if isinstance(body, list):
        return [r for r in body if isinstance(r, dict)]
    if isinstance(body, dict) and isinstance(body.get("items"), list):
        return [r for r in body["items"] if isinstance(r, dict)]
    raise AdapterError(f"Unexpected Splynx response format: {type(body).__name__}")


class SplynxAdapter(IntegrationAdapter):
    """Adapter for a Splynx installation."""

    platform_type = "splynx"
    display_name = "Splynx"
    actions = (
        "count_customers",
        "count_leads",
        "count_tickets",
        "get_customers",
        "get_leads",
        "get_tickets",
        "get_customer_by_id",
        "create_splynx_task",
    )

    DEFAULT_TIMEOUT = 30.0

    def __init__(self, connection: IntegrationConnection, client: Optional[httpx.AsyncClient] = None):
        super().__init__(connection, client)
        base_url = connection.base_url.rstrip("/")
        if not base_url:
            raise AdapterError(f"Integration '{connection.name}' has no base URL")
        # Older connections store the host only
        if not base_url.endswith("/api/2.0"):
            base_url = f"{base_url}/api/2.0"
        self.base_url = base_url

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.DEFAULT_TIMEOUT))
            self._owns_client = True
        return self._client

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": build_auth_header(self.connection.credentials),
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[List[tuple]] = None,
        json: Optional[dict] = None,
    ) -> Any:
        url = f"{self.base_url}/{endpoint}"
        try:
            response = await self._get_client().request(
                method, url, params=params, json=json, headers=self._headers()
            )
        except httpx.TimeoutException:
            raise AdapterError(f"Splynx request timed out: {method} {endpoint}") from None
        except httpx.HTTPError as e:
            raise AdapterError(f"Splynx request failed: {str(e)[:200]}") from None

        if not response.is_success:
            raise AdapterError(
                f"Splynx API error: HTTP {response.status_code}: {response.text[:200]}"
            )
        try:
            return response.json()
        except ValueError:
            raise AdapterError("Splynx returned a non-JSON response") from None

    # ─── Query Building ───────────────────────────────────────

    def _list_params(self, entity: str, parameters: Dict[str, Any]) -> List[tuple]:
        attributes: Dict[str, Any] = {}
        for param, attribute in _ATTRIBUTE_PARAMS.get(entity, {}).items():
            value = parameters.get(param)
            if value not in (None, ""):
                attributes[attribute] = value

        since = parameters.get("sinceDate") or parameters.get("dateFrom")
        if since:
            attributes[_DATE_FIELDS[entity]] = [">=", str(since)[:10]]

        extra = parameters.get("filters") or {}
        if not isinstance(extra, dict):
            raise AdapterError("Splynx 'filters' parameter must be an object")
        attributes.update(extra)

        return flatten_params({"main_attributes": attributes}) if attributes else []

    # ─── Actions ──────────────────────────────────────────────

    async def invoke(self, action: str, parameters: Dict[str, Any]) -> IntegrationResult:
        self.ensure_action(action)
        logger.debug("Splynx action", action=action, integration=self.connection.name)

        if action.startswith("count_"):
            entity = action.removeprefix("count_")
            body = await self._request("GET", ENDPOINTS[entity], self._list_params(entity, parameters))
            return IntegrationResult(count=extract_count(body))

        if action == "get_customer_by_id":
            customer_id = parameters.get("customerId") or parameters.get("id")
            if customer_id in (None, ""):
                raise AdapterError("get_customer_by_id requires a customerId parameter")
            body = await self._request("GET", f"{ENDPOINTS['customers']}/{customer_id}")
            if not isinstance(body, dict):
                raise AdapterError(f"Splynx customer {customer_id} returned an unexpected response")
            return IntegrationResult(count=1, record=body)

        if action == "create_splynx_task":
            body = await self._request("POST", ENDPOINTS["tasks"], json=self._task_payload(parameters))
            record = body if isinstance(body, dict) else {"result": body}
            return IntegrationResult(count=1, record=record)

        entity = action.removeprefix("get_")
        body = await self._request("GET", ENDPOINTS[entity], self._list_params(entity, parameters))
        records = extract_records(body)
        limit = parameters.get("limit")
        if limit:
            records = records[: int(limit)]
        return IntegrationResult(count=len(records), records=records)

    @staticmethod
    def _task_payload(parameters: Dict[str, Any]) -> Dict[str, Any]:
        title = parameters.get("title")
        if not title:
            raise AdapterError("create_splynx_task requires a title")
        payload: Dict[str, Any] = {"title": title}
        mapping = {
            "description": "description",
            "projectId": "project_id",
            "workflowStatusId": "workflow_status_id",
            "customerId": "related_customer_id",
            "assigneeId": "assignee",
            "scheduledFrom": "scheduled_from",
            "duration": "formatted_duration",
            "priority": "priority",
        }
        for param, field in mapping.items():
            value = parameters.get(param)
            if value not in (None, ""):
                payload[field] = value
        if "assignee" in payload:
            payload.setdefault("assigned_to", "assigned_to_administrator")
        return payload
