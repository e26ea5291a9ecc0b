"""HTTP client for the remote monitoring API.

Transport failures and error responses surface as ``ApiError``; nothing is
retried here. The caller decides whether a failure is fatal.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from .models import ActualRecord
from .resource_kinds import DEFAULT_APP_HOST_TEMPLATE, ResourceKind, get_kind

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30
MAX_ERROR_BODY_LENGTH = 500


class ApiError(Exception):
    """Raised when a call to the monitoring API fails."""

    def __init__(
        self,
        method: str,
        path: str,
        status: int | None = None,
        body: str = "",
        message: str = "",
    ) -> None:
        self.method = method
        self.path = path
        self.status = status
        self.body = body[:MAX_ERROR_BODY_LENGTH]
        detail = message or (f"status {status}" if status is not None else "request failed")
        text = f"{method} {path} -> {detail}"
        if self.body:
            text += f": {self.body}"
        super().__init__(text)


class MonitoringApi:
    """Synchronous client for monitors, dashboards and SLOs."""

    def __init__(
        self,
        api_key: str,
        app_key: str,
        *,
        subdomain: str = "app",
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        client: httpx.Client | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: API key sent as ``DD-API-KEY``.
            app_key: Application key sent as ``DD-APPLICATION-KEY``.
            subdomain: Site subdomain, e.g. ``app``.
            timeout_seconds: Per-request timeout.
            client: Pre-built httpx client (tests inject a mock transport).
        """
        self._client = client or httpx.Client(
            base_url=DEFAULT_APP_HOST_TEMPLATE.format(subdomain=subdomain),
            timeout=timeout_seconds,
        )
        self._client.headers.update(
            {
                "DD-API-KEY": api_key,
                "DD-APPLICATION-KEY": app_key,
                "Content-Type": "application/json",
            }
        )

    def close(self) -> None:
        self._client.close()

    def list(self, resource_type: str) -> list[ActualRecord]:
        """List every remote resource of a kind."""
        kind = get_kind(resource_type)
        body = self._request("GET", kind.api_path)
        items = body.get(kind.list_key, []) if kind.list_key and isinstance(body, dict) else body
        if not isinstance(items, list):
            raise ApiError("GET", kind.api_path, message="unexpected list response")

        records = [self._to_actual(resource_type, "GET", kind.api_path, item) for item in items]
        logger.info(
            "Listed remote resources",
            extra={"resource_type": resource_type, "count": len(records)},
        )
        return records

    def show(self, resource_type: str, resource_id: Any) -> ActualRecord:
        """Fetch the full body of one remote resource."""
        kind = get_kind(resource_type)
        path = f"{kind.api_path}/{resource_id}"
        return self._to_actual(resource_type, "GET", path, self._unwrap(self._request("GET", path)))

    def create(self, resource_type: str, payload: dict[str, Any]) -> Any:
        """Create a resource and return its new remote id."""
        kind = get_kind(resource_type)
        body = self._unwrap(self._request("POST", kind.api_path, json=payload))
        if "id" not in body:
            raise ApiError("POST", kind.api_path, message="response has no id")
        return body["id"]

    def update(self, resource_type: str, resource_id: Any, payload: dict[str, Any]) -> None:
        kind = get_kind(resource_type)
        self._request("PUT", f"{kind.api_path}/{resource_id}", json=payload)

    def delete(self, resource_type: str, resource_id: Any) -> None:
        kind = get_kind(resource_type)
        self._request("DELETE", f"{kind.api_path}/{resource_id}", params=self._delete_params(kind))

    def _delete_params(self, kind: ResourceKind) -> dict[str, str]:
        # Monitors referenced by SLOs or composites refuse deletion otherwise
        if kind.name == "monitor":
            return {"force": "true"}
        return {}

    def _to_actual(self, resource_type: str, method: str, path: str, item: Any) -> ActualRecord:
        """Parse one returned object, reporting malformed payloads as ``ApiError``."""
        if not isinstance(item, dict):
            raise ApiError(method, path, message=f"unexpected {resource_type} item: {item!r}")
        try:
            return ActualRecord.from_api(resource_type, item)
        except PydanticValidationError as e:
            detail = "; ".join(
                f"{'.'.join(str(x) for x in error['loc'])}: {error['msg']}" for error in e.errors()
            )
            raise ApiError(method, path, message=f"invalid {resource_type} payload: {detail}") from e
        except ValueError as e:
            raise ApiError(method, path, message=f"invalid {resource_type} payload: {e}") from e

    def _unwrap(self, body: Any) -> dict[str, Any]:
        """Unwrap ``{"data": [...]}`` envelopes used by some endpoints."""
        if isinstance(body, dict) and isinstance(body.get("data"), list):
            if not body["data"]:
                return {}
            return body["data"][0]
        if isinstance(body, dict) and isinstance(body.get("data"), dict):
            return body["data"]
        if not isinstance(body, dict):
            return {}
        return body

    def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> Any:
        try:
            response = self._client.request(method, path, json=json, params=params)
        except httpx.HTTPError as e:
            raise ApiError(method, path, message=str(e) or type(e).__name__) from e

        if response.status_code >= 400:
            raise ApiError(method, path, status=response.status_code, body=response.text)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ApiError(method, path, status=response.status_code, message="invalid JSON") from e
