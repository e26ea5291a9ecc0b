"""In-memory monitoring API.

Mirrors the call surface of ``kennel.api.MonitoringApi``: list, show,
create, update and delete. Server-assigned fields are added to stored
resources so tests exercise readonly stripping.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any

from kennel.api import ApiError
from kennel.models import ActualRecord
from kennel.resource_kinds import get_kind


@dataclass
class ServerAssigned:
    """Fields the fake adds to every stored resource."""

    created: str = "2024-01-01T00:00:00.000000+00:00"
    modified: str = "2024-01-01T00:00:00.000000+00:00"
    creator: dict[str, Any] = field(
        default_factory=lambda: {"email": "ops@example.com", "handle": "ops@example.com"}
    )

    def apply(self, payload: dict[str, Any]) -> dict[str, Any]:
        return {
            **payload,
            "created": self.created,
            "modified": self.modified,
            "creator": dict(self.creator),
        }


class FakeMonitoringApi:
    """Remote state held in memory, keyed by kind and id."""

    def __init__(
        self,
        *,
        first_id: int = 101,
        server_assigned: ServerAssigned | None = None,
    ) -> None:
        self.resources: dict[str, dict[Any, dict[str, Any]]] = {
            "monitor": {},
            "dashboard": {},
            "slo": {},
        }
        self.calls: list[tuple[str, str, Any]] = []
        self.failures: dict[tuple[str, str], int] = {}
        self._server_assigned = server_assigned or ServerAssigned()
        self.last_payload: dict[str, Any] | None = None
        self._next_id = first_id - 1

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def seed(self, resource_type: str, payload: dict[str, Any]) -> Any:
        """Store a resource as if it already existed remotely."""
        resource_id = payload.get("id")
        if resource_id is None:
            resource_id = self._new_id(resource_type)
        self.resources[resource_type][resource_id] = {
            **self._server_assigned.apply(payload),
            "id": resource_id,
        }
        return resource_id

    def fail_on(self, operation: str, resource_type: str, status: int = 400) -> None:
        """Make every ``operation`` call for ``resource_type`` fail."""
        self.failures[(operation, resource_type)] = status

    @property
    def mutations(self) -> list[tuple[str, str, Any]]:
        return [call for call in self.calls if call[0] in ("create", "update", "delete")]

    def get(self, resource_type: str, resource_id: Any) -> dict[str, Any]:
        return self.resources[resource_type][resource_id]

    # ------------------------------------------------------------------
    # MonitoringApi surface
    # ------------------------------------------------------------------

    def list(self, resource_type: str) -> list[ActualRecord]:
        self._record("list", resource_type, None)
        kind = get_kind(resource_type)
        records = []
        for payload in self.resources[resource_type].values():
            listed = copy.deepcopy(payload)
            if kind.list_incomplete:
                # Listings leave out the widget tree
                listed.pop("widgets", None)
            records.append(ActualRecord.from_api(resource_type, listed))
        return records

    def show(self, resource_type: str, resource_id: Any) -> ActualRecord:
        self._record("show", resource_type, resource_id)
        payload = self.resources[resource_type].get(resource_id)
        if payload is None:
            raise ApiError("GET", f"{get_kind(resource_type).api_path}/{resource_id}", status=404)
        return ActualRecord.from_api(resource_type, copy.deepcopy(payload))

    def create(self, resource_type: str, payload: dict[str, Any]) -> Any:
        resource_id = self._new_id(resource_type)
        self._record("create", resource_type, resource_id, payload)
        self.resources[resource_type][resource_id] = {
            **self._server_assigned.apply(copy.deepcopy(payload)),
            "id": resource_id,
        }
        return resource_id

    def update(self, resource_type: str, resource_id: Any, payload: dict[str, Any]) -> None:
        self._record("update", resource_type, resource_id, payload)
        if resource_id not in self.resources[resource_type]:
            raise ApiError("PUT", f"{get_kind(resource_type).api_path}/{resource_id}", status=404)
        self.resources[resource_type][resource_id] = {
            **self._server_assigned.apply(copy.deepcopy(payload)),
            "id": resource_id,
        }

    def delete(self, resource_type: str, resource_id: Any) -> None:
        self._record("delete", resource_type, resource_id)
        self.resources[resource_type].pop(resource_id, None)

    def close(self) -> None:
        pass

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _new_id(self, resource_type: str) -> Any:
        self._next_id += 1
        if resource_type == "monitor":
            return self._next_id
        return f"{resource_type}-{self._next_id}"

    def _record(
        self,
        operation: str,
        resource_type: str,
        resource_id: Any,
        payload: dict[str, Any] | None = None,
    ) -> None:
        status = self.failures.get((operation, resource_type))
        if status is not None:
            self.calls.append((f"{operation}-failed", resource_type, resource_id))
            raise ApiError(operation.upper(), get_kind(resource_type).api_path, status=status, body="{}")
        self.calls.append((operation, resource_type, resource_id))
        self.last_payload = payload
