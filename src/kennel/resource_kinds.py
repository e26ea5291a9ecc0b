"""Managed resource kinds and their API conventions.

Each kind describes how one category of remote object is addressed and which
of its fields are noise for drift detection:

- readonly attributes are assigned by the remote service and never diffed
- default values are dropped from both sides when neither side deviates
- the tracking field carries the "Managed by kennel" marker that links a
  remote object back to its definition
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

# Server-assigned fields shared by every kind
READONLY_ATTRIBUTES: frozenset[str] = frozenset(
    {
        "deleted",
        "id",
        "created",
        "created_at",
        "creator",
        "org_id",
        "modified",
        "modified_at",
        "api_resource",
    }
)

TRACKING_MARKER_PREFIX = "-- Managed by kennel"
TRACKING_MARKER_PATTERN = re.compile(
    r"-- Managed by kennel (?P<tracking_id>[a-z0-9][a-z0-9_\-]*:[a-z0-9][a-z0-9_\-]*)"
)

DEFAULT_APP_HOST_TEMPLATE = "https://{subdomain}.datadoghq.com"


class UnknownResourceKindError(Exception):
    """Raised when a resource type has no registered kind."""

    pass


@dataclass(frozen=True)
class ResourceKind:
    """API conventions for one managed resource kind.

    Attributes:
        name: Kind name used in definitions and plan output (e.g. "monitor").
        api_path: Collection path on the remote API.
        url_path: UI path template, formatted with ``id``.
        tracking_field: Attribute that carries the tracking marker.
        list_key: Envelope key of list responses, or None for a bare list.
        list_incomplete: Whether list responses omit attributes needed for diffing.
        readonly_attributes: Fields never compared.
        default_values: Top-level attributes and their server-side defaults.
        option_defaults: Defaults inside the ``options`` sub-mapping.
    """

    name: str
    api_path: str
    url_path: str
    tracking_field: str
    list_key: str | None = None
    list_incomplete: bool = False
    readonly_attributes: frozenset[str] = READONLY_ATTRIBUTES
    default_values: Mapping[str, Any] = field(default_factory=dict)
    option_defaults: Mapping[str, Any] = field(default_factory=dict)

    def url(self, resource_id: Any, subdomain: str = "app") -> str:
        """Build the UI link for a remote resource."""
        host = DEFAULT_APP_HOST_TEMPLATE.format(subdomain=subdomain)
        return host + self.url_path.format(id=resource_id)

    def tracking_id_of(self, attributes: Mapping[str, Any]) -> str | None:
        """Extract the tracking id from an API payload, if it is managed."""
        value = attributes.get(self.tracking_field)
        if not isinstance(value, str):
            return None
        match = TRACKING_MARKER_PATTERN.search(value)
        return match.group("tracking_id") if match else None


MONITOR = ResourceKind(
    name="monitor",
    api_path="/api/v1/monitor",
    url_path="/monitors#{id}",
    tracking_field="message",
    readonly_attributes=READONLY_ATTRIBUTES
    | {"overall_state", "overall_state_modified", "matching_downtimes", "multi"},
    default_values=MappingProxyType(
        {
            "priority": None,
            "restricted_roles": None,
            "tags": [],
        }
    ),
    option_defaults=MappingProxyType(
        {
            "notify_audit": False,
            "notify_no_data": False,
            "no_data_timeframe": None,
            "renotify_interval": 0,
            "timeout_h": 0,
            "include_tags": True,
            "new_host_delay": 300,
            "require_full_window": False,
            "escalation_message": "",
            "evaluation_delay": None,
            "locked": False,
            "silenced": {},
        }
    ),
)

DASHBOARD = ResourceKind(
    name="dashboard",
    api_path="/api/v1/dashboard",
    url_path="/dashboard/{id}",
    tracking_field="description",
    list_key="dashboards",
    list_incomplete=True,
    readonly_attributes=READONLY_ATTRIBUTES
    | {"author_handle", "author_name", "url", "is_read_only"},
    default_values=MappingProxyType(
        {
            "template_variables": [],
            "template_variable_presets": [],
            "notify_list": [],
            "reflow_type": None,
        }
    ),
)

SLO = ResourceKind(
    name="slo",
    api_path="/api/v1/slo",
    url_path="/slo?slo_id={id}",
    tracking_field="description",
    list_key="data",
    readonly_attributes=READONLY_ATTRIBUTES
    | {"monitor_tags", "type_id", "configured_alert_ids"},
    default_values=MappingProxyType(
        {
            "groups": [],
            "tags": [],
            "monitor_ids": [],
            "query": None,
        }
    ),
)

RESOURCE_KINDS: dict[str, ResourceKind] = {
    kind.name: kind for kind in (MONITOR, DASHBOARD, SLO)
}


def get_kind(resource_type: str) -> ResourceKind:
    """Look up a resource kind by name.

    Raises:
        UnknownResourceKindError: If the kind is not managed.
    """
    kind = RESOURCE_KINDS.get(resource_type)
    if kind is None:
        valid = sorted(RESOURCE_KINDS)
        raise UnknownResourceKindError(
            f"Unknown resource type '{resource_type}'. Valid types: {valid}"
        )
    return kind


def tracking_marker(tracking_id: str, source: str | None = None) -> str:
    """Render the marker appended to a kind's tracking field."""
    if source:
        return f"{TRACKING_MARKER_PREFIX} {tracking_id} in {source}, do not modify manually"
    return f"{TRACKING_MARKER_PREFIX} {tracking_id}, do not modify manually"
