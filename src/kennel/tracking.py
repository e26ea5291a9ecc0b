"""Tracking-id resolution for cross-resource references.

Definitions reference each other with ``project:resource`` tracking ids
instead of remote ids, which are only known once a resource exists. This
module maps those tracking ids to remote ids:

1. The tracking map is seeded from remote state plus provisional ``new``
   entries for everything the current run is about to create
2. References are resolved against the map, either strictly (``force``) or
   leniently, substituting ``MISSING_ID`` until the next run

DESIGN PHILOSOPHY:
- Two-phase convergence: a dashboard referencing a monitor created in the
  same run is linked on the following run, no dependency graph needed
- Hard references (SLO monitor ids) fail instead of pointing at nothing
- The map only learns a new id after the create call succeeded
"""

from __future__ import annotations

import copy
import logging
import re
from collections.abc import Iterable, Iterator, Mapping
from typing import Any

from .models import ActualRecord, Record

logger = logging.getLogger(__name__)

# Provisional map value for resources created later in this run
NEW = "new"

# Placeholder id for references that cannot be resolved until the next run
MISSING_ID = -1

TRACKING_REFERENCE_PATTERN = re.compile(r"%\{([a-z0-9][a-z0-9_\-]*:[a-z0-9][a-z0-9_\-]*)\}")


class ValidationError(Exception):
    """Raised when a tracking-id reference cannot be resolved safely."""

    pass


class TrackingMap(Mapping[str, Any]):
    """Tracking id to remote id (or ``NEW``) for a single run."""

    def __init__(self, entries: Mapping[str, Any] | None = None) -> None:
        self._entries: dict[str, Any] = dict(entries or {})

    @classmethod
    def build(
        cls,
        actuals: Iterable[ActualRecord],
        records: Iterable[Record],
    ) -> TrackingMap:
        """Seed the map from remote state and pending definitions.

        Args:
            actuals: Every remote record, managed or not.
            records: Desired records of this run.

        Returns:
            TrackingMap where existing resources map to their id and records
            without a remote counterpart map to ``NEW``.
        """
        entries: dict[str, Any] = {}
        for actual in actuals:
            if actual.tracking_id is not None:
                entries.setdefault(actual.tracking_id, actual.id)
        for record in records:
            if record.id is not None:
                entries[record.tracking_id] = record.id
            else:
                entries.setdefault(record.tracking_id, NEW)
        return cls(entries)

    def install(self, tracking_id: str, resource_id: Any) -> None:
        """Record the id of a resource that was just created."""
        self._entries[tracking_id] = resource_id
        logger.debug(
            "Installed tracking id",
            extra={"tracking_id": tracking_id, "resource_id": resource_id},
        )

    def __getitem__(self, tracking_id: str) -> Any:
        return self._entries[tracking_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


def resolve(
    tracking_id: str,
    tracking_map: Mapping[str, Any],
    force: bool = False,
    owner: str | None = None,
    quiet: bool = False,
) -> Any:
    """Resolve a tracking id to a remote id.

    Args:
        tracking_id: Referenced ``project:resource`` identifier.
        tracking_map: Map of known and pending tracking ids.
        force: Whether the caller needs a real id right now.
        owner: Tracking id of the referencing record, for error context.
        quiet: Skip the pending-reference warning.

    Returns:
        The remote id, or ``MISSING_ID`` for a pending resource when not forced.

    Raises:
        ValidationError: If the reference is unknown, or pending and forced.
    """
    found = tracking_map.get(tracking_id)
    if found is not None and found != NEW:
        return found

    prefix = f"{owner} " if owner else ""
    if found == NEW:
        if force:
            raise ValidationError(
                f"{prefix}{tracking_id} will be created in the current run "
                "and can only be used after that"
            )
        if not quiet:
            logger.warning(
                f"{prefix}{tracking_id} will be created in the current run, "
                "the next run will link it properly",
                extra={"tracking_id": tracking_id, "owner": owner},
            )
        return MISSING_ID

    raise ValidationError(
        f"{prefix}Unable to find {tracking_id} "
        "(does not exist and is not being created by the current run)"
    )


def resolve_linked_tracking_ids(
    record: Record,
    tracking_map: Mapping[str, Any],
    quiet: bool = False,
) -> Record:
    """Replace tracking-id references in a record with remote ids.

    Args:
        record: Desired record, possibly holding tracking-id references.
        tracking_map: Map to resolve against.
        quiet: Skip warnings for pending references.

    Returns:
        A new record; the input record is left untouched.
    """
    attributes = copy.deepcopy(record.attributes)

    match record.resource_type:
        case "monitor":
            _resolve_composite_query(attributes, tracking_map, record.tracking_id, quiet)
        case "dashboard":
            for widget in attributes.get("widgets") or []:
                _resolve_widget(widget, tracking_map, record.tracking_id, quiet)
        case "slo":
            _resolve_slo_monitors(attributes, tracking_map, record.tracking_id)

    return record.with_attributes(attributes)


def _is_tracking_id(value: Any) -> bool:
    return isinstance(value, str) and ":" in value


def _resolve_composite_query(
    attributes: dict[str, Any],
    tracking_map: Mapping[str, Any],
    owner: str,
    quiet: bool,
) -> None:
    query = attributes.get("query")
    if attributes.get("type") != "composite" or not isinstance(query, str):
        return
    attributes["query"] = TRACKING_REFERENCE_PATTERN.sub(
        lambda m: str(resolve(m.group(1), tracking_map, owner=owner, quiet=quiet)),
        query,
    )


def _resolve_widget(
    widget: dict[str, Any],
    tracking_map: Mapping[str, Any],
    owner: str,
    quiet: bool,
) -> None:
    definition = widget.get("definition")
    if not isinstance(definition, dict):
        return
    alert_id = definition.get("alert_id")
    if _is_tracking_id(alert_id):
        definition["alert_id"] = str(resolve(alert_id, tracking_map, owner=owner, quiet=quiet))
    # Group widgets nest further widgets
    for nested in definition.get("widgets") or []:
        _resolve_widget(nested, tracking_map, owner, quiet)


def _resolve_slo_monitors(
    attributes: dict[str, Any],
    tracking_map: Mapping[str, Any],
    owner: str,
) -> None:
    monitor_ids = attributes.get("monitor_ids")
    if not monitor_ids:
        return
    attributes["monitor_ids"] = [
        resolve(monitor_id, tracking_map, force=True, owner=owner)
        if _is_tracking_id(monitor_id)
        else monitor_id
        for monitor_id in monitor_ids
    ]
