"""Change planning and execution against the remote monitoring API.

This module implements one reconciliation pass:
1. List every remote resource (all reads finish before any diff)
2. Seed the tracking map from remote state and pending creates
3. Match definitions to remote resources and classify each pair
4. Render the plan; in update mode confirm and apply it

ORDERING:
Create/Update/NoOp actions follow definition order, Deletes come last.
Nothing is reordered by dependency: a reference to a resource created in
the same run resolves to MISSING_ID and is linked by the next run.

FAILURE HANDLING:
The first failing mutation aborts the run. Actions already applied stay
applied; there is no rollback and no retry.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

import click

from .api import ApiError
from .diff_normalizer import DiffEntry, canonicalize, diff_record, format_diff
from .models import ActualRecord, Record
from .resource_kinds import RESOURCE_KINDS, get_kind
from .tracking import TrackingMap, ValidationError, resolve_linked_tracking_ids

if TYPE_CHECKING:
    from .api import MonitoringApi
    from .confirmation import ConfirmationGate

logger = logging.getLogger(__name__)

Echo = Callable[[str], None]


class ActionType(str, Enum):
    """What applying a plan does to one resource."""

    CREATE = "Create"
    UPDATE = "Update"
    DELETE = "Delete"
    NOOP = "NoOp"

    @property
    def past_tense(self) -> str:
        return {
            ActionType.CREATE: "Created",
            ActionType.UPDATE: "Updated",
            ActionType.DELETE: "Deleted",
            ActionType.NOOP: "Unchanged",
        }[self]


ACTION_COLORS: dict[ActionType, str] = {
    ActionType.CREATE: "green",
    ActionType.UPDATE: "yellow",
    ActionType.DELETE: "red",
}


class RemoteMutationError(Exception):
    """Raised when an API call fails while applying a plan."""

    pass


@dataclass(frozen=True)
class Action:
    """One planned change.

    Attributes:
        type: Create, Update, Delete or NoOp.
        tracking_id: ``project:resource`` of the affected resource.
        resource_type: Kind of the affected resource.
        record: Desired record (absent for Delete).
        actual: Matched remote record (absent for Create).
        diff: Field-level differences that justify an Update.
    """

    type: ActionType
    tracking_id: str
    resource_type: str
    record: Record | None = None
    actual: ActualRecord | None = None
    diff: tuple[DiffEntry, ...] = ()

    @property
    def mutating(self) -> bool:
        return self.type != ActionType.NOOP

    def describe(self) -> str:
        return f"{self.type.value} {self.resource_type} {self.tracking_id}"

    def desired(self) -> Record:
        if self.record is None:
            raise ValueError(f"{self.describe()} has no desired record")
        return self.record

    def remote(self) -> ActualRecord:
        if self.actual is None:
            raise ValueError(f"{self.describe()} has no remote record")
        return self.actual


@dataclass
class Plan:
    """Ordered actions for a single run, plus the tracking map they resolve against."""

    actions: list[Action] = field(default_factory=list)
    tracking_map: TrackingMap = field(default_factory=TrackingMap)

    def of_type(self, action_type: ActionType) -> list[Action]:
        return [action for action in self.actions if action.type == action_type]

    @property
    def creates(self) -> list[Action]:
        return self.of_type(ActionType.CREATE)

    @property
    def updates(self) -> list[Action]:
        return self.of_type(ActionType.UPDATE)

    @property
    def deletes(self) -> list[Action]:
        return self.of_type(ActionType.DELETE)

    @property
    def noops(self) -> list[Action]:
        return self.of_type(ActionType.NOOP)

    @property
    def mutating_actions(self) -> list[Action]:
        return [action for action in self.actions if action.mutating]

    def summary(self) -> dict[str, int]:
        return {
            "create": len(self.creates),
            "update": len(self.updates),
            "delete": len(self.deletes),
            "noop": len(self.noops),
        }


@dataclass(frozen=True)
class ApplyResult:
    """Outcome of one applied action."""

    action: Action
    resource_id: Any
    url: str | None = None

    def describe(self) -> str:
        text = f"{self.action.type.past_tense} {self.action.resource_type} {self.action.tracking_id}"
        return f"{text} {self.url}" if self.url else f"{text} {self.resource_id}"


@dataclass
class ExecutionResult:
    """Outcome of an update run."""

    plan: Plan
    confirmed: bool = False
    applied: list[ApplyResult] = field(default_factory=list)


def render_plan(plan: Plan, color: bool = True) -> list[str]:
    """Format a plan for the plan/result stream."""
    lines = ["Plan:"]
    if not plan.mutating_actions:
        lines.append("Nothing to do")
        return lines

    for action in plan.mutating_actions:
        line = action.describe()
        lines.append(click.style(line, fg=ACTION_COLORS[action.type]) if color else line)
        lines.extend(format_diff(action.diff))
    return lines


class Planner:
    """Builds and executes change plans for a set of desired records.

    The planner owns no state across runs: actual records are fetched fresh,
    the tracking map is rebuilt per plan and the plan is discarded after use.
    """

    def __init__(
        self,
        api: MonitoringApi,
        *,
        project_filter: Iterable[str] | None = None,
        subdomain: str = "app",
        echo: Echo | None = None,
    ) -> None:
        """Initialize planner.

        Args:
            api: Remote API client (list/show/create/update/delete).
            project_filter: Project kennel_ids in scope; None means all.
                Remote resources of other projects are never deleted.
            subdomain: Site subdomain used for result links.
            echo: Writer for the plan/result stream.
        """
        self._api = api
        self._project_filter = frozenset(project_filter) if project_filter is not None else None
        self._subdomain = subdomain
        self._echo = echo or click.echo

    def fetch_actual(self, resource_types: Iterable[str] = RESOURCE_KINDS) -> list[ActualRecord]:
        """List remote state for every kind before any diffing starts.

        Kinds whose listings are incomplete get each managed resource fetched
        in full.
        """
        actuals: list[ActualRecord] = []
        for resource_type in resource_types:
            listed = self._api.list(resource_type)
            if get_kind(resource_type).list_incomplete:
                listed = [
                    self._api.show(resource_type, actual.id) if actual.tracking_id else actual
                    for actual in listed
                ]
            actuals.extend(listed)
        return actuals

    def plan(self, records: list[Record], actuals: list[ActualRecord] | None = None) -> Plan:
        """Build the plan for ``records``, fetching remote state if not given."""
        if actuals is None:
            actuals = self.fetch_actual()
        return self.build_plan(records, actuals)

    def build_plan(self, records: list[Record], actuals: list[ActualRecord]) -> Plan:
        """Match, diff and classify.

        Args:
            records: Desired records in definition order.
            actuals: Complete remote state.

        Returns:
            Plan with Create/Update/NoOp in definition order, then Deletes.

        Raises:
            ValidationError: If a reference or a taken-over id cannot be resolved.
        """
        tracking_map = TrackingMap.build(actuals, records)

        by_id: dict[tuple[str, str], ActualRecord] = {}
        by_tracking_id: dict[tuple[str, str], ActualRecord] = {}
        for actual in actuals:
            by_id[(actual.resource_type, str(actual.id))] = actual
            if actual.tracking_id is not None:
                by_tracking_id.setdefault((actual.resource_type, actual.tracking_id), actual)

        matched: set[tuple[str, str]] = set()
        actions: list[Action] = []

        for record in records:
            if record.id is not None:
                actual = by_id.get((record.resource_type, str(record.id)))
                if actual is None:
                    raise ValidationError(
                        f"{record.tracking_id} Unable to find existing "
                        f"{record.resource_type} with id {record.id}"
                    )
            else:
                actual = by_tracking_id.get((record.resource_type, record.tracking_id))

            linked = resolve_linked_tracking_ids(record, tracking_map)

            if actual is None:
                actions.append(
                    Action(ActionType.CREATE, record.tracking_id, record.resource_type, record=record)
                )
                continue

            matched.add((actual.resource_type, str(actual.id)))
            entries = tuple(diff_record(linked, actual.attributes))
            action_type = ActionType.UPDATE if entries else ActionType.NOOP
            actions.append(
                Action(
                    action_type,
                    record.tracking_id,
                    record.resource_type,
                    record=record,
                    actual=actual,
                    diff=entries,
                )
            )

        for actual in actuals:
            if (actual.resource_type, str(actual.id)) in matched:
                continue
            if actual.tracking_id is None or not self._in_scope(actual):
                continue
            actions.append(
                Action(ActionType.DELETE, actual.tracking_id, actual.resource_type, actual=actual)
            )

        plan = Plan(actions=actions, tracking_map=tracking_map)
        logger.info("Plan built", extra=plan.summary())
        return plan

    def report(self, plan: Plan) -> None:
        for line in render_plan(plan):
            self._echo(line)

    def execute(self, plan: Plan) -> list[ApplyResult]:
        """Apply every mutating action in plan order.

        Each Create installs its new id into the plan's tracking map, so
        records applied after it resolve the reference without ``force``.

        Raises:
            RemoteMutationError: On the first failing API call.
        """
        results: list[ApplyResult] = []
        for action in plan.mutating_actions:
            result = self._apply(action, plan.tracking_map)
            self._echo(result.describe())
            results.append(result)

        logger.info("Plan applied", extra={"changes": len(results)})
        return results

    def update(self, records: list[Record], gate: ConfirmationGate) -> ExecutionResult:
        """Plan, report, confirm and apply."""
        plan = self.plan(records)
        self.report(plan)

        result = ExecutionResult(plan=plan)
        if not plan.mutating_actions:
            return result
        if not gate.confirm(plan):
            logger.info("Plan not confirmed, nothing applied")
            return result

        result.confirmed = True
        result.applied = self.execute(plan)
        return result

    def _in_scope(self, actual: ActualRecord) -> bool:
        return self._project_filter is None or actual.project_id in self._project_filter

    def _payload(self, record: Record, tracking_map: TrackingMap) -> dict[str, Any]:
        # Pending references were already reported while planning
        return dict(canonicalize(resolve_linked_tracking_ids(record, tracking_map, quiet=True)))

    def _apply(self, action: Action, tracking_map: TrackingMap) -> ApplyResult:
        kind = get_kind(action.resource_type)
        try:
            match action.type:
                case ActionType.CREATE:
                    resource_id = self._api.create(
                        action.resource_type, self._payload(action.desired(), tracking_map)
                    )
                    tracking_map.install(action.tracking_id, resource_id)
                case ActionType.UPDATE:
                    resource_id = action.remote().id
                    self._api.update(
                        action.resource_type,
                        resource_id,
                        self._payload(action.desired(), tracking_map),
                    )
                case ActionType.DELETE:
                    resource_id = action.remote().id
                    self._api.delete(action.resource_type, resource_id)
                case _:
                    raise ValueError(f"Cannot apply {action.type.value}")
        except ApiError as e:
            logger.error(
                "Remote mutation failed",
                extra={
                    "action": action.type.value,
                    "resource_type": action.resource_type,
                    "tracking_id": action.tracking_id,
                    "error": str(e),
                },
            )
            raise RemoteMutationError(f"{action.describe()} failed: {e}") from e

        url = None if action.type == ActionType.DELETE else kind.url(resource_id, self._subdomain)
        return ApplyResult(action=action, resource_id=resource_id, url=url)
