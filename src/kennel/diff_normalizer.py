"""Record normalization and structural diffing.

This module decides whether a desired record and its remote counterpart
differ in any way a human reviewer cares about.

DESIGN PHILOSOPHY:
- Readonly attributes: fields assigned by the service never count as drift
- Default value awareness: the API omits fields equal to their default
- Positional arrays: list elements are compared index by index so the
  reported paths stay stable across runs
- No aliasing: every step returns a new mapping, inputs are never mutated

COMMON FALSE POSITIVES HANDLED:
1. ``id``, ``created``, ``modified`` and friends present only on the remote side
2. ``priority: null`` on the remote side while the definition omits it
3. Monitor options the API fills in with their defaults
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any

from .models import Record
from .resource_kinds import ResourceKind

logger = logging.getLogger(__name__)


class DiffOp(str, Enum):
    """Kinds of field-level differences."""

    ADD = "+"
    REMOVE = "-"
    CHANGE = "~"


@dataclass(frozen=True)
class DiffEntry:
    """A single field-level difference.

    Attributes:
        op: Whether the field is added, removed or changed by applying the record.
        path: Dotted attribute path, list positions as ``[i]``.
        old: Value on the remote side (None for additions).
        new: Value in the definition (None for removals).
    """

    op: DiffOp
    path: str
    old: Any = None
    new: Any = None

    def describe(self) -> str:
        match self.op:
            case DiffOp.ADD:
                return f"+{self.path} {self.new!r}"
            case DiffOp.REMOVE:
                return f"-{self.path} {self.old!r}"
            case _:
                return f"~{self.path} {self.old!r} -> {self.new!r}"


def canonicalize(record: Record) -> Mapping[str, Any]:
    """Return the diffable attributes of a desired record.

    The remote identifier is never a diffable attribute.
    """
    return MappingProxyType({k: v for k, v in record.attributes.items() if k != "id"})


def normalize(
    actual: Mapping[str, Any],
    readonly: Iterable[str],
) -> Mapping[str, Any]:
    """Drop readonly attributes from an actual record's attributes."""
    readonly = frozenset(readonly)
    return MappingProxyType({k: v for k, v in actual.items() if k not in readonly})


def suppress_defaults(
    expected: Mapping[str, Any],
    actual: Mapping[str, Any],
    defaults: Mapping[str, Any],
) -> tuple[Mapping[str, Any], Mapping[str, Any]]:
    """Remove attributes that both sides leave at their default.

    A key is dropped from both sides only when each side either lacks it or
    holds the default value. If either side deviates, the key is kept on
    both sides so the deviation shows up in the diff.

    Args:
        expected: Normalized desired attributes.
        actual: Normalized remote attributes.
        defaults: Attribute name to default value.

    Returns:
        New (expected, actual) pair.
    """
    dropped: set[str] = set()
    for key, default in defaults.items():
        if all(
            key not in side or _values_equal(side[key], default)
            for side in (actual, expected)
        ):
            dropped.add(key)

    if dropped:
        logger.debug("Suppressed default attributes", extra={"attributes": sorted(dropped)})

    return (
        MappingProxyType({k: v for k, v in expected.items() if k not in dropped}),
        MappingProxyType({k: v for k, v in actual.items() if k not in dropped}),
    )


def normalize_pair(
    kind: ResourceKind,
    expected: Mapping[str, Any],
    actual: Mapping[str, Any],
) -> tuple[Mapping[str, Any], Mapping[str, Any]]:
    """Apply every normalization a kind needs before diffing.

    Readonly attributes are stripped from both sides, then defaults are
    suppressed at the top level and inside ``options``.
    """
    expected = normalize(expected, kind.readonly_attributes)
    actual = normalize(actual, kind.readonly_attributes)
    expected, actual = suppress_defaults(expected, actual, kind.default_values)

    expected_options = expected.get("options")
    actual_options = actual.get("options")
    if kind.option_defaults and (
        isinstance(expected_options, Mapping) or isinstance(actual_options, Mapping)
    ):
        expected_options, actual_options = suppress_defaults(
            expected_options if isinstance(expected_options, Mapping) else {},
            actual_options if isinstance(actual_options, Mapping) else {},
            kind.option_defaults,
        )
        expected = _replace_options(expected, expected_options)
        actual = _replace_options(actual, actual_options)

    return expected, actual


def _replace_options(
    attributes: Mapping[str, Any],
    options: Mapping[str, Any],
) -> Mapping[str, Any]:
    # Options reduced to nothing are equivalent to no options at all
    updated = dict(attributes)
    if options:
        updated["options"] = options
    else:
        updated.pop("options", None)
    return MappingProxyType(updated)


def diff(expected: Mapping[str, Any], actual: Mapping[str, Any]) -> list[DiffEntry]:
    """Compute the ordered structural difference from actual to expected.

    Remote keys are visited first in their order, reporting removals and
    changes; keys only present in the definition follow as additions. Lists
    are compared by position.

    Args:
        expected: Normalized desired attributes.
        actual: Normalized remote attributes.

    Returns:
        Ordered diff entries; empty if the records are equivalent.
    """
    entries: list[DiffEntry] = []
    _diff_value(actual, expected, "", entries)
    return entries


def diff_record(record: Record, actual: Mapping[str, Any]) -> list[DiffEntry]:
    """Diff a desired record against the raw attributes of its remote match."""
    expected, normalized_actual = normalize_pair(record.kind, canonicalize(record), actual)
    return diff(expected, normalized_actual)


def format_diff(entries: Iterable[DiffEntry], indent: str = "  ") -> list[str]:
    """Render diff entries as plan lines."""
    return [f"{indent}{entry.describe()}" for entry in entries]


def _join(path: str, key: Any) -> str:
    return f"{path}.{key}" if path else str(key)


def _diff_value(old: Any, new: Any, path: str, entries: list[DiffEntry]) -> None:
    if isinstance(old, Mapping) and isinstance(new, Mapping):
        for key, old_value in old.items():
            child = _join(path, key)
            if key not in new:
                entries.append(DiffEntry(DiffOp.REMOVE, child, old=old_value))
            else:
                _diff_value(old_value, new[key], child, entries)
        for key, new_value in new.items():
            if key not in old:
                entries.append(DiffEntry(DiffOp.ADD, _join(path, key), new=new_value))
        return

    if isinstance(old, list | tuple) and isinstance(new, list | tuple):
        common = min(len(old), len(new))
        for i in range(common):
            _diff_value(old[i], new[i], f"{path}[{i}]", entries)
        for i in range(common, len(old)):
            entries.append(DiffEntry(DiffOp.REMOVE, f"{path}[{i}]", old=old[i]))
        for i in range(common, len(new)):
            entries.append(DiffEntry(DiffOp.ADD, f"{path}[{i}]", new=new[i]))
        return

    if not _values_equal(old, new):
        entries.append(DiffEntry(DiffOp.CHANGE, path, old=old, new=new))


def _values_equal(a: Any, b: Any) -> bool:
    """Deep equality that keeps booleans distinct from integers."""
    if isinstance(a, bool) or isinstance(b, bool):
        return type(a) is type(b) and a == b

    if isinstance(a, Mapping) and isinstance(b, Mapping):
        if set(a.keys()) != set(b.keys()):
            return False
        return all(_values_equal(a[k], b[k]) for k in a)

    if isinstance(a, list | tuple) and isinstance(b, list | tuple):
        if len(a) != len(b):
            return False
        return all(_values_equal(x, y) for x, y in zip(a, b, strict=True))

    return a == b
