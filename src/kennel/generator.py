"""Snapshot generation for desired-state records.

Every record is written as pretty-printed JSON to
``<generated_dir>/<project>/<kennel_id>.json`` so definition changes can be
reviewed as plain file diffs.

DESIGN PHILOSOPHY:
- Idempotent: unchanged content leaves the file and its mtime alone
- Convergent: files no longer produced by any definition are removed
- Scoped: with a project filter only the selected projects' output is touched
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from .models import Record

logger = logging.getLogger(__name__)

SNAPSHOT_SUFFIX = ".json"


class DuplicateTrackingIdError(Exception):
    """Raised when two definitions produce the same tracking id."""

    pass


class SnapshotWriteError(Exception):
    """Raised when snapshots cannot be written or pruned."""

    pass


@dataclass
class GenerateResult:
    """Outcome of one generation pass."""

    written: list[Path] = field(default_factory=list)
    unchanged: list[Path] = field(default_factory=list)
    removed: list[Path] = field(default_factory=list)


def snapshot_content(record: Record) -> str:
    """Serialize a record's attributes deterministically."""
    return json.dumps(record.attributes, indent=2, ensure_ascii=False, default=str) + "\n"


def check_duplicates(records: Iterable[Record]) -> None:
    """Ensure every tracking id is defined once.

    Raises:
        DuplicateTrackingIdError: Naming each duplicated tracking id.
    """
    counts = Counter(record.tracking_id for record in records)
    duplicates = [(tracking_id, n) for tracking_id, n in counts.items() if n > 1]
    if not duplicates:
        return

    lines = [f"{tracking_id} is defined {n} times" for tracking_id, n in duplicates]
    raise DuplicateTrackingIdError(
        "\n".join(lines)
        + "\nuse a different `kennel_id` when defining multiple projects/monitors/dashboards"
        " to avoid this conflict\n"
    )


class Generator:
    """Writes record snapshots and prunes stale ones."""

    def __init__(
        self,
        output_dir: Path,
        project_filter: Iterable[str] | None = None,
    ) -> None:
        """Initialize generator.

        Args:
            output_dir: Snapshot root directory.
            project_filter: Project kennel_ids whose snapshots may be touched;
                None means the whole tree is managed.
        """
        self._output_dir = output_dir
        self._project_filter = frozenset(project_filter) if project_filter is not None else None

    def path_for(self, record: Record) -> Path:
        return self._output_dir / record.project_id / f"{record.kennel_id}{SNAPSHOT_SUFFIX}"

    def generate(self, records: list[Record]) -> GenerateResult:
        """Write snapshots for all records, then remove stale output.

        Args:
            records: Desired records of this run, in definition order.

        Returns:
            Paths written, left unchanged and removed.

        Raises:
            DuplicateTrackingIdError: Before anything is written.
            SnapshotWriteError: If the output tree cannot be written or pruned.
        """
        check_duplicates(records)

        result = GenerateResult()
        try:
            for record in records:
                path = self.path_for(record)
                content = snapshot_content(record)
                if self._write_if_changed(path, content):
                    result.written.append(path)
                else:
                    result.unchanged.append(path)

            keep = {path.resolve() for path in (*result.written, *result.unchanged)}
            result.removed = self._cleanup(keep)
        except OSError as e:
            raise SnapshotWriteError(f"Failed to write snapshots to {self._output_dir}: {e}") from e

        logger.info(
            "Generated snapshots",
            extra={
                "output_dir": str(self._output_dir),
                "written": len(result.written),
                "unchanged": len(result.unchanged),
                "removed": len(result.removed),
            },
        )
        return result

    def _write_if_changed(self, path: Path, content: str) -> bool:
        encoded = content.encode("utf-8")
        if path.is_file() and path.read_bytes() == encoded:
            return False
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(encoded)
        logger.debug("Wrote snapshot", extra={"path": str(path)})
        return True

    def _managed_roots(self) -> list[Path]:
        if self._project_filter is None:
            return [self._output_dir]
        return [self._output_dir / project for project in sorted(self._project_filter)]

    def _cleanup(self, keep: set[Path]) -> list[Path]:
        """Delete everything under the managed roots not in ``keep``."""
        removed: list[Path] = []
        for base in self._managed_roots():
            if not base.is_dir():
                continue
            # Deepest paths first so emptied directories can go too
            for path in sorted(base.rglob("*"), key=lambda p: len(p.parts), reverse=True):
                if path.is_symlink() or path.is_file():
                    if path.resolve() not in keep:
                        path.unlink()
                        removed.append(path)
                elif path.is_dir() and not any(path.iterdir()):
                    path.rmdir()
                    removed.append(path)
            if base != self._output_dir and base.is_dir() and not any(base.iterdir()):
                base.rmdir()
                removed.append(base)

        for path in removed:
            logger.debug("Removed stale snapshot", extra={"path": str(path)})
        return removed
