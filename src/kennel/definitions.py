"""Definition loading with validation.

Projects are declared as YAML files and turned into fully resolved records:

    root/
      projects/<project>.yaml        one project, its tags, team and parts
      parts/<project>/<name>.yaml    shared part definitions, referenced by name
      teams/<name>.yaml              team mention handle and tags

Every record's attributes are computed by an ordered chain of resolver
functions, one per level of specialization. Each level sees the declared
values and the mapping computed by the level before it; the result is one
flat mapping that the reconciliation core consumes as-is.

SECURITY: All file reads enforce size limits. Input validation is performed
at the boundary.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from .models import KENNEL_ID_PATTERN, Project, Record
from .resource_kinds import RESOURCE_KINDS, get_kind, tracking_marker

logger = logging.getLogger(__name__)

MAX_DEFINITION_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max definition file
DEFINITION_SUFFIXES = (".yaml", ".yml")

# Keys that steer resolution and never reach the canonical attributes
META_KEYS = frozenset({"type", "kennel_id", "part", "id"})
HELPER_KEYS = frozenset({"critical", "warning"})

# A part's `type` selects the kind; the remote object's own `type` is declared
# under the kind-specific key instead
REMOTE_TYPE_KEYS = {"monitor": "monitor_type", "slo": "slo_type"}
CONSUMED_KEYS = META_KEYS | HELPER_KEYS | frozenset(REMOTE_TYPE_KEYS.values())

_HELPER_PLACEHOLDER = re.compile(r"\{(critical|warning)\}")


class DefinitionLoadError(Exception):
    """Raised when a definition cannot be located, parsed or validated."""

    pass


class ProjectFilterError(Exception):
    """Raised when a project filter selects nothing."""

    pass


# =============================================================================
# File Schemas
# =============================================================================


class TeamSpec(BaseModel):
    """Team definition from ``teams/<name>.yaml``."""

    model_config = {"extra": "forbid"}

    handle: str | None = None
    tags: list[str] = Field(default_factory=list)


class PartSpec(BaseModel):
    """One part entry; attributes beyond the known keys are kept as extras."""

    model_config = {"extra": "allow"}

    type: str
    kennel_id: str = Field(pattern=KENNEL_ID_PATTERN)
    id: int | str | None = None

    def attributes(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


class ProjectSpec(BaseModel):
    """Project definition from ``projects/<file>.yaml``."""

    model_config = {"extra": "forbid"}

    kennel_id: str | None = Field(None, pattern=KENNEL_ID_PATTERN)
    team: str | None = None
    tags: list[str] = Field(default_factory=list)
    parts: list[dict[str, Any]] = Field(default_factory=list)


# =============================================================================
# Registry
# =============================================================================

Loader = Callable[[], dict[str, Any]]


@dataclass
class DefinitionRegistry:
    """Logical name to loader for every shared definition file.

    Names look like ``teams/<name>`` and ``parts/<project>/<name>``; they are
    registered by walking the definitions root once at startup.
    """

    root: Path
    loaders: dict[str, Loader] = field(default_factory=dict)

    @classmethod
    def scan(cls, root: Path) -> DefinitionRegistry:
        registry = cls(root=root)
        for section in ("teams", "parts"):
            base = root / section
            if not base.is_dir():
                continue
            for path in sorted(base.rglob("*")):
                if path.is_file() and path.suffix in DEFINITION_SUFFIXES:
                    name = path.relative_to(root).with_suffix("").as_posix()
                    registry.register(name, partial(read_yaml_mapping, path, root))
        logger.debug("Scanned definitions", extra={"root": str(root), "count": len(registry.loaders)})
        return registry

    def register(self, name: str, loader: Loader) -> None:
        self.loaders[name] = loader

    def load(self, name: str, label: str) -> dict[str, Any]:
        """Run the loader registered under ``name``.

        Args:
            name: Logical name, e.g. ``teams/baz_foo``.
            label: Human-readable reference used in the error message.

        Raises:
            DefinitionLoadError: If nothing is registered under the name.
        """
        loader = self.loaders.get(name)
        if loader is None:
            expected = f"{name}.yaml"
            raise DefinitionLoadError(
                f"Unable to load {label} from {expected}\n"
                "- Option 1: rename the reference or the file it lives in, to make them match\n"
                f"- Option 2: create {expected}"
            )
        return loader()

    def team(self, name: str) -> TeamSpec:
        data = self.load(f"teams/{name}", f"team {name}")
        return _validate(TeamSpec, data, f"teams/{name}")

    def part(self, project_id: str, name: str) -> dict[str, Any]:
        return self.load(f"parts/{project_id}/{name}", f"part {name} of project {project_id}")


def read_yaml_mapping(path: Path, root: Path | None = None) -> dict[str, Any]:
    """Read a YAML file that must contain a mapping.

    Raises:
        DefinitionLoadError: If the file is too large, unreadable or not a mapping.
    """
    display = path.relative_to(root) if root else path

    # SECURITY: Check file size before reading to prevent DoS
    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise DefinitionLoadError(f"Failed to stat definition file {display}: {e}") from e

    if file_size > MAX_DEFINITION_FILE_SIZE_BYTES:
        raise DefinitionLoadError(
            f"Definition file exceeds maximum size of {MAX_DEFINITION_FILE_SIZE_BYTES} bytes: {display}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise DefinitionLoadError(f"Failed to read definition file {display}: {e}") from e

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise DefinitionLoadError(f"Invalid YAML in {display}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise DefinitionLoadError(f"Definition file must contain a YAML mapping: {display}")
    return data


def _validate(model: type[BaseModel], data: Any, source: str) -> Any:
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        # Format Pydantic validation errors for readability
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            errors.append(f"  - {loc}: {error['msg']}")
        error_list = "\n".join(errors)
        raise DefinitionLoadError(f"Validation failed for {source}:\n{error_list}") from e


# =============================================================================
# Resolver Chain
# =============================================================================


@dataclass(frozen=True)
class ResolutionContext:
    """Project-level values a resolver may draw on."""

    project_id: str
    kennel_id: str
    resource_type: str
    source: str
    project_tags: tuple[str, ...] = ()
    team: TeamSpec | None = None

    @property
    def tracking_id(self) -> str:
        return f"{self.project_id}:{self.kennel_id}"


Resolver = Callable[[Mapping[str, Any], Mapping[str, Any], ResolutionContext], dict[str, Any]]


def _declared_level(
    declared: Mapping[str, Any],
    prior: Mapping[str, Any],
    ctx: ResolutionContext,
) -> dict[str, Any]:
    resolved = dict(prior)
    resolved.update((k, v) for k, v in declared.items() if k not in CONSUMED_KEYS)
    return resolved


def _tag_level(
    declared: Mapping[str, Any],
    prior: Mapping[str, Any],
    ctx: ResolutionContext,
) -> dict[str, Any]:
    team_tags = ctx.team.tags if ctx.team else []
    resolved = dict(prior)
    resolved["tags"] = _unique([*team_tags, *ctx.project_tags, *(prior.get("tags") or [])])
    return resolved


def _monitor_level(
    declared: Mapping[str, Any],
    prior: Mapping[str, Any],
    ctx: ResolutionContext,
) -> dict[str, Any]:
    helpers = {k: declared[k] for k in HELPER_KEYS if k in declared}

    query = prior.get("query", "")
    if isinstance(query, str) and helpers:
        query = _HELPER_PLACEHOLDER.sub(
            lambda m: str(helpers[m.group(1)]) if m.group(1) in helpers else m.group(0),
            query,
        )

    options = dict(prior.get("options") or {})
    thresholds = dict(options.get("thresholds") or {})
    for key, value in helpers.items():
        thresholds.setdefault(key, value)
    if thresholds:
        options["thresholds"] = thresholds

    resolved: dict[str, Any] = {
        "name": prior.get("name", ctx.kennel_id),
        "type": declared.get(REMOTE_TYPE_KEYS["monitor"], "query alert"),
        "query": query,
        "message": prior.get("message", ""),
        "tags": prior.get("tags", []),
        "options": options,
    }
    for key, value in prior.items():
        resolved.setdefault(key, value)
    return resolved


def _dashboard_level(
    declared: Mapping[str, Any],
    prior: Mapping[str, Any],
    ctx: ResolutionContext,
) -> dict[str, Any]:
    resolved: dict[str, Any] = {
        "title": prior.get("title", ctx.kennel_id),
        "description": prior.get("description", ""),
        "layout_type": prior.get("layout_type", "ordered"),
        "widgets": prior.get("widgets", []),
    }
    for key, value in prior.items():
        resolved.setdefault(key, value)
    return resolved


def _slo_level(
    declared: Mapping[str, Any],
    prior: Mapping[str, Any],
    ctx: ResolutionContext,
) -> dict[str, Any]:
    resolved: dict[str, Any] = {
        "name": prior.get("name", ctx.kennel_id),
        "type": declared.get(REMOTE_TYPE_KEYS["slo"], "monitor"),
        "description": prior.get("description", ""),
        "thresholds": prior.get("thresholds", []),
        "tags": prior.get("tags", []),
    }
    for key, value in prior.items():
        resolved.setdefault(key, value)
    return resolved


def _tracking_level(
    declared: Mapping[str, Any],
    prior: Mapping[str, Any],
    ctx: ResolutionContext,
) -> dict[str, Any]:
    kind = get_kind(ctx.resource_type)
    text = prior.get(kind.tracking_field) or ""
    pieces = [text.strip()] if text.strip() else []

    # Only monitors notify anyone
    handle = ctx.team.handle if ctx.team else None
    if kind.name == "monitor" and handle and handle not in text:
        pieces.append(handle)

    pieces.append(tracking_marker(ctx.tracking_id, ctx.source))
    resolved = dict(prior)
    resolved[kind.tracking_field] = "\n\n".join(pieces)
    return resolved


RESOLVER_CHAINS: dict[str, list[Resolver]] = {
    "monitor": [_declared_level, _tag_level, _monitor_level, _tracking_level],
    "dashboard": [_declared_level, _dashboard_level, _tracking_level],
    "slo": [_declared_level, _tag_level, _slo_level, _tracking_level],
}


def resolve_attributes(declared: Mapping[str, Any], ctx: ResolutionContext) -> dict[str, Any]:
    """Run a kind's resolver chain over the declared values.

    Returns:
        Flat canonical attribute mapping.
    """
    resolved: dict[str, Any] = {}
    for level in RESOLVER_CHAINS[ctx.resource_type]:
        resolved = level(declared, resolved, ctx)
    if declared.get("id") is not None:
        resolved = {"id": declared["id"], **resolved}
    return resolved


def _unique(values: Iterable[str]) -> list[str]:
    seen: dict[str, None] = {}
    for value in values:
        seen.setdefault(value, None)
    return list(seen)


# =============================================================================
# Loading
# =============================================================================


def load_projects(root: Path, registry: DefinitionRegistry | None = None) -> list[Project]:
    """Load and resolve every project under ``root/projects``.

    Args:
        root: Definitions root directory.
        registry: Pre-built registry; scanned from ``root`` when omitted.

    Returns:
        Projects in file name order, each with resolved records.

    Raises:
        DefinitionLoadError: If any definition cannot be loaded.
    """
    projects_dir = root / "projects"
    if not projects_dir.is_dir():
        raise DefinitionLoadError(f"Projects directory not found: {projects_dir}")

    registry = registry or DefinitionRegistry.scan(root)
    projects = [
        load_project(path, root, registry)
        for path in sorted(projects_dir.rglob("*"))
        if path.is_file() and path.suffix in DEFINITION_SUFFIXES
    ]
    logger.info(
        "Loaded projects",
        extra={"count": len(projects), "records": sum(len(p.records) for p in projects)},
    )
    return projects


def load_project(path: Path, root: Path, registry: DefinitionRegistry) -> Project:
    """Load one project file and resolve its parts into records."""
    source = path.relative_to(root).as_posix()
    definition: ProjectSpec = _validate(ProjectSpec, read_yaml_mapping(path, root), source)
    project_id = definition.kennel_id or path.stem

    team = registry.team(definition.team) if definition.team else None

    records = [
        _build_record(raw, index, project_id, definition, team, source, registry)
        for index, raw in enumerate(definition.parts)
    ]
    return Project(kennel_id=project_id, records=records, source=source)


def _build_record(
    raw: dict[str, Any],
    index: int,
    project_id: str,
    definition: ProjectSpec,
    team: TeamSpec | None,
    source: str,
    registry: DefinitionRegistry,
) -> Record:
    declared = dict(raw)
    shared_name = declared.pop("part", None)
    if shared_name:
        # Inline keys override the shared definition
        declared = {**registry.part(project_id, shared_name), **declared}

    part: PartSpec = _validate(PartSpec, declared, f"{source} parts[{index}]")
    if part.type not in RESOURCE_KINDS:
        raise DefinitionLoadError(
            f"Validation failed for {source} parts[{index}]:\n"
            f"  - type: must be one of {sorted(RESOURCE_KINDS)}, got {part.type!r}"
        )

    ctx = ResolutionContext(
        project_id=project_id,
        kennel_id=part.kennel_id,
        resource_type=part.type,
        source=source,
        project_tags=tuple(definition.tags),
        team=team,
    )
    attributes = resolve_attributes({**part.attributes(), "id": part.id}, ctx)
    return Record(
        kennel_id=part.kennel_id,
        project_id=project_id,
        resource_type=part.type,
        id=part.id,
        attributes=attributes,
        source=source,
    )


def filter_projects(projects: list[Project], names: Iterable[str] | None) -> list[Project]:
    """Keep only the projects named by the filter.

    Raises:
        ProjectFilterError: If the filter matches no project.
    """
    if names is None:
        return projects

    wanted = set(names)
    selected = [p for p in projects if p.kennel_id in wanted]
    if not selected:
        available = "\n".join(sorted({p.kennel_id for p in projects}))
        raise ProjectFilterError(
            f"{','.join(sorted(wanted))} does not match any projects, "
            f"try any of these:\n{available}"
        )

    unmatched = wanted - {p.kennel_id for p in selected}
    if unmatched:
        logger.warning(
            "Project filter names unknown projects",
            extra={"unmatched": sorted(unmatched)},
        )
    return selected


def records_of(projects: Iterable[Project]) -> list[Record]:
    """Flatten projects into their records, keeping definition order."""
    return [record for project in projects for record in project.records]
