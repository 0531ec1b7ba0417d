"""Select the template set for a generation request.

Templates live at up to three levels, ranked explicitly::

    architecture (0)  architectures/<a>/project | architectures/<a>/components/<kind>
    framework    (1)  frameworks/<f>/<p>/project | frameworks/<f>/<p>/components/<kind>
    component    (2)  frameworks/<f>/<p>/adapters/<output|input>/<type>

A template's *claim* is its path relative to its level directory.  When two
levels claim the same path the higher-ranked level wins; deleting the
override makes the lower level visible again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from archgen.errors import MetadataError, TemplateNotFound, UnsupportedSelector
from archgen.models import (
    ArtifactKind,
    DependencyHint,
    GenerationRequest,
    TargetKind,
    TemplateEntry,
    TemplatePack,
)
from archgen.pack.loader import ARCHITECTURES_DIR, FRAMEWORKS_DIR, METADATA_FILE, STRUCTURE_FILE

logger = logging.getLogger(__name__)


class TemplateLevel(str, Enum):
    ARCHITECTURE = "architecture"
    FRAMEWORK = "framework"
    COMPONENT = "component"


_RANKS: dict[TemplateLevel, int] = {
    TemplateLevel.ARCHITECTURE: 0,
    TemplateLevel.FRAMEWORK: 1,
    TemplateLevel.COMPONENT: 2,
}

COMPONENT_DIRS: dict[TargetKind, str] = {
    TargetKind.GENERATE_ENTITY: "entity",
    TargetKind.GENERATE_USE_CASE: "usecase",
    TargetKind.GENERATE_OUTPUT_ADAPTER: "output-adapter",
    TargetKind.GENERATE_INPUT_ADAPTER: "input-adapter",
}

ADAPTER_DIRS: dict[TargetKind, str] = {
    TargetKind.GENERATE_OUTPUT_ADAPTER: "output",
    TargetKind.GENERATE_INPUT_ADAPTER: "input",
}


def rank(level: TemplateLevel) -> int:
    """Precedence of *level*; higher wins."""
    return _RANKS[level]


# ---------------------------------------------------------------------------
# Metadata models
# ---------------------------------------------------------------------------


def _load_yaml(entry: TemplateEntry) -> dict[str, Any]:
    try:
        data = yaml.safe_load(entry.text()) or {}
    except (yaml.YAMLError, UnicodeDecodeError) as exc:
        raise MetadataError(entry.logical_path, f"not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise MetadataError(entry.logical_path, "top-level value must be a mapping")
    return data


def _describe(exc: ValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first["loc"])
    return f"{location}: {first['msg']}" if location else first["msg"]


class TemplateSpec(BaseModel):
    """Where one template of a set is written and how."""

    target: str = Field(..., description="Target path relative to the project root; may use ${...}")
    artifact: Optional[ArtifactKind] = Field(default=None, description="Overrides kind inference")
    fragment: bool = Field(default=False, description="Only merged into an existing file")


class TemplateSetMetadata(BaseModel):
    """Contents of a ``metadata.yml``, or the overlay of several levels."""

    variables: list[str] = Field(default_factory=list)
    templates: dict[str, TemplateSpec] = Field(default_factory=dict)
    dependencies: list[DependencyHint] = Field(default_factory=list)
    build_file: Optional[str] = None

    @classmethod
    def from_entry(cls, entry: TemplateEntry) -> "TemplateSetMetadata":
        """Parse a metadata entry.

        Dependencies come from the hints the loader attached to *entry*; the
        ``dependencies`` key is still validated so a malformed hint is an error.

        Raises:
            MetadataError: Invalid YAML or schema.
        """
        try:
            metadata = cls.model_validate(_load_yaml(entry))
        except ValidationError as exc:
            raise MetadataError(entry.logical_path, _describe(exc)) from exc
        return metadata.model_copy(update={"dependencies": list(entry.merge_hints)})

    def overlay(self, specific: "TemplateSetMetadata") -> "TemplateSetMetadata":
        """Combine with a more specific level: its keys win, variables are unioned."""
        variables = list(dict.fromkeys([*self.variables, *specific.variables]))
        templates = {**self.templates, **specific.templates}
        dependencies = {(hint.scope, hint.identity): hint for hint in self.dependencies}
        dependencies.update({(hint.scope, hint.identity): hint for hint in specific.dependencies})
        return TemplateSetMetadata(
            variables=variables,
            templates=templates,
            dependencies=list(dependencies.values()),
            build_file=specific.build_file or self.build_file,
        )


class StructureDefinition(BaseModel):
    """An architecture's ``structure.yml``: layout, named paths and modules."""

    multi_module: bool = False
    modules: list[str] = Field(default_factory=list)
    directories: list[str] = Field(default_factory=list)
    paths: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_entry(cls, entry: TemplateEntry) -> "StructureDefinition":
        try:
            return cls.model_validate(_load_yaml(entry))
        except ValidationError as exc:
            raise MetadataError(entry.logical_path, _describe(exc)) from exc


# ---------------------------------------------------------------------------
# Resolution result
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ResolvedTemplate:
    """A winning template entry, the level it came from and its claim."""

    entry: TemplateEntry
    level: TemplateLevel
    claim: str

    @property
    def template_path(self) -> str:
        return self.entry.logical_path


@dataclass(frozen=True)
class Resolution:
    """Everything the orchestrator needs to render one request."""

    structure_entry: TemplateEntry
    structure: StructureDefinition
    metadata: TemplateSetMetadata
    metadata_path: Optional[str]
    templates: list[ResolvedTemplate]

    def spec_for(self, claim: str) -> Optional[TemplateSpec]:
        return self.metadata.templates.get(claim)


# ---------------------------------------------------------------------------
# resolve
# ---------------------------------------------------------------------------


def level_dirs(request: GenerationRequest) -> list[tuple[TemplateLevel, str]]:
    """Level directories searched for *request*, lowest rank first."""
    arch = f"{ARCHITECTURES_DIR}/{request.architecture}"
    framework = f"{FRAMEWORKS_DIR}/{request.framework}/{request.paradigm}"
    if request.kind == TargetKind.INIT_PROJECT:
        return [
            (TemplateLevel.ARCHITECTURE, f"{arch}/project"),
            (TemplateLevel.FRAMEWORK, f"{framework}/project"),
        ]
    component = COMPONENT_DIRS[request.kind]
    levels = [
        (TemplateLevel.ARCHITECTURE, f"{arch}/components/{component}"),
        (TemplateLevel.FRAMEWORK, f"{framework}/components/{component}"),
    ]
    if request.kind in ADAPTER_DIRS:
        levels.append(
            (TemplateLevel.COMPONENT, f"{framework}/adapters/{ADAPTER_DIRS[request.kind]}/{request.adapter_type}")
        )
    return levels


def supported_combinations(pack: TemplatePack, request: GenerationRequest) -> list[str]:
    """``framework/paradigm`` pairs that do provide what *request* asks for."""
    found: set[str] = set()
    for entry in pack.under(FRAMEWORKS_DIR):
        parts = entry.logical_path.split("/")
        if len(parts) < 5:
            continue
        framework, paradigm = parts[1], parts[2]
        if request.kind in ADAPTER_DIRS:
            wanted = ["adapters", ADAPTER_DIRS[request.kind], request.adapter_type]
            if parts[3:6] == wanted and parts[-1] == METADATA_FILE:
                found.add(f"{framework}/{paradigm}")
        elif request.kind == TargetKind.INIT_PROJECT:
            if parts[3] == "project":
                found.add(f"{framework}/{paradigm}")
        elif parts[3:5] == ["components", COMPONENT_DIRS[request.kind]]:
            found.add(f"{framework}/{paradigm}")
    found.discard(f"{request.framework}/{request.paradigm}")
    return sorted(found)


def _check_selector(request: GenerationRequest) -> None:
    for value in (request.architecture, request.framework, request.paradigm, request.adapter_type or "x"):
        if not value or "/" in value or "\\" in value or value in (".", ".."):
            raise UnsupportedSelector(request.selector())


def resolve(request: GenerationRequest, pack: TemplatePack) -> Resolution:
    """Pick the winning templates and merged metadata for *request*.

    Raises:
        UnsupportedSelector: Nothing exists for the selector combination, or a
            mandatory entry is missing here but present for another
            framework/paradigm.
        TemplateNotFound: A mandatory entry (structure or metadata) is missing.
        MetadataError: A structure or metadata file is invalid.
    """
    _check_selector(request)
    levels = level_dirs(request)
    found = [(level, prefix, list(pack.under(prefix))) for level, prefix in levels]

    if not any(entries for _, _, entries in found):
        raise UnsupportedSelector(request.selector(), supported_combinations(pack, request))

    structure_path = f"{ARCHITECTURES_DIR}/{request.architecture}/{STRUCTURE_FILE}"
    structure_entry = pack.get(structure_path)
    if structure_entry is None:
        raise TemplateNotFound(structure_path, f"unknown architecture '{request.architecture}'")

    metadata_entries = [
        (level, pack.get(f"{prefix}/{METADATA_FILE}")) for level, prefix, _ in found
    ]
    _check_mandatory_metadata(request, pack, levels, found, metadata_entries)

    metadata = TemplateSetMetadata()
    metadata_path: Optional[str] = None
    for _, entry in metadata_entries:
        if entry is not None:
            metadata = metadata.overlay(TemplateSetMetadata.from_entry(entry))
            metadata_path = entry.logical_path

    winners: dict[str, ResolvedTemplate] = {}
    for level, prefix, entries in found:
        for entry in entries:
            claim = entry.logical_path[len(prefix) + 1:]
            if claim == METADATA_FILE:
                continue
            previous = winners.get(claim)
            if previous is not None:
                logger.debug("%s overrides %s", entry.logical_path, previous.template_path)
            winners[claim] = ResolvedTemplate(entry=entry, level=level, claim=claim)

    templates = sorted(winners.values(), key=lambda t: (rank(t.level), t.claim))
    logger.debug("Resolved %d templates for %s", len(templates), request.selector())
    return Resolution(
        structure_entry=structure_entry,
        structure=StructureDefinition.from_entry(structure_entry),
        metadata=metadata,
        metadata_path=metadata_path,
        templates=templates,
    )


def _check_mandatory_metadata(
    request: GenerationRequest,
    pack: TemplatePack,
    levels: list[tuple[TemplateLevel, str]],
    found: list[tuple[TemplateLevel, str, list[TemplateEntry]]],
    metadata_entries: list[tuple[TemplateLevel, Optional[TemplateEntry]]],
) -> None:
    if request.kind == TargetKind.INIT_PROJECT:
        return
    if request.kind in ADAPTER_DIRS:
        adapter_prefix = levels[-1][1]
        if metadata_entries[-1][1] is not None:
            return
        missing = f"{adapter_prefix}/{METADATA_FILE}"
        if found[-1][2]:
            raise TemplateNotFound(missing, f"adapter '{request.adapter_type}' has no {METADATA_FILE}")
    else:
        if any(entry is not None for _, entry in metadata_entries):
            return
        missing = f"{levels[1][1]}/{METADATA_FILE}"

    supported = supported_combinations(pack, request)
    if supported:
        raise UnsupportedSelector(request.selector(), supported)
    raise TemplateNotFound(missing)
