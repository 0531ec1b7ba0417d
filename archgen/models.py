"""Pydantic v2 models shared by the generation engine.

Covers the template pack snapshot, generation requests, and the manifest
returned to callers.  Pack-side models are frozen: a pack refresh builds a new
snapshot instead of mutating the old one.
"""

from __future__ import annotations

from collections.abc import Iterator
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class CachePolicy(str, Enum):
    """How the repository treats an existing cache entry for a remote pack."""
    USE_CACHE = "use-cache"
    REFRESH = "refresh"


class CacheState(str, Enum):
    """Freshness of a pack snapshot (or of a cache slot when looked up)."""
    FRESH = "fresh"
    STALE = "stale"
    MISSING = "missing"


class EntryKind(str, Enum):
    """Classification of a file inside a template pack."""
    PROJECT_FILE = "project-file"
    STRUCTURE_DEFINITION = "structure-definition"
    COMPONENT_FILE = "component-file"
    METADATA = "metadata"


class TargetKind(str, Enum):
    """The generator command a request stands for."""
    INIT_PROJECT = "init-project"
    GENERATE_ENTITY = "generate-entity"
    GENERATE_USE_CASE = "generate-use-case"
    GENERATE_OUTPUT_ADAPTER = "generate-output-adapter"
    GENERATE_INPUT_ADAPTER = "generate-input-adapter"


class ArtifactKind(str, Enum):
    """Whether and how a generated file may be merged."""
    OPAQUE_TEXT = "opaque-text"
    STRUCTURED_CONFIG = "structured-config"
    STRUCTURED_BUILD_DESCRIPTOR = "structured-build-descriptor"


class MergeStatus(str, Enum):
    """Outcome for one artifact of a generation request."""
    CREATED = "created"
    MERGED = "merged"
    MERGED_WITH_CONFLICTS = "merged-with-conflicts"
    SKIPPED_IDENTICAL = "skipped-identical"
    SKIPPED_EXISTING = "skipped-existing"
    SKIPPED_MISSING_TARGET = "skipped-missing-target"
    OVERWRITTEN = "overwritten"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Template pack
# ---------------------------------------------------------------------------

class SourceDescriptor(BaseModel):
    """Where a template pack comes from: a local directory or a remote repository."""
    model_config = ConfigDict(frozen=True)

    path: Optional[Path] = Field(default=None, description="Local template directory")
    url: Optional[str] = Field(default=None, description="Repository or archive URL")
    ref: str = Field(default="main", description="Branch, tag or version of the remote pack")

    @model_validator(mode="after")
    def _exactly_one_location(self) -> "SourceDescriptor":
        if (self.path is None) == (self.url is None):
            raise ValueError("exactly one of 'path' or 'url' must be set")
        return self

    @property
    def is_local(self) -> bool:
        return self.path is not None

    def describe(self) -> str:
        """Human-readable form used in errors and logs."""
        if self.path is not None:
            return str(self.path)
        return f"{self.url}@{self.ref}"


class DependencyHint(BaseModel):
    """A dependency a template set wants merged into a build descriptor."""
    model_config = ConfigDict(frozen=True)

    scope: str = Field(default="implementation", description="Gradle configuration name")
    group: str
    artifact: str
    version: Optional[str] = None

    @property
    def identity(self) -> str:
        return f"{self.group}:{self.artifact}"

    def notation(self) -> str:
        """Gradle string notation, e.g. ``'com.x:y:1.0'``."""
        coords = f"{self.group}:{self.artifact}"
        if self.version:
            coords += f":{self.version}"
        return coords


class TemplateEntry(BaseModel):
    """One immutable file of a template pack."""
    model_config = ConfigDict(frozen=True)

    logical_path: str = Field(..., description="POSIX path relative to the pack root")
    kind: EntryKind
    content: bytes = Field(default=b"", repr=False)
    declared_variables: frozenset[str] = Field(default_factory=frozenset)
    merge_hints: tuple[DependencyHint, ...] = Field(default_factory=tuple)

    @property
    def name(self) -> str:
        return self.logical_path.rsplit("/", 1)[-1]

    @property
    def is_template(self) -> bool:
        return self.logical_path.endswith(".j2")

    def text(self) -> str:
        return self.content.decode("utf-8")


class _PrefixView:
    """Lazy, re-iterable view over the entries below a logical path prefix."""

    def __init__(self, entries: tuple[TemplateEntry, ...], prefix: str) -> None:
        self._entries = entries
        self._prefix = prefix.strip("/")

    def __iter__(self) -> Iterator[TemplateEntry]:
        if not self._prefix:
            yield from self._entries
            return
        head = self._prefix + "/"
        for entry in self._entries:
            if entry.logical_path == self._prefix or entry.logical_path.startswith(head):
                yield entry

    def __bool__(self) -> bool:
        return any(True for _ in self)


class TemplatePack(BaseModel):
    """Immutable snapshot of a template pack loaded from one source."""
    model_config = ConfigDict(frozen=True)

    pack_id: str
    source: SourceDescriptor
    cache_state: CacheState = CacheState.FRESH
    root: Path
    entries: tuple[TemplateEntry, ...] = Field(default_factory=tuple)

    def get(self, logical_path: str) -> Optional[TemplateEntry]:
        """Exact lookup by logical path."""
        for entry in self.entries:
            if entry.logical_path == logical_path:
                return entry
        return None

    def under(self, prefix: str) -> _PrefixView:
        return _PrefixView(self.entries, prefix)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class ProjectSettings(BaseModel):
    """Project-wide invariants loaded by the caller from the project config file."""
    name: str = Field(..., description="Project name, e.g. 'payment-service'")
    base_package: str = Field(..., description="Root Java package, e.g. 'com.acme.payments'")
    group: str = Field(default="", description="Maven group id; defaults to the base package")
    version: str = Field(default="0.0.1-SNAPSHOT")
    java_version: str = Field(default="21")
    versions: dict[str, str] = Field(
        default_factory=dict, description="Named library versions, e.g. {'springBoot': '3.3.4'}"
    )


class GenerationRequest(BaseModel):
    """Input of one generation operation."""
    kind: TargetKind
    architecture: str = Field(..., description="Architecture type, e.g. 'hexagonal-single'")
    framework: str = Field(default="spring")
    paradigm: str = Field(default="reactive")
    adapter_type: Optional[str] = Field(default=None, description="Adapter template set, e.g. 'redis'")
    adapter_name: Optional[str] = Field(default=None, description="Adapter instance name")
    context: dict[str, Any] = Field(default_factory=dict)
    project: ProjectSettings
    target_root: Path
    force: bool = Field(default=False, description="Overwrite existing user-owned (opaque) files")

    @model_validator(mode="after")
    def _adapter_requests_need_type(self) -> "GenerationRequest":
        if self.kind in (TargetKind.GENERATE_OUTPUT_ADAPTER, TargetKind.GENERATE_INPUT_ADAPTER):
            if not self.adapter_type:
                raise ValueError(f"{self.kind.value} requires adapter_type")
        return self

    def selector(self) -> str:
        parts = [self.architecture, self.framework, self.paradigm]
        if self.adapter_type:
            parts.append(self.adapter_type)
        return "/".join(parts)


# ---------------------------------------------------------------------------
# Merge & manifest
# ---------------------------------------------------------------------------

class Conflict(BaseModel):
    """An existing value that was preserved over a different generated value."""
    key: str
    old_value: Any = None
    new_value: Any = None
    path: Optional[str] = None
    template_path: Optional[str] = None


class UpgradeNote(BaseModel):
    """A dependency or plugin whose generated version differs from the existing one."""
    identity: str
    current_version: Optional[str] = None
    proposed_version: Optional[str] = None


class MergePlan(BaseModel):
    """What one merge did: insertions, conflicts, untouched keys and upgrade notes."""
    added: list[str] = Field(default_factory=list)
    conflicts: list[Conflict] = Field(default_factory=list)
    unchanged: list[str] = Field(default_factory=list)
    notes: list[UpgradeNote] = Field(default_factory=list)

    @property
    def is_noop(self) -> bool:
        return not self.added and not self.conflicts


class GeneratedArtifact(BaseModel):
    """One file written, merged or skipped by a generation request."""
    path: Path
    template_path: str = ""
    kind: ArtifactKind = ArtifactKind.OPAQUE_TEXT
    status: MergeStatus
    conflicts: list[Conflict] = Field(default_factory=list)
    notes: list[UpgradeNote] = Field(default_factory=list)
    error: Optional[str] = None


class GenerationResult(BaseModel):
    """Manifest of a completed generation request."""
    request_kind: TargetKind
    artifacts: list[GeneratedArtifact] = Field(default_factory=list)
    conflicts: list[Conflict] = Field(default_factory=list)
    directories: list[Path] = Field(default_factory=list)

    def with_status(self, *statuses: MergeStatus) -> list[GeneratedArtifact]:
        return [a for a in self.artifacts if a.status in statuses]

    @property
    def created(self) -> list[GeneratedArtifact]:
        return self.with_status(MergeStatus.CREATED)

    @property
    def failed(self) -> list[GeneratedArtifact]:
        return self.with_status(MergeStatus.FAILED)

    @property
    def ok(self) -> bool:
        """``True`` when every artifact was handled and nothing conflicted."""
        return not self.failed and not self.conflicts


class ValidationIssue(BaseModel):
    """A problem found in a template pack by ``validate``."""
    template_path: str
    problem: str


class ValidationReport(BaseModel):
    """Result of validating a whole template pack without writing anything."""
    errors: list[ValidationIssue] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def add(self, template_path: str, problem: str) -> None:
        self.errors.append(ValidationIssue(template_path=template_path, problem=problem))
