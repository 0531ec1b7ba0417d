"""Generation orchestrator.

Takes a ``GenerationRequest``, resolves its template set, renders every
template (and its target path) up front, then creates, merges or skips each
artifact under a path-scoped lock.  A request either fails before anything is
written, or runs to completion with per-artifact outcomes in the returned
``GenerationResult``.

Quick usage::

    from archgen.scaffolder import ProjectGenerator

    generator = ProjectGenerator(pack, config)
    result = await generator.generate(request)
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Any, Callable, Optional, Union

from archgen.config import EngineConfig
from archgen.errors import (
    GenerationError,
    MetadataError,
    RenderFailure,
    SourceUnavailable,
    UndefinedVariable,
    WriteFailure,
)
from archgen.fs import FileSystem, LocalFileSystem
from archgen.locks import path_lock
from archgen.merger import StructuralMerger, infer_artifact_kind
from archgen.models import (
    ArtifactKind,
    CachePolicy,
    EntryKind,
    GeneratedArtifact,
    GenerationRequest,
    GenerationResult,
    MergeStatus,
    SourceDescriptor,
    TargetKind,
    TemplatePack,
)
from archgen.pack import PackCache, TemplateRepository
from archgen.scaffolder.context import build_context, entry_context
from archgen.scaffolder.resolver import Resolution, ResolvedTemplate, resolve
from archgen.scaffolder.templates import TemplateRenderer
from archgen.utils import format_duration

logger = logging.getLogger(__name__)

KEEP_FILE = ".gitkeep"


class GenerationState(str, Enum):
    """Lifecycle of one generation request."""

    RESOLVING = "resolving"
    RENDERING = "rendering"
    WRITING = "writing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class RenderedArtifact:
    """One rendered output, not yet written."""

    path: Path
    relative: str
    template_path: str
    kind: ArtifactKind
    content: Union[str, bytes]
    fragment: bool = False


StateObserver = Callable[[GenerationRequest, GenerationState], None]


# ---------------------------------------------------------------------------
# ProjectGenerator
# ---------------------------------------------------------------------------


class ProjectGenerator:
    """Runs generation requests against a template pack.

    Args:
        templates: A loaded ``TemplatePack`` or a ``TemplateRepository`` to
            resolve ``source`` with on every request.
        config: Engine configuration (lock directory and timeout).
        source: Pack source used with a repository; defaults to
            ``config.default_source``.
        cache_policy: Cache policy used with a repository.
        fs: Filesystem implementation; ``LocalFileSystem`` by default.
        merger: Structural merger.
        renderer: Template renderer.
        observer: Called with every state transition.
    """

    def __init__(
        self,
        templates: Union[TemplatePack, TemplateRepository, None] = None,
        config: Optional[EngineConfig] = None,
        *,
        source: Optional[SourceDescriptor] = None,
        cache_policy: CachePolicy = CachePolicy.USE_CACHE,
        fs: Optional[FileSystem] = None,
        merger: Optional[StructuralMerger] = None,
        renderer: Optional[TemplateRenderer] = None,
        observer: Optional[StateObserver] = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.pack = templates if isinstance(templates, TemplatePack) else None
        self.repository = templates if isinstance(templates, TemplateRepository) else None
        self.source = source or self.config.default_source
        self.cache_policy = cache_policy
        self.fs: FileSystem = fs or LocalFileSystem()
        self.merger = merger or StructuralMerger()
        self.renderer = renderer or TemplateRenderer()
        self.observer = observer

    # -- Public API --------------------------------------------------------

    async def generate(self, request: GenerationRequest, pack: Optional[TemplatePack] = None) -> GenerationResult:
        """Run one generation request.

        Args:
            request: What to generate and where.
            pack: Pack to use for this call instead of the configured one.

        Returns:
            The manifest of every artifact handled.

        Raises:
            GenerationError: Any resolution or render error (``TemplateNotFound``,
                ``UnsupportedSelector``, ``UndefinedVariable``, ``RenderFailure``, ...).
                Nothing has been written when this is raised.
        """
        started = time.monotonic()
        self._transition(request, GenerationState.RESOLVING)
        try:
            pack = pack or await self._pack()
            resolution = resolve(request, pack)

            self._transition(request, GenerationState.RENDERING)
            context = build_context(request, resolution.structure, self.renderer)
            outputs = self._render_all(request, resolution, context)
            directories = self._render_directories(request, resolution, context)
        except GenerationError:
            self._transition(request, GenerationState.FAILED)
            raise

        self._transition(request, GenerationState.WRITING)
        result = GenerationResult(request_kind=request.kind)
        if directories:
            result.directories, failed = await asyncio.to_thread(
                self._create_directories, request.target_root, directories, resolution.structure_entry.logical_path
            )
            result.artifacts.extend(failed)
        for output in outputs:
            artifact = await asyncio.to_thread(self._apply, request, output)
            result.artifacts.append(artifact)
            result.conflicts.extend(artifact.conflicts)

        self._transition(request, GenerationState.COMPLETED)
        logger.info(
            "%s %s: %d artifacts, %d conflicts, %d failed in %s",
            request.kind.value,
            request.selector(),
            len(result.artifacts),
            len(result.conflicts),
            len(result.failed),
            format_duration(time.monotonic() - started),
        )
        return result

    # -- Resolution --------------------------------------------------------

    async def _pack(self) -> TemplatePack:
        if self.pack is not None:
            return self.pack
        if self.repository is None or self.source is None:
            raise SourceUnavailable("<unset>", "no template pack or template source configured")
        return await self.repository.resolve_pack(self.source, self.cache_policy)

    def _transition(self, request: GenerationRequest, state: GenerationState) -> None:
        logger.debug("%s %s -> %s", request.kind.value, request.selector(), state.value)
        if self.observer is not None:
            self.observer(request, state)

    # -- Rendering ---------------------------------------------------------

    def _render_all(
        self, request: GenerationRequest, resolution: Resolution, context: dict[str, Any]
    ) -> list[RenderedArtifact]:
        """Render every template and target path; raises before any write."""
        metadata_path = resolution.metadata_path or resolution.structure_entry.logical_path
        for name in resolution.metadata.variables:
            if name not in context:
                raise UndefinedVariable(name, metadata_path)

        outputs: list[RenderedArtifact] = []
        for template in resolution.templates:
            try:
                outputs.append(self._render_one(request, resolution, template, context))
            except GenerationError:
                raise
            except Exception as exc:
                raise RenderFailure(template.template_path, str(exc)) from exc

        if resolution.metadata.dependencies:
            outputs.append(self._render_dependencies(request, resolution, context, metadata_path))
        return outputs

    def _render_one(
        self,
        request: GenerationRequest,
        resolution: Resolution,
        template: ResolvedTemplate,
        context: dict[str, Any],
    ) -> RenderedArtifact:
        entry = template.entry
        ctx = entry_context(context, entry.logical_path)
        spec = resolution.spec_for(template.claim)

        if spec is not None:
            raw_target = spec.target
        elif entry.kind == EntryKind.PROJECT_FILE:
            raw_target = template.claim[:-3] if entry.is_template else template.claim
        else:
            raise MetadataError(entry.logical_path, f"no target declared for '{template.claim}'")

        relative = self._relative_target(
            self.renderer.render_string(raw_target, ctx, entry.logical_path), entry.logical_path
        )
        kind = spec.artifact if spec is not None and spec.artifact else infer_artifact_kind(relative)
        content: Union[str, bytes]
        if entry.is_template:
            content = self.renderer.render(entry, ctx)
        elif kind == ArtifactKind.OPAQUE_TEXT:
            # Verbatim files (wrapper jars, scripts) are copied byte for byte.
            content = entry.content
        else:
            content = entry.text()
        return RenderedArtifact(
            path=request.target_root / relative,
            relative=relative,
            template_path=entry.logical_path,
            kind=kind,
            content=content,
            fragment=bool(spec and spec.fragment),
        )

    def _render_dependencies(
        self,
        request: GenerationRequest,
        resolution: Resolution,
        context: dict[str, Any],
        metadata_path: str,
    ) -> RenderedArtifact:
        """Turn the set's dependency hints into a build descriptor fragment."""
        ctx = entry_context(context, metadata_path)
        raw_target = resolution.metadata.build_file or context["paths"].get("buildFile", "build.gradle")
        relative = self._relative_target(self.renderer.render_string(raw_target, ctx, metadata_path), metadata_path)

        lines = ["dependencies {"]
        for hint in resolution.metadata.dependencies:
            notation = self.renderer.render_string(hint.notation(), ctx, metadata_path)
            scope = self.renderer.render_string(hint.scope, ctx, metadata_path)
            lines.append(f"    {scope} '{notation}'")
        lines.append("}")
        return RenderedArtifact(
            path=request.target_root / relative,
            relative=relative,
            template_path=metadata_path,
            kind=ArtifactKind.STRUCTURED_BUILD_DESCRIPTOR,
            content="\n".join(lines) + "\n",
            fragment=True,
        )

    def _render_directories(
        self, request: GenerationRequest, resolution: Resolution, context: dict[str, Any]
    ) -> list[str]:
        if request.kind != TargetKind.INIT_PROJECT:
            return []
        structure_path = resolution.structure_entry.logical_path
        return [
            self._relative_target(self.renderer.render_string(raw, context, structure_path), structure_path)
            for raw in resolution.structure.directories
        ]

    @staticmethod
    def _relative_target(rendered: str, template_path: str) -> str:
        """Normalise a rendered target path; it must stay inside the project root."""
        target = PurePosixPath(rendered.strip().replace("\\", "/"))
        if not rendered.strip() or target.is_absolute() or ".." in target.parts:
            raise MetadataError(template_path, f"target path '{rendered}' is outside the project root")
        return target.as_posix()

    # -- Writing -----------------------------------------------------------

    def _create_directories(
        self, root: Path, directories: list[str], structure_path: str
    ) -> tuple[list[Path], list[GeneratedArtifact]]:
        """Create the architecture's directories, with a keep file in empty ones.

        A directory that cannot be created is reported as a failed artifact;
        the remaining directories and artifacts are still handled.
        """
        created: list[Path] = []
        failed: list[GeneratedArtifact] = []
        for relative in directories:
            directory = root / relative
            try:
                self.fs.mkdir(directory)
                if self.fs.is_empty_dir(directory):
                    self.fs.write_text(directory / KEEP_FILE, "")
            except OSError as exc:
                failure = WriteFailure(relative, exc.strerror or str(exc))
                logger.error("%s", failure)
                failed.append(
                    GeneratedArtifact(
                        path=directory, template_path=structure_path, status=MergeStatus.FAILED, error=str(failure)
                    )
                )
                continue
            created.append(directory)
        return created, failed

    def _apply(self, request: GenerationRequest, output: RenderedArtifact) -> GeneratedArtifact:
        """Create, merge or skip one artifact under its path lock.

        Merge and write failures are captured in the returned artifact.
        """
        try:
            with path_lock(self.config.lock_dir, output.path, self.config.lock_timeout):
                return self._write(request, output)
        except GenerationError as exc:
            logger.error("%s", exc)
            return self._artifact(output, MergeStatus.FAILED, error=str(exc))
        except UnicodeDecodeError as exc:
            failure = WriteFailure(output.relative, f"existing file is not UTF-8 text ({exc.reason})")
            logger.error("%s", failure)
            return self._artifact(output, MergeStatus.FAILED, error=str(failure))
        except OSError as exc:
            failure = WriteFailure(output.relative, exc.strerror or str(exc))
            logger.error("%s", failure)
            return self._artifact(output, MergeStatus.FAILED, error=str(failure))

    def _write(self, request: GenerationRequest, output: RenderedArtifact) -> GeneratedArtifact:
        fs = self.fs
        if not fs.exists(output.path):
            if output.fragment:
                logger.debug("Skipping fragment %s: target does not exist", output.relative)
                return self._artifact(output, MergeStatus.SKIPPED_MISSING_TARGET)
            self._store(output.path, output.content)
            return self._artifact(output, MergeStatus.CREATED)

        if output.kind == ArtifactKind.OPAQUE_TEXT:
            data = output.content if isinstance(output.content, bytes) else output.content.encode("utf-8")
            if fs.read_bytes(output.path) == data:
                return self._artifact(output, MergeStatus.SKIPPED_IDENTICAL)
            if request.force:
                self._store(output.path, output.content)
                return self._artifact(output, MergeStatus.OVERWRITTEN)
            return self._artifact(output, MergeStatus.SKIPPED_EXISTING)

        existing = fs.read_text(output.path)
        if existing == output.content:
            return self._artifact(output, MergeStatus.SKIPPED_IDENTICAL)

        outcome = self.merger.merge(
            existing, output.content, output.kind, path=output.relative, template_path=output.template_path
        )
        plan = outcome.plan
        if plan.added:
            fs.write_text(output.path, outcome.text)
            status = MergeStatus.MERGED_WITH_CONFLICTS if plan.conflicts else MergeStatus.MERGED
        elif plan.conflicts:
            status = MergeStatus.MERGED_WITH_CONFLICTS
        else:
            status = MergeStatus.SKIPPED_IDENTICAL
        return self._artifact(output, status, conflicts=plan.conflicts, notes=plan.notes)

    def _store(self, path: Path, content: Union[str, bytes]) -> None:
        if isinstance(content, bytes):
            self.fs.write_bytes(path, content)
        else:
            self.fs.write_text(path, content)

    @staticmethod
    def _artifact(output: RenderedArtifact, status: MergeStatus, **extra: Any) -> GeneratedArtifact:
        return GeneratedArtifact(
            path=output.path,
            template_path=output.template_path,
            kind=output.kind,
            status=status,
            **extra,
        )


# ---------------------------------------------------------------------------
# Module-level entry point
# ---------------------------------------------------------------------------


async def generate(
    request: GenerationRequest,
    *,
    source: Optional[SourceDescriptor] = None,
    pack: Optional[TemplatePack] = None,
    config: Optional[EngineConfig] = None,
    cache_policy: CachePolicy = CachePolicy.USE_CACHE,
) -> GenerationResult:
    """Run *request* with a one-off generator.

    The pack is taken from *pack*, else resolved from *source*, else from
    ``config.default_source`` (``EngineConfig.from_env()`` when no config is
    given).
    """
    config = config or EngineConfig.from_env()
    repository = TemplateRepository(PackCache(config.cache_dir), config)
    generator = ProjectGenerator(repository, config, source=source, cache_policy=cache_policy)
    return await generator.generate(request, pack=pack)
