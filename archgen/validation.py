"""Static checks over a whole template pack.

``validate`` finds the problems a generation request would only hit later:
missing or broken structure and metadata files, metadata that names missing
templates, templates that do not parse, and template variables nothing
provides.  It never writes anything.
"""

from __future__ import annotations

import logging
from typing import Optional

from archgen.errors import GenerationError, TemplateSyntaxFailure
from archgen.models import EntryKind, TemplatePack, ValidationReport
from archgen.pack.loader import ARCHITECTURES_DIR, FRAMEWORKS_DIR, METADATA_FILE, STRUCTURE_FILE
from archgen.scaffolder.context import ADAPTER_VARIABLES, DERIVED_VARIABLES, ENGINE_VARIABLES
from archgen.scaffolder.resolver import StructureDefinition, TemplateSetMetadata
from archgen.scaffolder.templates import TemplateRenderer

logger = logging.getLogger(__name__)


def set_directory(logical_path: str) -> Optional[str]:
    """The template-set directory a pack path belongs to, if any.

    Examples::

        architectures/hex/project/build.gradle.j2         -> architectures/hex/project
        frameworks/spring/reactive/adapters/output/redis/X -> frameworks/spring/reactive/adapters/output/redis
    """
    parts = logical_path.split("/")
    if parts[0] == ARCHITECTURES_DIR and len(parts) > 3:
        if parts[2] == "project":
            return "/".join(parts[:3])
        if parts[2] == "components" and len(parts) > 4:
            return "/".join(parts[:4])
    if parts[0] == FRAMEWORKS_DIR and len(parts) > 4:
        if parts[3] == "project":
            return "/".join(parts[:4])
        if parts[3] == "components" and len(parts) > 5:
            return "/".join(parts[:5])
        if parts[3] == "adapters" and len(parts) > 6:
            return "/".join(parts[:6])
    return None


def set_kind(directory: str) -> str:
    """What a template-set directory generates: ``project``, ``entity``, ``output-adapter``, ..."""
    parts = directory.split("/")
    if "adapters" in parts:
        return f"{parts[-2]}-adapter"
    return parts[-1]


def _allowed_variables(kind: str, variables: set[str]) -> set[str]:
    allowed = set(ENGINE_VARIABLES)
    if kind.endswith("-adapter"):
        allowed |= ADAPTER_VARIABLES
    for name in variables:
        allowed.add(name)
        allowed |= DERIVED_VARIABLES.get(name, frozenset())
    return allowed


def validate(pack: TemplatePack, renderer: Optional[TemplateRenderer] = None) -> ValidationReport:
    """Check every architecture, template set and template of *pack*."""
    renderer = renderer or TemplateRenderer()
    report = ValidationReport()

    # Structure definitions.
    architectures = {
        entry.logical_path.split("/")[1] for entry in pack.under(ARCHITECTURES_DIR) if entry.logical_path.count("/") >= 2
    }
    for architecture in sorted(architectures):
        path = f"{ARCHITECTURES_DIR}/{architecture}/{STRUCTURE_FILE}"
        entry = pack.get(path)
        if entry is None:
            report.add(path, "missing structure definition")
            continue
        try:
            StructureDefinition.from_entry(entry)
        except GenerationError as exc:
            report.add(path, str(exc))

    # Template sets and their metadata.
    sets: dict[str, list[str]] = {}
    for entry in pack.entries:
        directory = set_directory(entry.logical_path)
        if directory is not None:
            sets.setdefault(directory, []).append(entry.logical_path)

    # A framework or adapter set may rely on the metadata of a lower level
    # for the same kind, so variables are pooled per kind.
    metadata_by_set: dict[str, TemplateSetMetadata] = {}
    variables_by_kind: dict[str, set[str]] = {}
    for directory, paths in sorted(sets.items()):
        metadata_path = f"{directory}/{METADATA_FILE}"
        entry = pack.get(metadata_path)
        if entry is None:
            if "/adapters/" in directory:
                report.add(metadata_path, "adapter template set has no metadata.yml")
            continue
        try:
            metadata = TemplateSetMetadata.from_entry(entry)
        except GenerationError as exc:
            report.add(metadata_path, str(exc))
            continue
        metadata_by_set[directory] = metadata
        variables_by_kind.setdefault(set_kind(directory), set()).update(metadata.variables)
        for claim in metadata.templates:
            if f"{directory}/{claim}" not in paths:
                report.add(metadata_path, f"declares template '{claim}' which does not exist")

    for directory, metadata in metadata_by_set.items():
        kind = set_kind(directory)
        allowed = _allowed_variables(kind, variables_by_kind.get(kind, set()))
        metadata_path = f"{directory}/{METADATA_FILE}"
        for spec in metadata.templates.values():
            _check_inline(renderer, spec.target, metadata_path, allowed, report)
        if metadata.build_file:
            _check_inline(renderer, metadata.build_file, metadata_path, allowed, report)

    # Templates.
    for entry in pack.entries:
        if not entry.is_template or entry.kind == EntryKind.METADATA:
            continue
        try:
            declared = renderer.declared_variables(entry.text(), entry.logical_path)
        except TemplateSyntaxFailure as exc:
            report.add(entry.logical_path, str(exc))
            continue
        directory = set_directory(entry.logical_path)
        if directory is None:
            continue
        kind = set_kind(directory)
        allowed = _allowed_variables(kind, variables_by_kind.get(kind, set()))
        for name in sorted(declared - allowed - set(renderer.env.globals)):
            report.add(entry.logical_path, f"variable '{name}' is neither provided by the engine nor declared")

        if entry.kind == EntryKind.PROJECT_FILE:
            claim = entry.logical_path[len(directory) + 1:]
            _check_inline(renderer, claim, entry.logical_path, allowed, report)

    logger.info("Validated pack %s: %d problems", pack.pack_id, len(report.errors))
    return report


def _check_inline(
    renderer: TemplateRenderer, source: str, template_path: str, allowed: set[str], report: ValidationReport
) -> None:
    """Check an inline template such as a target path."""
    try:
        declared = renderer.declared_variables(source, template_path)
    except TemplateSyntaxFailure as exc:
        report.add(template_path, str(exc))
        return
    for name in sorted(declared - allowed - set(renderer.env.globals)):
        report.add(template_path, f"target '{source}' uses undeclared variable '{name}'")
