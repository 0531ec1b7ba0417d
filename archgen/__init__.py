"""archgen -- template resolution and code/config generation for clean-architecture projects.

Resolves the template set for an architecture / framework / paradigm /
adapter combination, renders it into a project tree and merges generated
config and build fragments into existing files without destroying user
edits.

Quick usage::

    import archgen

    result = await archgen.generate(request, source=SourceDescriptor(path=Path("templates")))
    archgen.utils.print_generation_result(result)
"""

# The scaffolder is imported first: the pack loader depends on its renderer.
from archgen.scaffolder import GenerationState, ProjectGenerator, TemplateRenderer, generate
from archgen.config import EngineConfig
from archgen.errors import GenerationError
from archgen.merger import StructuralMerger
from archgen.models import (
    CachePolicy,
    GenerationRequest,
    GenerationResult,
    MergeStatus,
    ProjectSettings,
    SourceDescriptor,
    TargetKind,
    TemplatePack,
    ValidationReport,
)
from archgen.pack import PackCache, TemplateRepository, load_pack_directory
from archgen.validation import validate

__version__ = "0.1.0"

__all__ = [
    "CachePolicy",
    "EngineConfig",
    "GenerationError",
    "GenerationRequest",
    "GenerationResult",
    "GenerationState",
    "MergeStatus",
    "PackCache",
    "ProjectGenerator",
    "ProjectSettings",
    "SourceDescriptor",
    "StructuralMerger",
    "TargetKind",
    "TemplatePack",
    "TemplateRenderer",
    "TemplateRepository",
    "ValidationReport",
    "generate",
    "load_pack_directory",
    "validate",
]
