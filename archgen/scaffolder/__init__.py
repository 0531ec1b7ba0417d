"""archgen scaffolder -- resolves, renders and writes template sets.

Takes a ``GenerationRequest`` and a template pack and produces or updates a
clean-architecture project (hexagonal / onion, Spring / Quarkus, reactive /
imperative) on disk.

Quick usage::

    from archgen.scaffolder import ProjectGenerator

    generator = ProjectGenerator(pack, config)
    result = await generator.generate(
        GenerationRequest(
            kind=TargetKind.GENERATE_OUTPUT_ADAPTER,
            architecture="hexagonal-single",
            adapter_type="redis",
            context={"entityName": "User", "fields": ["name", "email"]},
            project=ProjectSettings(name="users", base_package="com.acme.users"),
            target_root=Path("users"),
        )
    )
"""

from archgen.scaffolder.generator import GenerationState, ProjectGenerator, generate
from archgen.scaffolder.resolver import Resolution, ResolvedTemplate, TemplateLevel, rank, resolve
from archgen.scaffolder.templates import TemplateRenderer

__all__ = [
    "GenerationState",
    "ProjectGenerator",
    "Resolution",
    "ResolvedTemplate",
    "TemplateLevel",
    "TemplateRenderer",
    "generate",
    "rank",
    "resolve",
]
