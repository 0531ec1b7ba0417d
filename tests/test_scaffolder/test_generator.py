"""Tests for the generation orchestrator (archgen.scaffolder.generator).

Covers:
- Project initialisation (files, directories, keep files)
- Component and adapter generation against the fixture pack
- Idempotence and opaque-file protection (force)
- Fail-fast rendering: nothing is written when any template fails
- Fragments against missing targets, merges and conflicts
- Per-artifact failure isolation
- Concurrent requests merging into the same build descriptor
- State transitions
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Callable

import pytest

from archgen.config import EngineConfig
from archgen.errors import MetadataError, RenderFailure, SourceUnavailable, TemplateNotFound, UndefinedVariable
from archgen.fs import LocalFileSystem
from archgen.models import (
    ArtifactKind,
    GenerationRequest,
    MergeStatus,
    SourceDescriptor,
    TargetKind,
    TemplatePack,
)
from archgen.pack import PackCache, TemplateRepository, load_pack_directory
from archgen.scaffolder.generator import KEEP_FILE, GenerationState, ProjectGenerator, generate


pytestmark = pytest.mark.unit

ADAPTER_DIR = "src/main/java/com/acme/users/infrastructure/adapter/out/redis"
USER_CONTEXT = {"entityName": "User", "fields": ["name", "email"]}


@pytest.fixture
def generator(pack: TemplatePack, engine_config: EngineConfig) -> ProjectGenerator:
    return ProjectGenerator(pack, engine_config)


@pytest.fixture
def redis_request(make_request: Callable[..., GenerationRequest]) -> GenerationRequest:
    return make_request(TargetKind.GENERATE_OUTPUT_ADAPTER, adapter_type="redis", context=USER_CONTEXT)


def _statuses(result) -> dict[str, MergeStatus]:
    return {artifact.path.name: artifact.status for artifact in result.artifacts}


def _files(root: Path) -> list[str]:
    return sorted(p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file())


# ---------------------------------------------------------------------------
# init-project
# ---------------------------------------------------------------------------


class TestInitProject:
    async def test_creates_project_files(self, generator: ProjectGenerator, make_request, project_dir: Path):
        result = await generator.generate(make_request(TargetKind.INIT_PROJECT))

        assert result.ok
        assert {a.status for a in result.artifacts} == {MergeStatus.CREATED}
        assert (project_dir / "README.md").read_text() == (
            "# User Service\n\nHexagonal architecture (single module) on spring reactive.\n"
        )
        assert (project_dir / "settings.gradle").read_text() == "rootProject.name = 'user-service'\n"
        application = project_dir / "src/main/java/com/acme/users/Application.java"
        assert application.read_text().startswith("package com.acme.users;\n")

    async def test_framework_build_file_overrides_architecture(
        self, generator: ProjectGenerator, make_request, project_dir: Path
    ):
        result = await generator.generate(make_request(TargetKind.INIT_PROJECT))
        build = project_dir / "build.gradle"
        text = build.read_text()
        assert "id 'org.springframework.boot' version '3.3.4'" in text
        assert "languageVersion = JavaLanguageVersion.of(21)" in text
        [artifact] = [a for a in result.artifacts if a.path == build]
        assert artifact.template_path == "frameworks/spring/reactive/project/build.gradle.j2"
        assert artifact.kind == ArtifactKind.STRUCTURED_BUILD_DESCRIPTOR

    async def test_project_versions_are_used(self, generator: ProjectGenerator, make_request, project_dir: Path,
                                             project_settings):
        settings = project_settings.model_copy(update={"versions": {"springBoot": "3.4.0"}})
        await generator.generate(make_request(TargetKind.INIT_PROJECT, project=settings))
        assert "version '3.4.0'" in (project_dir / "build.gradle").read_text()

    async def test_creates_directories_with_keep_files(
        self, generator: ProjectGenerator, make_request, project_dir: Path
    ):
        result = await generator.generate(make_request(TargetKind.INIT_PROJECT))
        model = project_dir / "src/main/java/com/acme/users/domain/model"
        assert model in result.directories
        assert (model / KEEP_FILE).is_file()
        assert (project_dir / "src/test/java/com/acme/users" / KEEP_FILE).is_file()

    async def test_second_run_is_identical(self, generator: ProjectGenerator, make_request, project_dir: Path):
        request = make_request(TargetKind.INIT_PROJECT)
        await generator.generate(request)
        before = {path: (project_dir / path).read_bytes() for path in _files(project_dir)}

        result = await generator.generate(request)

        assert {a.status for a in result.artifacts} == {MergeStatus.SKIPPED_IDENTICAL}
        assert {path: (project_dir / path).read_bytes() for path in _files(project_dir)} == before

    async def test_binary_project_file_is_copied_byte_for_byte(
        self, pack_copy: Path, engine_config: EngineConfig, make_request, project_dir: Path
    ):
        payload = b"PK\x03\x04\x14\x00\x08\x00\xff\xd8\x80\x00wrapper"
        jar = pack_copy / "architectures/hexagonal-single/project/gradle/wrapper/gradle-wrapper.jar"
        jar.parent.mkdir(parents=True)
        jar.write_bytes(payload)
        generator = ProjectGenerator(load_pack_directory(pack_copy), engine_config)
        request = make_request(TargetKind.INIT_PROJECT)

        first = await generator.generate(request)
        second = await generator.generate(request)

        target = project_dir / "gradle/wrapper/gradle-wrapper.jar"
        assert target.read_bytes() == payload
        assert _statuses(first)["gradle-wrapper.jar"] == MergeStatus.CREATED
        assert _statuses(second)["gradle-wrapper.jar"] == MergeStatus.SKIPPED_IDENTICAL
        assert first.ok

    async def test_changed_binary_file_is_kept_unless_forced(
        self, pack_copy: Path, engine_config: EngineConfig, make_request, project_dir: Path
    ):
        jar = pack_copy / "architectures/hexagonal-single/project/gradle/wrapper/gradle-wrapper.jar"
        jar.parent.mkdir(parents=True)
        jar.write_bytes(b"\x00\xffnew")
        target = project_dir / "gradle/wrapper/gradle-wrapper.jar"
        target.parent.mkdir(parents=True)
        target.write_bytes(b"\x00\xffold")
        generator = ProjectGenerator(load_pack_directory(pack_copy), engine_config)

        kept = await generator.generate(make_request(TargetKind.INIT_PROJECT))
        assert _statuses(kept)["gradle-wrapper.jar"] == MergeStatus.SKIPPED_EXISTING
        assert target.read_bytes() == b"\x00\xffold"

        forced = await generator.generate(make_request(TargetKind.INIT_PROJECT, force=True))
        assert _statuses(forced)["gradle-wrapper.jar"] == MergeStatus.OVERWRITTEN
        assert target.read_bytes() == b"\x00\xffnew"


# ---------------------------------------------------------------------------
# Components and adapters
# ---------------------------------------------------------------------------


class TestComponents:
    async def test_entity(self, generator: ProjectGenerator, make_request, project_dir: Path):
        request = make_request(
            TargetKind.GENERATE_ENTITY,
            context={"entityName": "order", "fields": ["id:uuid", "total:decimal"]},
        )
        result = await generator.generate(request)

        [artifact] = result.artifacts
        assert artifact.status == MergeStatus.CREATED
        assert artifact.path == project_dir / "src/main/java/com/acme/users/domain/model/Order.java"
        assert artifact.path.read_text() == (
            "package com.acme.users.domain.model;\n"
            "\n"
            "import java.math.BigDecimal;\n"
            "import java.util.UUID;\n"
            "\n"
            "public record Order(\n"
            "        UUID id,\n"
            "        BigDecimal total\n"
            ") {\n"
            "}\n"
        )

    async def test_reactive_use_case(self, generator: ProjectGenerator, make_request, project_dir: Path):
        request = make_request(
            TargetKind.GENERATE_USE_CASE,
            context={
                "useCaseName": "register_user",
                "methods": [{"name": "register", "returnType": "User", "parameters": "String email"}],
            },
        )
        result = await generator.generate(request)
        text = result.artifacts[0].path.read_text()
        assert result.artifacts[0].path.name == "RegisterUserUseCase.java"
        assert "    Mono<User> register(String email);\n" in text

    async def test_redis_adapter_into_fresh_project(
        self, generator: ProjectGenerator, redis_request: GenerationRequest, project_dir: Path
    ):
        result = await generator.generate(redis_request)

        assert _statuses(result) == {
            "UserRedisAdapter.java": MergeStatus.CREATED,
            "UserData.java": MergeStatus.CREATED,
            "UserRedisMapper.java": MergeStatus.CREATED,
            "application.yml": MergeStatus.SKIPPED_MISSING_TARGET,
            "build.gradle": MergeStatus.SKIPPED_MISSING_TARGET,
        }
        assert len(result.created) == 3
        assert _files(project_dir) == [
            f"{ADAPTER_DIR}/UserData.java",
            f"{ADAPTER_DIR}/UserRedisAdapter.java",
            f"{ADAPTER_DIR}/UserRedisMapper.java",
        ]

    async def test_field_list_separators(
        self, generator: ProjectGenerator, redis_request: GenerationRequest, project_dir: Path
    ):
        await generator.generate(redis_request)
        text = (project_dir / ADAPTER_DIR / "UserData.java").read_text()
        assert "        String name,\n        String email\n) {\n" in text
        assert text.index("String name") < text.index("String email")
        mapper = (project_dir / ADAPTER_DIR / "UserRedisMapper.java").read_text()
        assert "                user.name(),\n                user.email()\n        );" in mapper

    async def test_input_adapter(self, generator: ProjectGenerator, make_request, project_dir: Path):
        request = make_request(
            TargetKind.GENERATE_INPUT_ADAPTER,
            adapter_type="rest",
            context={"entityName": "User", "endpoints": ["GET /users/{id}", {"method": "post", "path": "/users"}]},
        )
        result = await generator.generate(request)
        controller = project_dir / "src/main/java/com/acme/users/infrastructure/adapter/in/rest/UserController.java"
        text = controller.read_text()
        assert '@RequestMapping("/users")' in text
        assert '    @GetMapping("/users/{id}")\n    public Mono<String> getUsersId(@PathVariable String id) {' in text
        assert "    public Mono<String> postUsers() {" in text
        assert _statuses(result)["build.gradle"] == MergeStatus.SKIPPED_MISSING_TARGET

    async def test_adapter_after_init_merges_config_and_build(
        self, generator: ProjectGenerator, make_request, redis_request, project_dir: Path
    ):
        await generator.generate(make_request(TargetKind.INIT_PROJECT))
        result = await generator.generate(redis_request)

        statuses = _statuses(result)
        assert statuses["application.yml"] == MergeStatus.MERGED
        assert statuses["build.gradle"] == MergeStatus.MERGED
        assert result.ok

        application = (project_dir / "src/main/resources/application.yml").read_text()
        assert application == (
            "spring:\n"
            "  application:\n"
            "    name: user-service\n"
            "  data:\n"
            "    redis:\n"
            "      host: localhost\n"
            "      port: 6379\n"
            "server:\n"
            "  port: 8080\n"
        )
        build = (project_dir / "build.gradle").read_text()
        assert (
            "    implementation 'org.springframework.boot:spring-boot-starter-webflux'\n"
            "    implementation 'org.springframework.boot:spring-boot-starter-data-redis-reactive'\n"
        ) in build

        again = await generator.generate(redis_request)
        assert {a.status for a in again.artifacts} == {MergeStatus.SKIPPED_IDENTICAL}


# ---------------------------------------------------------------------------
# Existing files
# ---------------------------------------------------------------------------


class TestExistingFiles:
    async def test_user_edited_source_is_kept(
        self, generator: ProjectGenerator, redis_request: GenerationRequest, project_dir: Path
    ):
        adapter = project_dir / ADAPTER_DIR / "UserRedisAdapter.java"
        adapter.parent.mkdir(parents=True)
        adapter.write_text("// hand written\n")

        result = await generator.generate(redis_request)

        assert _statuses(result)["UserRedisAdapter.java"] == MergeStatus.SKIPPED_EXISTING
        assert adapter.read_text() == "// hand written\n"

    async def test_force_overwrites_opaque_files(
        self, generator: ProjectGenerator, make_request, project_dir: Path
    ):
        adapter = project_dir / ADAPTER_DIR / "UserRedisAdapter.java"
        adapter.parent.mkdir(parents=True)
        adapter.write_text("// hand written\n")

        request = make_request(
            TargetKind.GENERATE_OUTPUT_ADAPTER, adapter_type="redis", context=USER_CONTEXT, force=True
        )
        result = await generator.generate(request)

        assert _statuses(result)["UserRedisAdapter.java"] == MergeStatus.OVERWRITTEN
        assert "class UserRedisAdapter" in adapter.read_text()

    async def test_config_conflict_keeps_existing_value(
        self, generator: ProjectGenerator, redis_request: GenerationRequest, project_dir: Path
    ):
        config = project_dir / "src/main/resources/application.yml"
        config.parent.mkdir(parents=True)
        config.write_text("spring:\n  data:\n    redis:\n      host: redis.internal\n")

        result = await generator.generate(redis_request)

        [artifact] = [a for a in result.artifacts if a.path == config]
        assert artifact.status == MergeStatus.MERGED_WITH_CONFLICTS
        assert [c.key for c in result.conflicts] == ["spring.data.redis.host"]
        assert result.conflicts[0].old_value == "redis.internal"
        assert config.read_text() == (
            "spring:\n  data:\n    redis:\n      host: redis.internal\n      port: 6379\n"
        )
        assert not result.ok


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestFailFast:
    async def test_missing_declared_variable_writes_nothing(
        self, generator: ProjectGenerator, make_request, project_dir: Path
    ):
        request = make_request(TargetKind.GENERATE_OUTPUT_ADAPTER, adapter_type="redis", context={"entityName": "User"})
        with pytest.raises(UndefinedVariable) as exc_info:
            await generator.generate(request)
        assert exc_info.value.name == "fields"
        assert exc_info.value.template_path.endswith("adapters/output/redis/metadata.yml")
        assert _files(project_dir) == []

    async def test_undefined_variable_in_later_template_writes_nothing(
        self, pack_copy: Path, write_template, engine_config: EngineConfig, redis_request, project_dir: Path
    ):
        write_template(
            pack_copy,
            "frameworks/spring/reactive/adapters/output/redis/Mapper.java.j2",
            "class ${entityName}Mapper { ${ghost} }\n",
        )
        generator = ProjectGenerator(load_pack_directory(pack_copy), engine_config)
        with pytest.raises(UndefinedVariable) as exc_info:
            await generator.generate(redis_request)
        assert exc_info.value.name == "ghost"
        assert exc_info.value.template_path == "frameworks/spring/reactive/adapters/output/redis/Mapper.java.j2"
        assert _files(project_dir) == []

    async def test_missing_template_set(self, generator: ProjectGenerator, make_request, project_dir: Path):
        with pytest.raises(TemplateNotFound):
            await generator.generate(
                make_request(TargetKind.GENERATE_OUTPUT_ADAPTER, adapter_type="kafka", context=USER_CONTEXT)
            )
        assert _files(project_dir) == []

    async def test_target_outside_project_root(
        self, pack_copy: Path, write_template, engine_config: EngineConfig, make_request
    ):
        write_template(
            pack_copy,
            "architectures/hexagonal-single/components/entity/metadata.yml",
            "variables: [entityName]\ntemplates:\n  Entity.java.j2:\n    target: \"../${entityName}.java\"\n",
        )
        generator = ProjectGenerator(load_pack_directory(pack_copy), engine_config)
        request = make_request(TargetKind.GENERATE_ENTITY, context={"entityName": "User", "fields": []})
        with pytest.raises(MetadataError):
            await generator.generate(request)

    async def test_no_pack_configured(self, engine_config: EngineConfig, redis_request):
        with pytest.raises(SourceUnavailable):
            await ProjectGenerator(None, engine_config).generate(redis_request)

    async def test_undecodable_structured_file_fails_with_template_path(
        self, pack_copy: Path, engine_config: EngineConfig, make_request, project_dir: Path
    ):
        broken = "architectures/hexagonal-single/project/src/main/resources/bootstrap.yml"
        (pack_copy / broken).parent.mkdir(parents=True)
        (pack_copy / broken).write_bytes(b"spring:\n  name: \xff\xfe\n")
        seen: list[GenerationState] = []
        generator = ProjectGenerator(
            load_pack_directory(pack_copy), engine_config, observer=lambda request, state: seen.append(state)
        )

        with pytest.raises(RenderFailure) as exc_info:
            await generator.generate(make_request(TargetKind.INIT_PROJECT))

        assert exc_info.value.template_path == broken
        assert seen[-1] == GenerationState.FAILED
        assert _files(project_dir) == []


class TestFailureIsolation:
    async def test_write_failure_is_reported_per_artifact(
        self, pack: TemplatePack, engine_config: EngineConfig, redis_request, project_dir: Path
    ):
        class FailingFileSystem(LocalFileSystem):
            def write_text(self, path: Path, content: str) -> None:
                if path.name.endswith("Mapper.java"):
                    raise PermissionError(13, "Permission denied")
                super().write_text(path, content)

        generator = ProjectGenerator(pack, engine_config, fs=FailingFileSystem())
        result = await generator.generate(redis_request)

        statuses = _statuses(result)
        assert statuses["UserRedisMapper.java"] == MergeStatus.FAILED
        assert statuses["UserRedisAdapter.java"] == MergeStatus.CREATED
        assert statuses["UserData.java"] == MergeStatus.CREATED
        [failed] = result.failed
        assert "Permission denied" in failed.error
        assert not result.ok

    async def test_unparsable_config_fails_only_that_artifact(
        self, generator: ProjectGenerator, redis_request, project_dir: Path
    ):
        config = project_dir / "src/main/resources/application.yml"
        config.parent.mkdir(parents=True)
        config.write_text("defaults: &d\n  a: 1\n")

        result = await generator.generate(redis_request)

        statuses = _statuses(result)
        assert statuses["application.yml"] == MergeStatus.FAILED
        assert statuses["UserRedisAdapter.java"] == MergeStatus.CREATED
        assert config.read_text() == "defaults: &d\n  a: 1\n"

    async def test_directory_failure_is_reported_and_other_files_written(
        self, generator: ProjectGenerator, make_request, project_dir: Path
    ):
        (project_dir / "src").write_text("not a directory\n")

        result = await generator.generate(make_request(TargetKind.INIT_PROJECT))

        statuses = _statuses(result)
        assert statuses["build.gradle"] == MergeStatus.CREATED
        assert statuses["settings.gradle"] == MergeStatus.CREATED
        assert statuses["README.md"] == MergeStatus.CREATED
        assert result.directories == []
        failed_paths = {artifact.path for artifact in result.failed}
        assert project_dir / "src/main/java/com/acme/users/domain/model" in failed_paths
        assert project_dir / "src/test/java/com/acme/users" in failed_paths
        assert all(artifact.error for artifact in result.failed)
        assert not result.ok
        assert (project_dir / "src").read_text() == "not a directory\n"


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


class TestConcurrency:
    async def test_concurrent_adapters_merge_build_file_once(
        self, generator: ProjectGenerator, make_request, project_dir: Path
    ):
        await generator.generate(make_request(TargetKind.INIT_PROJECT))
        requests = [
            make_request(TargetKind.GENERATE_OUTPUT_ADAPTER, adapter_type="redis", context=USER_CONTEXT),
            make_request(
                TargetKind.GENERATE_OUTPUT_ADAPTER,
                adapter_type="redis",
                adapter_name="order-cache",
                context={"entityName": "Order", "fields": ["total:decimal"]},
            ),
        ]
        results = await asyncio.gather(*(generator.generate(r) for r in requests))

        build_statuses = sorted(_statuses(r)["build.gradle"].value for r in results)
        assert build_statuses == sorted([MergeStatus.MERGED.value, MergeStatus.SKIPPED_IDENTICAL.value])
        build = (project_dir / "build.gradle").read_text()
        assert build.count("spring-boot-starter-data-redis-reactive") == 1
        assert (project_dir / ADAPTER_DIR.replace("/redis", "/order-cache") / "OrderOrderCacheAdapter.java").is_file()


# ---------------------------------------------------------------------------
# State & entry points
# ---------------------------------------------------------------------------


class TestStateAndEntryPoints:
    async def test_state_transitions(self, pack: TemplatePack, engine_config: EngineConfig, redis_request):
        seen: list[GenerationState] = []
        generator = ProjectGenerator(pack, engine_config, observer=lambda request, state: seen.append(state))
        await generator.generate(redis_request)
        assert seen == [
            GenerationState.RESOLVING,
            GenerationState.RENDERING,
            GenerationState.WRITING,
            GenerationState.COMPLETED,
        ]

    async def test_failed_transition(self, pack: TemplatePack, engine_config: EngineConfig, make_request):
        seen: list[GenerationState] = []
        generator = ProjectGenerator(pack, engine_config, observer=lambda request, state: seen.append(state))
        with pytest.raises(UndefinedVariable):
            await generator.generate(make_request(TargetKind.GENERATE_ENTITY))
        assert seen == [GenerationState.RESOLVING, GenerationState.RENDERING, GenerationState.FAILED]

    async def test_repository_backed_generator(
        self, engine_config: EngineConfig, fixture_pack_dir: Path, redis_request
    ):
        repository = TemplateRepository(PackCache(engine_config.cache_dir), engine_config)
        generator = ProjectGenerator(repository, engine_config, source=SourceDescriptor(path=fixture_pack_dir))
        result = await generator.generate(redis_request)
        assert len(result.created) == 3

    async def test_module_level_generate(self, engine_config: EngineConfig, fixture_pack_dir: Path, redis_request):
        result = await generate(redis_request, source=SourceDescriptor(path=fixture_pack_dir), config=engine_config)
        assert len(result.created) == 3

    async def test_lock_files_stay_outside_project(
        self, generator: ProjectGenerator, redis_request, project_dir: Path, engine_config: EngineConfig
    ):
        await generator.generate(redis_request)
        assert not any(name.endswith(".lock") for name in _files(project_dir))
        assert any(engine_config.lock_dir.iterdir())
