"""Unit tests for the shared models and the error taxonomy.

Covers:
- SourceDescriptor validation and describe()
- DependencyHint identity / notation
- TemplatePack lookup and lazy prefix views
- GenerationRequest selector and adapter validation
- GenerationResult / ValidationReport helpers
- GenerationError.to_dict and error messages
"""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from archgen.errors import (
    DocumentParseError,
    GenerationError,
    LockTimeout,
    SourceUnavailable,
    TemplateNotFound,
    TemplateSyntaxFailure,
    UndefinedVariable,
    UnsupportedSelector,
)
from archgen.models import (
    Conflict,
    DependencyHint,
    EntryKind,
    GeneratedArtifact,
    GenerationRequest,
    GenerationResult,
    MergePlan,
    MergeStatus,
    ProjectSettings,
    SourceDescriptor,
    TargetKind,
    TemplateEntry,
    TemplatePack,
    ValidationReport,
)


pytestmark = pytest.mark.unit


def _pack(*paths: str) -> TemplatePack:
    entries = tuple(TemplateEntry(logical_path=p, kind=EntryKind.COMPONENT_FILE) for p in paths)
    return TemplatePack(
        pack_id="test", source=SourceDescriptor(path=Path("/packs")), root=Path("/packs"), entries=entries
    )


# ---------------------------------------------------------------------------
# Pack models
# ---------------------------------------------------------------------------


class TestSourceDescriptor:
    def test_local(self):
        source = SourceDescriptor(path=Path("/templates"))
        assert source.is_local
        assert source.describe() == "/templates"

    def test_remote(self):
        source = SourceDescriptor(url="https://github.com/acme/templates", ref="v1")
        assert not source.is_local
        assert source.describe() == "https://github.com/acme/templates@v1"

    def test_requires_exactly_one_location(self):
        with pytest.raises(ValidationError):
            SourceDescriptor()
        with pytest.raises(ValidationError):
            SourceDescriptor(path=Path("/t"), url="https://example.com/t")


class TestDependencyHint:
    def test_identity_and_notation(self):
        hint = DependencyHint(group="org.redis", artifact="client", version="1.0")
        assert hint.identity == "org.redis:client"
        assert hint.notation() == "org.redis:client:1.0"
        assert hint.scope == "implementation"

    def test_notation_without_version(self):
        assert DependencyHint(group="g", artifact="a").notation() == "g:a"


class TestTemplatePack:
    def test_get(self):
        pack = _pack("architectures/a/structure.yml", "frameworks/s/r/project/x.j2")
        assert pack.get("frameworks/s/r/project/x.j2") is not None
        assert pack.get("frameworks/s/r/project") is None

    def test_under_is_reiterable_and_prefix_exact(self):
        pack = _pack("frameworks/s/r/a.j2", "frameworks/s/r/b.j2", "frameworks/s/rx/c.j2")
        view = pack.under("frameworks/s/r")
        assert [e.logical_path for e in view] == ["frameworks/s/r/a.j2", "frameworks/s/r/b.j2"]
        assert len(list(view)) == 2
        assert bool(view)
        assert not pack.under("frameworks/q")

    def test_under_empty_prefix_lists_all(self):
        pack = _pack("a/b", "c/d")
        assert len(list(pack.under(""))) == 2

    def test_entries_are_frozen(self):
        entry = TemplateEntry(logical_path="x.j2", kind=EntryKind.COMPONENT_FILE, content=b"hi")
        assert entry.text() == "hi"
        assert entry.is_template
        with pytest.raises(ValidationError):
            entry.logical_path = "y"  # type: ignore[misc]


# ---------------------------------------------------------------------------
# Requests & results
# ---------------------------------------------------------------------------


class TestGenerationRequest:
    def _settings(self) -> ProjectSettings:
        return ProjectSettings(name="svc", base_package="com.acme")

    def test_selector(self):
        request = GenerationRequest(
            kind=TargetKind.GENERATE_OUTPUT_ADAPTER,
            architecture="hexagonal-single",
            adapter_type="redis",
            project=self._settings(),
            target_root=Path("out"),
        )
        assert request.selector() == "hexagonal-single/spring/reactive/redis"

    def test_adapter_request_requires_type(self):
        with pytest.raises(ValidationError):
            GenerationRequest(
                kind=TargetKind.GENERATE_INPUT_ADAPTER,
                architecture="hexagonal-single",
                project=self._settings(),
                target_root=Path("out"),
            )


class TestResults:
    def test_generation_result_helpers(self):
        result = GenerationResult(
            request_kind=TargetKind.GENERATE_ENTITY,
            artifacts=[
                GeneratedArtifact(path=Path("a"), status=MergeStatus.CREATED),
                GeneratedArtifact(path=Path("b"), status=MergeStatus.FAILED, error="x"),
            ],
        )
        assert [a.path for a in result.created] == [Path("a")]
        assert [a.path for a in result.failed] == [Path("b")]
        assert not result.ok

    def test_conflicts_make_result_not_ok(self):
        result = GenerationResult(request_kind=TargetKind.GENERATE_ENTITY, conflicts=[Conflict(key="k")])
        assert not result.ok

    def test_merge_plan_noop(self):
        assert MergePlan(unchanged=["a"]).is_noop
        assert not MergePlan(added=["a"]).is_noop

    def test_validation_report(self):
        report = ValidationReport()
        assert report.ok
        report.add("x.j2", "broken")
        assert not report.ok
        assert report.errors[0].template_path == "x.j2"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class TestErrors:
    def test_all_errors_share_base(self):
        for exc in (
            SourceUnavailable("s"),
            TemplateNotFound("t"),
            UnsupportedSelector("a/b/c"),
            UndefinedVariable("x", "t.j2"),
            DocumentParseError("bad"),
            LockTimeout("p", 1.0),
        ):
            assert isinstance(exc, GenerationError)

    def test_undefined_variable_to_dict(self):
        exc = UndefinedVariable("entityName", "components/entity/Entity.java.j2")
        data = exc.to_dict()
        assert data["code"] == "UNDEFINED_VARIABLE"
        assert data["template_path"] == "components/entity/Entity.java.j2"
        assert data["variable"] == "entityName"
        assert "entityName" in data["message"]

    def test_unsupported_selector_lists_supported(self):
        exc = UnsupportedSelector("hex/spring/reactive/mongo", ["quarkus/imperative"])
        assert exc.supported == ["quarkus/imperative"]
        assert "quarkus/imperative" in str(exc)

    def test_syntax_failure_location(self):
        exc = TemplateSyntaxFailure("a/b.j2", 4, "unexpected end")
        assert "a/b.j2:4" in str(exc)
        assert exc.line == 4

    def test_document_parse_error_location(self):
        exc = DocumentParseError("duplicate key 'a'", line=3, path="application.yml")
        assert "application.yml:3" in str(exc)
