"""Shared pytest fixtures for the archgen test suite.

Provides reusable fixtures for:
- The fixture template pack (as a directory, a loaded pack and a mutable copy)
- Engine configuration rooted in a temporary home directory
- Project settings and a request factory
"""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Any, Callable

import pytest

from archgen.config import EngineConfig
from archgen.models import GenerationRequest, ProjectSettings, TargetKind, TemplatePack
from archgen.pack.loader import load_pack_directory


FIXTURE_PACK = Path(__file__).parent / "fixtures" / "pack"


# ---------------------------------------------------------------------------
# Template pack
# ---------------------------------------------------------------------------

@pytest.fixture
def fixture_pack_dir() -> Path:
    """Path to the read-only fixture template pack."""
    assert FIXTURE_PACK.is_dir(), f"Fixture pack not found at {FIXTURE_PACK}"
    return FIXTURE_PACK


@pytest.fixture
def pack(fixture_pack_dir: Path) -> TemplatePack:
    """The fixture pack loaded into a ``TemplatePack`` snapshot."""
    return load_pack_directory(fixture_pack_dir)


@pytest.fixture
def pack_copy(tmp_path: Path, fixture_pack_dir: Path) -> Path:
    """A writable copy of the fixture pack for tests that add or remove templates."""
    destination = tmp_path / "pack"
    shutil.copytree(fixture_pack_dir, destination)
    return destination


def _write_template(root: Path, logical_path: str, content: str) -> Path:
    path = root / logical_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


@pytest.fixture
def write_template() -> Callable[[Path, str, str], Path]:
    """Create (or replace) a file inside a pack copy."""
    return _write_template


# ---------------------------------------------------------------------------
# Configuration & requests
# ---------------------------------------------------------------------------

@pytest.fixture
def engine_config(tmp_path: Path) -> EngineConfig:
    """Engine config whose cache and lock directories live under tmp_path."""
    return EngineConfig(home_dir=tmp_path / "archgen-home", lock_timeout=5.0)


@pytest.fixture
def project_settings() -> ProjectSettings:
    return ProjectSettings(name="User Service", base_package="com.acme.users")


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """Empty target directory for a generated project."""
    directory = tmp_path / "user-service"
    directory.mkdir()
    return directory


@pytest.fixture
def make_request(project_settings: ProjectSettings, project_dir: Path) -> Callable[..., GenerationRequest]:
    """Factory for requests against the fixture pack's hexagonal-single architecture."""

    def _make(kind: TargetKind, **overrides: Any) -> GenerationRequest:
        values: dict[str, Any] = {
            "kind": kind,
            "architecture": "hexagonal-single",
            "project": project_settings,
            "target_root": project_dir,
        }
        values.update(overrides)
        return GenerationRequest(**values)

    return _make
