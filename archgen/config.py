"""Engine configuration.

Centralised, typed configuration for the generation engine.  Settings use
Pydantic v2 models so they can be validated at construction time and
serialised to/from JSON or environment variables without boiler-plate.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field

from archgen.models import SourceDescriptor


def _default_home() -> Path:
    return Path.home() / ".archgen"


class EngineConfig(BaseModel):
    """Global engine configuration.

    Holds the cache/lock locations and the timeouts used by the repository
    and orchestrator.  Instances are created once by the caller (CLI layer or
    test harness) and passed to the components that need them, so no state
    leaks between runs.
    """

    home_dir: Path = Field(default_factory=_default_home)
    cache_dir_name: str = Field(default="templates-cache")
    lock_dir_name: str = Field(default="locks")
    fetch_timeout: float = Field(default=30.0, ge=1, description="Remote pack download timeout in seconds")
    lock_timeout: float = Field(default=10.0, gt=0, description="Seconds to wait for an artifact lock")
    default_source: Optional[SourceDescriptor] = Field(default=None)

    # ------------------------------------------------------------------
    # Derived paths (read-only properties)
    # ------------------------------------------------------------------

    @property
    def cache_dir(self) -> Path:
        """Root of the remote template pack cache."""
        return self.home_dir / self.cache_dir_name

    @property
    def lock_dir(self) -> Path:
        """Directory holding the path-scoped artifact lock files."""
        return self.home_dir / self.lock_dir_name

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def save(self, path: Path | None = None) -> Path:
        """Persist the configuration to a JSON file.

        Args:
            path: Destination file. Defaults to ``<home_dir>/config.json``.

        Returns:
            The path where the file was written.
        """
        target = path or (self.home_dir / "config.json")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        return target

    @classmethod
    def load(cls, path: Path) -> "EngineConfig":
        """Load a previously-saved configuration from JSON."""
        raw = Path(path).read_text(encoding="utf-8")
        return cls.model_validate_json(raw)

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Build an ``EngineConfig`` from environment variables.

        Recognised variables (all optional):
            ARCHGEN_HOME, ARCHGEN_FETCH_TIMEOUT, ARCHGEN_LOCK_TIMEOUT,
            ARCHGEN_TEMPLATES_PATH, ARCHGEN_TEMPLATES_URL, ARCHGEN_TEMPLATES_REF.

        ``ARCHGEN_TEMPLATES_PATH`` wins over ``ARCHGEN_TEMPLATES_URL`` when both
        are set, matching the local-first lookup of the project config file.
        """
        kwargs: dict[str, Any] = {}
        if os.environ.get("ARCHGEN_HOME"):
            kwargs["home_dir"] = Path(os.environ["ARCHGEN_HOME"]).expanduser()
        if os.environ.get("ARCHGEN_FETCH_TIMEOUT"):
            kwargs["fetch_timeout"] = float(os.environ["ARCHGEN_FETCH_TIMEOUT"])
        if os.environ.get("ARCHGEN_LOCK_TIMEOUT"):
            kwargs["lock_timeout"] = float(os.environ["ARCHGEN_LOCK_TIMEOUT"])

        if os.environ.get("ARCHGEN_TEMPLATES_PATH"):
            kwargs["default_source"] = SourceDescriptor(
                path=Path(os.environ["ARCHGEN_TEMPLATES_PATH"]).expanduser()
            )
        elif os.environ.get("ARCHGEN_TEMPLATES_URL"):
            kwargs["default_source"] = SourceDescriptor(
                url=os.environ["ARCHGEN_TEMPLATES_URL"],
                ref=os.environ.get("ARCHGEN_TEMPLATES_REF", "main"),
            )

        return cls(**kwargs)

    def ensure_directories(self) -> None:
        """Create the cache and lock directories."""
        for directory in (self.home_dir, self.cache_dir, self.lock_dir):
            directory.mkdir(parents=True, exist_ok=True)
