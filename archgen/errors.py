"""Error taxonomy for the generation engine.

Resolution and rendering errors abort a whole request before anything is
written.  Merge and write errors are captured per artifact by the
orchestrator and reported in the manifest instead of being raised.
"""

from __future__ import annotations

from typing import Any


class GenerationError(Exception):
    """Base class for every error raised by the engine.

    Subclasses set ``code`` and keep the offending template's logical path
    (when there is one) so the caller can point the user at the exact file.
    """

    code = "GENERATION_ERROR"

    def __init__(self, message: str, template_path: str | None = None, **context: Any) -> None:
        self.template_path = template_path
        self.context = context
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serialisable view for display layers and JSON reports."""
        return {
            "code": self.code,
            "message": str(self),
            "template_path": self.template_path,
            **self.context,
        }


# ---------------------------------------------------------------------------
# Pack errors
# ---------------------------------------------------------------------------


class SourceUnavailable(GenerationError):
    """The template source cannot be reached and no usable cache exists."""

    code = "SOURCE_UNAVAILABLE"

    def __init__(self, source: str, reason: str = "") -> None:
        self.source = source
        self.reason = reason
        message = f"Template source unavailable: {source}"
        if reason:
            message += f" ({reason})"
        super().__init__(message, source=source, reason=reason)


class InvalidPackStructure(GenerationError):
    """A loaded or fetched pack does not have the expected top-level layout."""

    code = "INVALID_PACK_STRUCTURE"

    def __init__(self, source: str, reason: str) -> None:
        self.source = source
        self.reason = reason
        super().__init__(f"Invalid template pack at {source}: {reason}", source=source, reason=reason)


# ---------------------------------------------------------------------------
# Resolution errors
# ---------------------------------------------------------------------------


class TemplateNotFound(GenerationError):
    """A mandatory template entry is missing from the pack."""

    code = "TEMPLATE_NOT_FOUND"

    def __init__(self, template_path: str, reason: str = "") -> None:
        message = f"Mandatory template not found: {template_path}"
        if reason:
            message += f" ({reason})"
        super().__init__(message, template_path=template_path)


class UnsupportedSelector(GenerationError):
    """No templates exist for the requested selector combination."""

    code = "UNSUPPORTED_SELECTOR"

    def __init__(self, selector: str, supported: list[str] | None = None) -> None:
        self.selector = selector
        self.supported = list(supported or [])
        message = f"No templates for selector combination {selector}"
        if self.supported:
            message += f"; supported: {', '.join(self.supported)}"
        super().__init__(message, selector=selector, supported=self.supported)


class MetadataError(GenerationError):
    """A ``metadata.yml`` or ``structure.yml`` entry cannot be parsed."""

    code = "METADATA_INVALID"

    def __init__(self, template_path: str, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Invalid metadata in {template_path}: {reason}", template_path=template_path)


# ---------------------------------------------------------------------------
# Render errors
# ---------------------------------------------------------------------------


class UndefinedVariable(GenerationError):
    """A template references a variable missing from the render context."""

    code = "UNDEFINED_VARIABLE"

    def __init__(self, name: str, template_path: str) -> None:
        self.name = name
        super().__init__(
            f"Undefined variable '{name}' in template {template_path}",
            template_path=template_path,
            variable=name,
        )


class TemplateSyntaxFailure(GenerationError):
    """A template body cannot be parsed by the template engine."""

    code = "TEMPLATE_SYNTAX_ERROR"

    def __init__(self, template_path: str, line: int | None, reason: str) -> None:
        self.line = line
        self.reason = reason
        where = f"{template_path}:{line}" if line else template_path
        super().__init__(f"Template syntax error in {where}: {reason}", template_path=template_path, line=line)


class RenderFailure(GenerationError):
    """A template or verbatim pack file could not be turned into an artifact."""

    code = "RENDER_ERROR"

    def __init__(self, template_path: str, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Cannot render {template_path}: {reason}", template_path=template_path)


# ---------------------------------------------------------------------------
# Merge / write errors (captured per artifact)
# ---------------------------------------------------------------------------


class MergeError(GenerationError):
    """A merge was requested for an artifact kind that cannot be merged."""

    code = "MERGE_ERROR"


class DocumentParseError(GenerationError):
    """An existing structured document cannot be parsed for merging."""

    code = "DOCUMENT_PARSE_ERROR"

    def __init__(self, reason: str, line: int | None = None, path: str | None = None) -> None:
        self.reason = reason
        self.line = line
        self.path = path
        where = path or "<document>"
        if line is not None:
            where += f":{line}"
        super().__init__(f"Cannot parse {where}: {reason}", line=line, path=path)


class WriteFailure(GenerationError):
    """Writing one artifact failed for an environmental reason."""

    code = "WRITE_FAILURE"

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to write {path}: {reason}", path=path)


class LockTimeout(GenerationError):
    """The path-scoped lock guarding an artifact could not be acquired."""

    code = "LOCK_TIMEOUT"

    def __init__(self, path: str, timeout: float) -> None:
        self.path = path
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout}s waiting for lock on {path}", path=path, timeout=timeout)
