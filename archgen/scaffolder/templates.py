"""Jinja2 template rendering for generated artifacts.

Provides the TemplateRenderer class which expands pack entries with a render
context.  Templates use ``${name}`` for substitution (dotted and indexed
access included), ``{% if %}`` for conditionals and ``{% for %}`` for
iteration, where ``loop.last`` drives separator logic in field and parameter
lists.

Every free variable of a template is checked against the context before
expansion, so a missing value fails with ``UndefinedVariable`` instead of
silently producing empty text.
"""

from __future__ import annotations

import hashlib
import re
from typing import Any

from jinja2 import Environment, StrictUndefined, Template, TemplateSyntaxError, UndefinedError, meta

from archgen.errors import TemplateSyntaxFailure, UndefinedVariable
from archgen.models import TemplateEntry
from archgen.utils import (
    package_to_path,
    pluralize,
    slugify,
    to_camel,
    to_kebab,
    to_pascal,
    to_snake,
)


_UNDEFINED_PATTERNS = (
    re.compile(r"'([^']+)' is undefined"),
    re.compile(r"has no attribute '([^']+)'"),
    re.compile(r"has no element (.+)$"),
)


def build_environment() -> Environment:
    """Create the Jinja2 environment shared by rendering and static scans."""
    env = Environment(
        variable_start_string="${",
        variable_end_string="}",
        undefined=StrictUndefined,
        autoescape=False,
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["pascal_case"] = to_pascal
    env.filters["camel_case"] = to_camel
    env.filters["snake_case"] = to_snake
    env.filters["kebab_case"] = to_kebab
    env.filters["slugify"] = slugify
    env.filters["plural"] = pluralize
    env.filters["package_path"] = package_to_path
    return env


# ---------------------------------------------------------------------------
# TemplateRenderer
# ---------------------------------------------------------------------------


class TemplateRenderer:
    """Renders template entries and inline template strings.

    Compiled templates are cached by content digest; entries are immutable so
    a digest never goes stale.
    """

    def __init__(self) -> None:
        self.env = build_environment()
        self._compiled: dict[str, Template] = {}

    # -- Static scan -------------------------------------------------------

    def declared_variables(self, source: str, template_path: str = "<string>") -> frozenset[str]:
        """Return the free (context-supplied) variable names of *source*.

        Loop variables and names assigned inside the template are excluded.

        Raises:
            TemplateSyntaxFailure: If *source* does not parse.
        """
        try:
            ast = self.env.parse(source)
        except TemplateSyntaxError as exc:
            raise TemplateSyntaxFailure(template_path, exc.lineno, exc.message or str(exc)) from exc
        return frozenset(meta.find_undeclared_variables(ast))

    # -- Rendering ---------------------------------------------------------

    def render(self, entry: TemplateEntry, context: dict[str, Any]) -> str:
        """Render a single pack entry with the provided context.

        Args:
            entry: Template entry; its ``declared_variables`` are checked first.
            context: Variables available inside the template.

        Returns:
            The rendered text.

        Raises:
            UndefinedVariable: A referenced variable (or nested attribute) is
                missing from *context*.
            TemplateSyntaxFailure: The entry does not parse.
        """
        declared = entry.declared_variables or self.declared_variables(entry.text(), entry.logical_path)
        self._check_declared(declared, context, entry.logical_path)
        return self._expand(entry.text(), context, entry.logical_path)

    def render_string(self, source: str, context: dict[str, Any], template_path: str = "<string>") -> str:
        """Render an inline template string, e.g. a target path declared in metadata."""
        declared = self.declared_variables(source, template_path)
        self._check_declared(declared, context, template_path)
        return self._expand(source, context, template_path)

    # -- Internal helpers --------------------------------------------------

    def _check_declared(self, declared: frozenset[str], context: dict[str, Any], template_path: str) -> None:
        missing = sorted(name for name in declared if name not in context and name not in self.env.globals)
        if missing:
            raise UndefinedVariable(missing[0], template_path)

    def _expand(self, source: str, context: dict[str, Any], template_path: str) -> str:
        digest = hashlib.sha256(source.encode("utf-8")).hexdigest()
        template = self._compiled.get(digest)
        if template is None:
            try:
                template = self.env.from_string(source)
            except TemplateSyntaxError as exc:
                raise TemplateSyntaxFailure(template_path, exc.lineno, exc.message or str(exc)) from exc
            self._compiled[digest] = template
        try:
            return template.render(**context)
        except UndefinedError as exc:
            raise UndefinedVariable(_undefined_name(exc), template_path) from exc


def _undefined_name(exc: UndefinedError) -> str:
    """Pull the missing variable or attribute name out of a Jinja2 error message."""
    message = exc.message or str(exc)
    for pattern in _UNDEFINED_PATTERNS:
        match = pattern.search(message)
        if match:
            return match.group(1).strip("'\"")
    return message
