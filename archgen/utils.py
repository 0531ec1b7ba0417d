"""Shared utility functions for the generation engine.

Provides naming helpers used by both the template filters and the context
builder, Rich-based console output for callers that display a generation
manifest, and logging setup.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

if TYPE_CHECKING:
    from archgen.models import GenerationResult

console = Console()


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


def configure_logging(level: int | str = logging.INFO) -> None:
    """Route ``archgen`` log records through a Rich handler.

    Library modules only call ``logging.getLogger(__name__)``; the caller
    decides whether and how records are shown.
    """
    handler = RichHandler(console=console, show_path=False, markup=False)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger = logging.getLogger("archgen")
    logger.handlers[:] = [handler]
    logger.setLevel(level)
    logger.propagate = False


# ---------------------------------------------------------------------------
# String / name helpers
# ---------------------------------------------------------------------------


def _words(value: str) -> list[str]:
    """Split ``someThing``, ``some-thing``, ``some_thing`` or ``Some Thing`` into words."""
    spaced = re.sub(r"([a-z0-9])([A-Z])", r"\1 \2", value)
    spaced = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1 \2", spaced)
    return [w for w in re.split(r"[-_\s.]+", spaced) if w]


def slugify(value: str) -> str:
    """Convert a string to a filename-safe, hyphenated slug.

    Examples::

        slugify("Payment Service") -> "payment-service"
        slugify("  Orders (v2) ") -> "orders-v2"
    """
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower().strip())
    return slug.strip("-")


def to_pascal(value: str) -> str:
    """Convert ``some-thing``, ``some_thing`` or ``someThing`` to ``SomeThing``."""
    return "".join(w[:1].upper() + w[1:] for w in _words(value))


def to_camel(value: str) -> str:
    """Convert ``some-thing`` or ``SomeThing`` to ``someThing``."""
    pascal = to_pascal(value)
    return pascal[:1].lower() + pascal[1:] if pascal else ""


def to_snake(value: str) -> str:
    """Convert ``SomeThing`` or ``some-thing`` to ``some_thing``."""
    return "_".join(w.lower() for w in _words(value))


def to_kebab(value: str) -> str:
    """Convert ``SomeThing`` or ``some_thing`` to ``some-thing``."""
    return "-".join(w.lower() for w in _words(value))


def pluralize(word: str) -> str:
    """Naive English plural, preserving the casing of the input.

    Examples::

        pluralize("User") -> "Users"
        pluralize("category") -> "categories"
        pluralize("Address") -> "Addresses"
    """
    if not word:
        return word
    lower = word.lower()
    if lower.endswith("y") and not lower.endswith(("ay", "ey", "iy", "oy", "uy")):
        return word[:-1] + ("IES" if word.isupper() else "ies")
    if lower.endswith(("s", "sh", "ch", "x", "z")):
        return word + ("ES" if word.isupper() else "es")
    return word + ("S" if word.isupper() else "s")


def package_to_path(package: str) -> str:
    """``com.acme.orders`` -> ``com/acme/orders``."""
    return package.strip(".").replace(".", "/")


def path_to_package(path: str) -> str:
    """``com/acme/orders`` -> ``com.acme.orders``."""
    return path.strip("/").replace("/", ".")


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def format_duration(seconds: float) -> str:
    """Format a duration in seconds to a human-readable string.

    Examples::

        format_duration(3.7)    -> "3.7s"
        format_duration(65.2)   -> "1m 5s"
        format_duration(3661.0) -> "1h 1m 1s"
    """
    if seconds < 0:
        return "0.0s"

    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = seconds % 60

    parts: list[str] = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")

    if hours > 0 or minutes > 0:
        parts.append(f"{int(secs)}s")
    else:
        parts.append(f"{secs:.1f}s")

    return " ".join(parts)


# ---------------------------------------------------------------------------
# Rich output helpers
# ---------------------------------------------------------------------------


_STATUS_STYLES: dict[str, str] = {
    "created": "green",
    "merged": "cyan",
    "merged-with-conflicts": "yellow",
    "overwritten": "magenta",
    "failed": "bold red",
}


def print_summary_table(data: dict[str, str], title: str = "Summary") -> None:
    """Print a two-column key/value summary table.

    Args:
        data: Mapping of label -> value.
        title: Table title.
    """
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Item", style="dim", no_wrap=True)
    table.add_column("Value")

    for key, value in data.items():
        table.add_row(key, str(value))

    console.print(table)
    console.print()


def print_generation_result(result: "GenerationResult") -> None:
    """Print the artifact manifest, then any conflicts and upgrade notes."""
    table = Table(title=f"{result.request_kind.value}", show_header=True, header_style="bold cyan")
    table.add_column("Status", no_wrap=True)
    table.add_column("Path")
    table.add_column("Template", style="dim")

    for artifact in result.artifacts:
        style = _STATUS_STYLES.get(artifact.status.value, "dim")
        table.add_row(
            f"[{style}]{artifact.status.value}[/{style}]",
            str(artifact.path),
            artifact.template_path,
        )
    console.print(table)

    for conflict in result.conflicts:
        print_warning(
            f"conflict in {conflict.path}: {conflict.key} kept {conflict.old_value!r} "
            f"(template wants {conflict.new_value!r})"
        )
    for artifact in result.artifacts:
        for note in artifact.notes:
            console.print(
                f"[dim]upgrade available in {artifact.path}: {note.identity} "
                f"{note.current_version} -> {note.proposed_version}[/dim]"
            )
        if artifact.error:
            print_error(f"{artifact.path}: {artifact.error}")
    if result.ok:
        print_success(f"{len(result.artifacts)} artifacts, no conflicts")
    console.print()


def print_success(message: str) -> None:
    """Print a green success message."""
    console.print(f"[bold green]{message}[/bold green]")


def print_error(message: str) -> None:
    """Print a red error message."""
    console.print(f"[bold red]{message}[/bold red]")


def print_warning(message: str) -> None:
    """Print a yellow warning message."""
    console.print(f"[bold yellow]{message}[/bold yellow]")
