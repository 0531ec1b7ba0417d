"""Line-preserving document tree shared by the syntax adapters.

A parsed document keeps its original lines untouched.  Nodes only record
which lines they span, and edits are queued as insertions between existing
lines, so serialising a document without edits returns the input byte for
byte and serialising an edited one changes nothing but the inserted text.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Union


@dataclass
class ScalarNode:
    """A leaf value.  ``qualifier`` carries syntax-specific detail (e.g. a Gradle configuration)."""

    value: Any
    start: int
    end: int
    indent: int = 0
    key: Optional[str] = None
    qualifier: Optional[str] = None

    def to_python(self) -> Any:
        return self.value


@dataclass
class SequenceNode:
    """A list value.  Sequences are compared and merged as a whole."""

    value: list[Any]
    start: int
    end: int
    indent: int = 0
    key: Optional[str] = None

    def to_python(self) -> Any:
        return self.value


@dataclass
class MappingNode:
    """Ordered key/value entries.

    ``start``/``end`` span the whole mapping (for a keyed mapping, from its key
    line to its last content line).  ``insert_at`` is the line index before
    which new entries go; ``child_indent`` the column new entries start at.
    """

    entries: dict[str, "Node"] = field(default_factory=dict)
    start: int = 0
    end: int = 0
    indent: int = 0
    key: Optional[str] = None
    child_indent: int = 0
    insert_at: int = 0

    def to_python(self) -> Any:
        return {key: node.to_python() for key, node in self.entries.items()}


Node = Union[ScalarNode, SequenceNode, MappingNode]


def is_blank(line: str) -> bool:
    return not line.strip()


def indent_of(line: str) -> int:
    return len(line) - len(line.lstrip(" "))


def reindent(lines: list[str], from_indent: int, to_indent: int) -> list[str]:
    """Shift a block of lines from one base indentation to another."""
    result: list[str] = []
    pad = " " * to_indent
    for line in lines:
        if is_blank(line):
            result.append(line.lstrip(" \t"))
            continue
        current = indent_of(line)
        strip = min(current, from_indent)
        result.append(pad + line[strip:])
    return result


class Document:
    """A parsed text document: original lines, a node tree and pending insertions."""

    def __init__(self, lines: list[str], root: MappingNode, syntax: str) -> None:
        self.lines = lines
        self.root = root
        self.syntax = syntax
        self.newline = "\r\n" if any(line.endswith("\r\n") for line in lines) else "\n"
        self._insertions: list[tuple[int, int, int, list[str]]] = []

    @property
    def modified(self) -> bool:
        return bool(self._insertions)

    def source(self, node: Node) -> list[str]:
        """The original lines a node spans."""
        return self.lines[node.start:node.end]

    def insert(self, position: int, new_lines: list[str], depth: int = 0) -> None:
        """Queue *new_lines* to be emitted before original line *position*.

        Insertions at the same position are ordered deepest first, then in
        call order, so a nested entry stays inside its parent when a sibling
        of the parent is appended at the same spot.
        """
        normalised = [line.rstrip("\r\n") + self.newline for line in new_lines]
        self._insertions.append((position, -depth, len(self._insertions), normalised))

    def render(self) -> str:
        """Serialise the document, applying queued insertions."""
        if not self._insertions:
            return "".join(self.lines)

        pending: dict[int, list[str]] = {}
        for position, _, _, new_lines in sorted(self._insertions):
            pending.setdefault(position, []).extend(new_lines)

        out: list[str] = []
        for index in range(len(self.lines) + 1):
            if index in pending:
                if out and not out[-1].endswith(("\n", "\r")):
                    out[-1] += self.newline
                out.extend(pending[index])
            if index < len(self.lines):
                out.append(self.lines[index])
        return "".join(out)
