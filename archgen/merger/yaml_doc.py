"""Round-trip YAML adapter for the block-style subset used in config files.

Supports nested block mappings, block sequences, comments, plain / quoted /
flow scalars and block scalars (``|``, ``>``).  Leaf values are normalised
with ``yaml.safe_load`` so ``"A"`` and ``A`` compare equal.  Anchors, aliases
and multi-document streams are rejected: the merger cannot preserve their
meaning when inserting text.
"""

from __future__ import annotations

import re
import textwrap
from typing import Any

import yaml

from archgen.errors import DocumentParseError
from archgen.merger.document import (
    Document,
    MappingNode,
    Node,
    ScalarNode,
    SequenceNode,
    indent_of,
    is_blank,
)

SYNTAX = "yaml"

_KEY_RE = re.compile(
    r"""^(?P<indent> *)(?P<key>"(?:[^"\\]|\\.)*"|'(?:[^']|'')*'|[^\s#'"][^#]*?)\s*:(?=\s|$)(?P<rest>.*)$"""
)
_QUOTED_RE = re.compile(r""""(?:[^"\\]|\\.)*"|'(?:[^']|'')*'""")
_ANCHOR_RE = re.compile(r"(?:^|[\s\[{,])[&*][A-Za-z0-9_-]")


def parse(text: str, path: str | None = None) -> Document:
    """Parse *text* into a line-preserving ``Document``.

    Raises:
        DocumentParseError: Unsupported or malformed YAML.
    """
    lines = text.splitlines(keepends=True)
    content = _content_lines(lines, path)

    root = MappingNode(start=0, end=len(lines), indent=0, child_indent=0, insert_at=len(lines))
    if content:
        first = content[0]
        if _is_sequence_item(lines[first]):
            raise DocumentParseError("top-level value must be a mapping", line=first + 1, path=path)
        base = indent_of(lines[first])
        _parse_mapping(lines, content, 0, len(content), base, root, path)
        root.child_indent = base
        root.insert_at = max(node.end for node in root.entries.values())
    return Document(lines, root, SYNTAX)


def serialize(document: Document) -> str:
    return document.render()


# ---------------------------------------------------------------------------
# Line scanning
# ---------------------------------------------------------------------------


def strip_comment(value: str) -> str:
    """Drop a trailing ``# comment`` that sits outside quotes."""
    quote = ""
    escaped = False
    for index, char in enumerate(value):
        if quote:
            if escaped:
                escaped = False
            elif char == "\\" and quote == '"':
                escaped = True
            elif char == quote:
                quote = ""
        elif char in ("'", '"'):
            quote = char
        elif char == "#" and (index == 0 or value[index - 1] in " \t"):
            return value[:index].rstrip()
    return value.rstrip()


def _is_comment(line: str) -> bool:
    return line.lstrip().startswith("#")


def _is_sequence_item(line: str) -> bool:
    stripped = line.strip()
    return stripped == "-" or stripped.startswith("- ")


def _content_lines(lines: list[str], path: str | None) -> list[int]:
    """Indices of lines carrying YAML content, after stream-level checks."""
    content: list[int] = []
    for index, line in enumerate(lines):
        if is_blank(line) or _is_comment(line):
            continue
        if line.startswith("\t") or line[: indent_of(line) + 1].endswith("\t"):
            raise DocumentParseError("tab indentation is not supported", line=index + 1, path=path)
        stripped = line.rstrip("\r\n")
        if stripped.startswith("%"):
            continue
        if stripped == "---" or stripped.startswith("--- "):
            if content:
                raise DocumentParseError("multi-document streams are not supported", line=index + 1, path=path)
            continue
        if stripped == "...":
            raise DocumentParseError("multi-document streams are not supported", line=index + 1, path=path)
        code = _QUOTED_RE.sub('""', strip_comment(stripped))
        if _ANCHOR_RE.search(code) or re.match(r"^\s*<<\s*:", code):
            raise DocumentParseError("anchors and aliases are not supported", line=index + 1, path=path)
        content.append(index)
    return content


# ---------------------------------------------------------------------------
# Tree construction
# ---------------------------------------------------------------------------


def _parse_mapping(
    lines: list[str],
    content: list[int],
    lo: int,
    hi: int,
    indent: int,
    mapping: MappingNode,
    path: str | None,
) -> None:
    """Fill *mapping* from ``content[lo:hi]``, whose entries start at *indent*."""
    pos = lo
    while pos < hi:
        index = content[pos]
        line = lines[index]
        if indent_of(line) != indent or _is_sequence_item(line):
            raise DocumentParseError("unexpected indentation", line=index + 1, path=path)
        match = _KEY_RE.match(line.rstrip("\r\n"))
        if match is None:
            raise DocumentParseError("expected 'key: value'", line=index + 1, path=path)

        key = _unquote_key(match.group("key"), index, path)
        rest = strip_comment(match.group("rest")).strip()

        # The entry's block: following content lines that are deeper, or a
        # same-column block sequence hanging off an empty value.
        stop = pos + 1
        while stop < hi:
            nxt = lines[content[stop]]
            nxt_indent = indent_of(nxt)
            if nxt_indent > indent or (not rest and nxt_indent == indent and _is_sequence_item(nxt)):
                stop += 1
                continue
            break
        end = content[stop - 1] + 1

        if key in mapping.entries:
            raise DocumentParseError(f"duplicate key '{key}'", line=index + 1, path=path)

        node: Node
        if not rest and stop > pos + 1 and not _is_sequence_item(lines[content[pos + 1]]):
            child_indent = indent_of(lines[content[pos + 1]])
            node = MappingNode(
                start=index, end=end, indent=indent, key=key, child_indent=child_indent, insert_at=end
            )
            _parse_mapping(lines, content, pos + 1, stop, child_indent, node, path)
        else:
            value = _load_leaf(lines[index:end], index, path)
            if isinstance(value, list):
                node = SequenceNode(value=value, start=index, end=end, indent=indent, key=key)
            else:
                node = ScalarNode(value=value, start=index, end=end, indent=indent, key=key)
        mapping.entries[key] = node
        pos = stop


def _unquote_key(raw: str, index: int, path: str | None) -> str:
    if raw[:1] in ("'", '"'):
        try:
            return str(yaml.safe_load(raw))
        except yaml.YAMLError as exc:
            raise DocumentParseError(f"invalid quoted key: {exc}", line=index + 1, path=path) from exc
    return raw.strip()


def _load_leaf(block: list[str], index: int, path: str | None) -> Any:
    """Normalise a single ``key: value`` block through ``yaml.safe_load``."""
    snippet = textwrap.dedent("".join(line if line.endswith("\n") else line + "\n" for line in block))
    try:
        loaded = yaml.safe_load(snippet)
    except yaml.YAMLError as exc:
        raise DocumentParseError(f"invalid value: {exc}", line=index + 1, path=path) from exc
    if not isinstance(loaded, dict) or len(loaded) != 1:
        raise DocumentParseError("could not isolate value", line=index + 1, path=path)
    return next(iter(loaded.values()))
