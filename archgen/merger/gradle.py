"""Round-trip adapter for Gradle Groovy build descriptors.

Only the parts of a build script that the generator merges are modelled:

* top-level ``plugins { }`` entries, keyed by plugin id;
* top-level ``dependencies { }`` entries, keyed by configuration and
  ``group:artifact`` (string notation, map notation, ``project(':x')`` as
  ``project::x``, and ``platform(...)`` / ``enforcedPlatform(...)`` wrappers);
* ``include`` statements of ``settings.gradle``, keyed by module path.

Everything else (repositories, tasks, nested ``buildscript`` dependencies)
is kept verbatim and never interpreted.
"""

from __future__ import annotations

import re
from typing import Optional

from archgen.errors import DocumentParseError
from archgen.merger.document import Document, MappingNode, ScalarNode, indent_of

SYNTAX = "gradle"
SECTIONS = ("plugins", "dependencies", "include")

_BLOCK_RE = re.compile(r"^\s*(plugins|dependencies)\s*\{")
_PREAMBLE_RE = re.compile(r"^\s*(buildscript|pluginManagement)\s*\{")
_INCLUDE_RE = re.compile(r"^\s*include\b")
_QUOTED_RE = re.compile(r"""(['"])([^'"]*)\1""")

_CONF_RE = re.compile(r"^\s*(?P<conf>[A-Za-z_]\w*)\s*(?P<body>[\s(].*)$", re.S)
_PROJECT_RE = re.compile(r"""project\s*\(\s*(?:path\s*:\s*)?(['"])(?P<path>[^'"]+)\1""")
_MAP_GROUP_RE = re.compile(r"""group\s*:\s*(['"])(?P<v>[^'"]+)\1""")
_MAP_NAME_RE = re.compile(r"""name\s*:\s*(['"])(?P<v>[^'"]+)\1""")
_MAP_VERSION_RE = re.compile(r"""version\s*:\s*(['"])(?P<v>[^'"]+)\1""")
_PLUGIN_ID_RE = re.compile(
    r"""^\s*id\s*\(?\s*(['"])(?P<id>[^'"]+)\1\s*\)?(?:\s+version\s*\(?\s*(['"])(?P<version>[^'"]+)\3\s*\)?)?"""
)
_PLUGIN_BARE_RE = re.compile(r"^\s*(?P<id>[A-Za-z_][\w-]*)\s*$")


def dependency_key(configuration: str, identity: str) -> str:
    """Entry key of a dependency: the same artifact may appear once per configuration."""
    return f"{configuration} {identity}"


class GradleDocument(Document):
    """``Document`` plus the line index where a new ``plugins`` block belongs."""

    def __init__(self, lines: list[str], root: MappingNode, preamble_end: int) -> None:
        super().__init__(lines, root, SYNTAX)
        self.preamble_end = preamble_end


def parse(text: str, path: str | None = None) -> GradleDocument:
    """Parse a build or settings script.

    Raises:
        DocumentParseError: Unbalanced braces, or a modelled block that opens
            and closes on one line.
    """
    lines = text.splitlines(keepends=True)
    codes = _code_lines(lines)
    root = MappingNode(start=0, end=len(lines), insert_at=len(lines))

    depth = 0
    preamble_end: Optional[int] = None
    first_code: Optional[int] = None
    index = 0
    while index < len(lines):
        code = codes[index]
        if code.strip() and first_code is None:
            first_code = index
        if depth == 0 and code.strip():
            block = _BLOCK_RE.match(code)
            if block:
                name = block.group(1)
                close = _block_end(codes, index, path)
                node = _parse_block(lines, codes, index, close, name, path)
                if name in root.entries:
                    raise DocumentParseError(f"duplicate top-level '{name}' block", line=index + 1, path=path)
                root.entries[name] = node
                index = close + 1
                continue
            if _PREAMBLE_RE.match(code):
                close = _block_end(codes, index, path)
                preamble_end = close + 1
                index = close + 1
                continue
            if _INCLUDE_RE.match(code):
                index = _parse_include(lines, codes, index, root)
                continue
        depth += _brace_delta(code)
        if depth < 0:
            raise DocumentParseError("unbalanced '}'", line=index + 1, path=path)
        index += 1

    if depth != 0:
        raise DocumentParseError("unbalanced '{'", line=len(lines), path=path)

    if preamble_end is None:
        preamble_end = first_code if first_code is not None else len(lines)
    return GradleDocument(lines, root, preamble_end)


def serialize(document: Document) -> str:
    return document.render()


def include_line(module: str, indent: int = 0) -> str:
    return " " * indent + f"include '{module}'\n"


# ---------------------------------------------------------------------------
# Scanning
# ---------------------------------------------------------------------------


def _code_lines(lines: list[str]) -> list[str]:
    """Each line with comments removed and string contents blanked out."""
    result: list[str] = []
    in_block_comment = False
    for line in lines:
        out: list[str] = []
        quote = ""
        pos = 0
        text = line.rstrip("\r\n")
        while pos < len(text):
            char = text[pos]
            if in_block_comment:
                if text.startswith("*/", pos):
                    in_block_comment = False
                    pos += 2
                else:
                    pos += 1
                continue
            if quote:
                if char == "\\":
                    out.append("  ")
                    pos += 2
                    continue
                if char == quote:
                    quote = ""
                    out.append(char)
                else:
                    out.append(" ")
                pos += 1
                continue
            if text.startswith("//", pos):
                break
            if text.startswith("/*", pos):
                in_block_comment = True
                pos += 2
                continue
            if char in ("'", '"'):
                quote = char
            out.append(char)
            pos += 1
        result.append("".join(out))
    return result


def _brace_delta(code: str) -> int:
    return code.count("{") - code.count("}")


def _block_end(codes: list[str], start: int, path: str | None) -> int:
    """Index of the line closing the block opened on *start*."""
    depth = 0
    for index in range(start, len(codes)):
        depth += _brace_delta(codes[index])
        if depth == 0:
            return index
    raise DocumentParseError("unclosed block", line=start + 1, path=path)


def _strip_line_comment(line: str, code: str) -> str:
    """Raw *line* cut where its code ends, keeping string literals intact."""
    text = line.rstrip("\r\n")
    if "//" in text and "//" not in code:
        cut = len(code)
        return text[:cut].rstrip()
    return text.rstrip()


# ---------------------------------------------------------------------------
# Block parsing
# ---------------------------------------------------------------------------


def _parse_block(
    lines: list[str], codes: list[str], open_index: int, close_index: int, name: str, path: str | None
) -> MappingNode:
    if close_index == open_index:
        raise DocumentParseError(f"single-line '{name}' block is not supported", line=open_index + 1, path=path)
    if codes[close_index].strip() != "}":
        raise DocumentParseError(f"'{name}' block must close on its own line", line=close_index + 1, path=path)

    block_indent = indent_of(lines[open_index])
    node = MappingNode(
        start=open_index,
        end=close_index + 1,
        indent=block_indent,
        key=name,
        child_indent=block_indent + 4,
        insert_at=close_index,
    )

    first = True
    index = open_index + 1
    while index < close_index:
        if not codes[index].strip():
            index += 1
            continue
        start = index
        depth = _brace_delta(codes[index])
        parens = codes[index].count("(") - codes[index].count(")")
        while (depth > 0 or parens > 0) and index + 1 < close_index:
            index += 1
            depth += _brace_delta(codes[index])
            parens += codes[index].count("(") - codes[index].count(")")
        index += 1

        if first:
            node.child_indent = indent_of(lines[start])
            first = False

        statement = " ".join(_strip_line_comment(lines[i], codes[i]).strip() for i in range(start, index))
        parsed = _parse_plugin(statement) if name == "plugins" else _parse_dependency(statement)
        if parsed is None:
            continue
        identity, version, qualifier = parsed
        key = identity if name == "plugins" else dependency_key(qualifier, identity)
        if key not in node.entries:
            node.entries[key] = ScalarNode(
                value=version, start=start, end=index, indent=indent_of(lines[start]), key=identity, qualifier=qualifier
            )
    return node


def _parse_dependency(statement: str) -> Optional[tuple[str, Optional[str], str]]:
    match = _CONF_RE.match(statement)
    if match is None:
        return None
    conf, body = match.group("conf"), match.group("body")

    project = _PROJECT_RE.search(body)
    if project:
        return f"project:{project.group('path')}", None, conf

    group = _MAP_GROUP_RE.search(body)
    name = _MAP_NAME_RE.search(body)
    if group and name:
        version = _MAP_VERSION_RE.search(body)
        return f"{group.group('v')}:{name.group('v')}", version.group("v") if version else None, conf

    quoted = _QUOTED_RE.search(body)
    if quoted is None:
        return None
    parts = quoted.group(2).split(":")
    if len(parts) < 2 or not parts[0] or not parts[1]:
        return None
    version = parts[2].split("@", 1)[0] if len(parts) > 2 and parts[2] else None
    return f"{parts[0]}:{parts[1]}", version, conf


def _parse_plugin(statement: str) -> Optional[tuple[str, Optional[str], str]]:
    match = _PLUGIN_ID_RE.match(statement)
    if match:
        return match.group("id"), match.group("version"), "id"
    bare = _PLUGIN_BARE_RE.match(statement)
    if bare:
        return bare.group("id"), None, "core"
    return None


def _parse_include(lines: list[str], codes: list[str], index: int, root: MappingNode) -> int:
    """Record the modules of one ``include`` statement; return the next line index."""
    start = index
    while codes[index].rstrip().endswith(",") and index + 1 < len(lines):
        index += 1
    end = index + 1

    node = root.entries.get("include")
    if not isinstance(node, MappingNode):
        node = MappingNode(start=start, end=end, indent=indent_of(lines[start]), key="include",
                           child_indent=indent_of(lines[start]))
        root.entries["include"] = node
    node.end = end
    node.insert_at = end

    for i in range(start, end):
        text = _strip_line_comment(lines[i], codes[i])
        for match in _QUOTED_RE.finditer(text):
            module = match.group(2)
            if module and module not in node.entries:
                node.entries[module] = ScalarNode(value=None, start=start, end=end, indent=node.indent, key=module)
    return end
