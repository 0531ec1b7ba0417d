"""Round-trip adapter for Java ``.properties`` files.

Keys are flat.  A key ends at the first unescaped ``=``, ``:`` or whitespace;
``#`` and ``!`` start comment lines; a line ending in an odd number of
backslashes continues on the next line.  Values are compared after escape
processing, so ``a=x\\ y`` and ``a = x y`` hold the same value.
"""

from __future__ import annotations

from archgen.merger.document import Document, MappingNode, ScalarNode, indent_of

SYNTAX = "properties"

_ESCAPES = {"t": "\t", "n": "\n", "r": "\r", "f": "\f"}


def parse(text: str, path: str | None = None) -> Document:
    """Parse *text* into a flat ``Document``; every entry is a ``ScalarNode``."""
    lines = text.splitlines(keepends=True)
    root = MappingNode(start=0, end=len(lines), insert_at=len(lines))

    index = 0
    first_indent: int | None = None
    while index < len(lines):
        line = lines[index]
        stripped = line.strip()
        if not stripped or stripped[0] in "#!":
            index += 1
            continue

        start = index
        logical = line.rstrip("\r\n").lstrip()
        while _continues(logical) and index + 1 < len(lines):
            index += 1
            logical = logical[:-1] + lines[index].rstrip("\r\n").lstrip()
        if _continues(logical):
            logical = logical[:-1]
        index += 1

        key, value = _split(logical)
        if first_indent is None:
            first_indent = indent_of(line)
        # Later duplicates override earlier ones, as java.util.Properties does.
        root.entries.pop(key, None)
        root.entries[key] = ScalarNode(value=value, start=start, end=index, indent=indent_of(line), key=key)

    if root.entries:
        root.child_indent = first_indent or 0
        root.insert_at = max(node.end for node in root.entries.values())
    return Document(lines, root, SYNTAX)


def serialize(document: Document) -> str:
    return document.render()


def _continues(logical: str) -> bool:
    trailing = len(logical) - len(logical.rstrip("\\"))
    return trailing % 2 == 1


def _split(logical: str) -> tuple[str, str]:
    """Split a logical line into unescaped key and value."""
    key_chars: list[str] = []
    pos = 0
    while pos < len(logical):
        char = logical[pos]
        if char == "\\" and pos + 1 < len(logical):
            key_chars.append(logical[pos:pos + 2])
            pos += 2
            continue
        if char in "=: \t\f":
            break
        key_chars.append(char)
        pos += 1

    rest = logical[pos:].lstrip(" \t\f")
    if rest[:1] in ("=", ":"):
        rest = rest[1:].lstrip(" \t\f")
    return _unescape("".join(key_chars)), _unescape(rest)


def _unescape(raw: str) -> str:
    out: list[str] = []
    pos = 0
    while pos < len(raw):
        char = raw[pos]
        if char != "\\" or pos + 1 >= len(raw):
            out.append(char)
            pos += 1
            continue
        nxt = raw[pos + 1]
        if nxt == "u" and pos + 6 <= len(raw):
            try:
                out.append(chr(int(raw[pos + 2:pos + 6], 16)))
                pos += 6
                continue
            except ValueError:
                pass
        out.append(_ESCAPES.get(nxt, nxt))
        pos += 2
    return "".join(out)
