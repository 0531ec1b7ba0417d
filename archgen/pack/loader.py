"""Load a template pack directory into an immutable ``TemplatePack``.

Walks the pack, classifies every file, runs the static variable scan on
``.j2`` templates and reads dependency hints out of ``metadata.yml`` files,
so everything the resolver and renderer need is computed once per load.
"""

from __future__ import annotations

import hashlib
import logging
import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from archgen.errors import InvalidPackStructure, TemplateSyntaxFailure
from archgen.models import CacheState, DependencyHint, EntryKind, SourceDescriptor, TemplateEntry, TemplatePack
from archgen.scaffolder.templates import TemplateRenderer

logger = logging.getLogger(__name__)

ARCHITECTURES_DIR = "architectures"
FRAMEWORKS_DIR = "frameworks"
STRUCTURE_FILE = "structure.yml"
METADATA_FILE = "metadata.yml"


def check_pack_root(root: Path, source: str) -> None:
    """Raise ``InvalidPackStructure`` unless *root* looks like a template pack."""
    architectures = root / ARCHITECTURES_DIR
    if not architectures.is_dir():
        raise InvalidPackStructure(source, f"missing '{ARCHITECTURES_DIR}/' directory")
    if not any((child / STRUCTURE_FILE).is_file() for child in architectures.iterdir() if child.is_dir()):
        raise InvalidPackStructure(source, f"no architecture under '{ARCHITECTURES_DIR}/' has a {STRUCTURE_FILE}")


def classify(logical_path: str) -> Optional[EntryKind]:
    """Entry kind for a pack-relative path, or ``None`` for files outside the layout."""
    parts = logical_path.split("/")
    name = parts[-1]
    if parts[0] == ARCHITECTURES_DIR and len(parts) == 3 and name == STRUCTURE_FILE:
        return EntryKind.STRUCTURE_DEFINITION
    if parts[0] not in (ARCHITECTURES_DIR, FRAMEWORKS_DIR):
        return None
    if name == METADATA_FILE:
        return EntryKind.METADATA
    if parts[0] == ARCHITECTURES_DIR and len(parts) > 3 and parts[2] == "project":
        return EntryKind.PROJECT_FILE
    if parts[0] == FRAMEWORKS_DIR and len(parts) > 4 and parts[3] == "project":
        return EntryKind.PROJECT_FILE
    return EntryKind.COMPONENT_FILE


def parse_merge_hints(content: bytes, logical_path: str) -> tuple[DependencyHint, ...]:
    """Dependency hints declared under ``dependencies:`` in a metadata file.

    Malformed metadata yields no hints here; the resolver and ``validate``
    report the actual problem with the offending path.
    """
    try:
        data = yaml.safe_load(content.decode("utf-8")) or {}
    except (yaml.YAMLError, UnicodeDecodeError):
        logger.debug("Skipping merge hints of unparsable %s", logical_path)
        return ()
    raw = data.get("dependencies") if isinstance(data, dict) else None
    if not isinstance(raw, list):
        return ()
    hints: list[DependencyHint] = []
    for item in raw:
        try:
            hints.append(DependencyHint.model_validate(item))
        except ValidationError:
            logger.debug("Ignoring malformed dependency hint %r in %s", item, logical_path)
    return tuple(hints)


def load_pack_directory(
    root: Path,
    source: Optional[SourceDescriptor] = None,
    cache_state: CacheState = CacheState.FRESH,
    pack_id: Optional[str] = None,
    renderer: Optional[TemplateRenderer] = None,
) -> TemplatePack:
    """Build a ``TemplatePack`` snapshot from the directory at *root*.

    Args:
        root: Pack root containing ``architectures/`` (and usually ``frameworks/``).
        source: Where the pack came from; defaults to the directory itself.
        cache_state: Freshness to record on the snapshot.
        pack_id: Identifier; defaults to a digest of the resolved root path.
        renderer: Renderer used for the static variable scan.

    Raises:
        InvalidPackStructure: *root* is not a template pack.
    """
    root = Path(root)
    source = source or SourceDescriptor(path=root)
    check_pack_root(root, source.describe())
    renderer = renderer or TemplateRenderer()

    entries: list[TemplateEntry] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        for filename in sorted(filenames):
            if filename.startswith("."):
                continue
            full = Path(dirpath) / filename
            logical_path = full.relative_to(root).as_posix()
            kind = classify(logical_path)
            if kind is None:
                continue
            entries.append(_load_entry(full, logical_path, kind, renderer))

    entries.sort(key=lambda entry: entry.logical_path)
    if pack_id is None:
        pack_id = "local-" + hashlib.sha256(str(root.resolve()).encode("utf-8")).hexdigest()[:12]
    logger.debug("Loaded %d entries from %s", len(entries), source.describe())
    return TemplatePack(pack_id=pack_id, source=source, cache_state=cache_state, root=root, entries=tuple(entries))


def _load_entry(full: Path, logical_path: str, kind: EntryKind, renderer: TemplateRenderer) -> TemplateEntry:
    content = full.read_bytes()
    declared: frozenset[str] = frozenset()
    hints: tuple[DependencyHint, ...] = ()

    if logical_path.endswith(".j2"):
        try:
            declared = renderer.declared_variables(content.decode("utf-8"), logical_path)
        except TemplateSyntaxFailure as exc:
            # Kept loadable so validate() can list it; rendering raises again.
            logger.warning("%s", exc)
    elif kind == EntryKind.METADATA:
        hints = parse_merge_hints(content, logical_path)

    return TemplateEntry(
        logical_path=logical_path,
        kind=kind,
        content=content,
        declared_variables=declared,
        merge_hints=hints,
    )
