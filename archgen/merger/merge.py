"""Non-destructive structural merge of generated fragments into existing files.

The existing document always wins: new keys and dependencies are inserted,
everything already present is kept byte for byte, and disagreements are
reported as ``Conflict`` records (config) or ``UpgradeNote`` records (build
descriptor versions) instead of being applied.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import PurePosixPath
from types import ModuleType
from typing import Optional

from archgen.errors import MergeError
from archgen.merger import gradle, properties, yaml_doc
from archgen.merger.document import Document, MappingNode, ScalarNode, reindent
from archgen.models import ArtifactKind, Conflict, MergePlan, UpgradeNote

logger = logging.getLogger(__name__)

_BUILD_DESCRIPTORS = ("build.gradle", "settings.gradle")
_CONFIG_SUFFIXES = (".yml", ".yaml", ".properties")


def infer_artifact_kind(path: str | PurePosixPath) -> ArtifactKind:
    """Classify an artifact by its file name.

    ``.j2`` suffixes are ignored so a template path and its target classify
    the same way.
    """
    name = PurePosixPath(str(path)).name
    if name.endswith(".j2"):
        name = name[:-3]
    if name in _BUILD_DESCRIPTORS:
        return ArtifactKind.STRUCTURED_BUILD_DESCRIPTOR
    if name.endswith(_CONFIG_SUFFIXES):
        return ArtifactKind.STRUCTURED_CONFIG
    return ArtifactKind.OPAQUE_TEXT


def syntax_for(path: str, kind: ArtifactKind) -> ModuleType:
    """Pick the syntax adapter for a structured artifact."""
    if kind == ArtifactKind.STRUCTURED_BUILD_DESCRIPTOR:
        return gradle
    if kind == ArtifactKind.STRUCTURED_CONFIG:
        if str(path).endswith(".properties"):
            return properties
        if str(path).endswith((".yml", ".yaml")):
            return yaml_doc
    raise MergeError(f"No structured syntax for {path} ({kind.value})")


@dataclass(frozen=True)
class MergeOutcome:
    """Merged text plus the plan describing what changed."""

    text: str
    plan: MergePlan

    @property
    def changed(self) -> bool:
        return bool(self.plan.added)


# ---------------------------------------------------------------------------
# StructuralMerger
# ---------------------------------------------------------------------------


class StructuralMerger:
    """Merges a rendered fragment into the current text of an artifact."""

    def merge(
        self,
        existing: str,
        fragment: str,
        kind: ArtifactKind,
        path: str = "",
        template_path: Optional[str] = None,
    ) -> MergeOutcome:
        """Merge *fragment* into *existing*.

        Args:
            existing: Current file content.
            fragment: Freshly rendered content for the same artifact.
            kind: Artifact kind; opaque text cannot be merged.
            path: Artifact path, used for syntax selection and reporting.
            template_path: Logical path of the template that produced *fragment*.

        Returns:
            A ``MergeOutcome``; its text equals *existing* when nothing was added.

        Raises:
            MergeError: *kind* is opaque or has no syntax adapter for *path*.
            DocumentParseError: Either side cannot be parsed.
        """
        if kind == ArtifactKind.OPAQUE_TEXT:
            raise MergeError(f"Opaque artifact {path} cannot be merged", template_path=template_path)

        syntax = syntax_for(path, kind)
        current = syntax.parse(existing, path)
        incoming = syntax.parse(fragment, template_path or path)
        plan = MergePlan()

        if syntax is gradle:
            self._merge_build(current, incoming, plan)
        else:
            self._merge_mapping(current, current.root, incoming, incoming.root, "", plan, path, template_path, 0)

        for conflict in plan.conflicts:
            logger.warning(
                "Conflict in %s at %s: keeping %r over %r", path, conflict.key, conflict.old_value, conflict.new_value
            )
        text = syntax.serialize(current) if plan.added else existing
        return MergeOutcome(text=text, plan=plan)

    # -- Config files --------------------------------------------------------

    def _merge_mapping(
        self,
        current: Document,
        target: MappingNode,
        incoming: Document,
        source: MappingNode,
        prefix: str,
        plan: MergePlan,
        path: str,
        template_path: Optional[str],
        depth: int,
    ) -> None:
        for key, new_node in source.entries.items():
            dotted = f"{prefix}.{key}" if prefix else key
            old_node = target.entries.get(key)

            if old_node is None:
                block = reindent(incoming.source(new_node), new_node.indent, target.child_indent)
                current.insert(target.insert_at, block, depth)
                plan.added.append(dotted)
            elif isinstance(old_node, MappingNode) and isinstance(new_node, MappingNode):
                self._merge_mapping(
                    current, old_node, incoming, new_node, dotted, plan, path, template_path, depth + 1
                )
            elif old_node.to_python() == new_node.to_python():
                # Flow and block spellings of one mapping compare equal.
                plan.unchanged.append(dotted)
            else:
                plan.conflicts.append(
                    Conflict(
                        key=dotted,
                        old_value=old_node.to_python(),
                        new_value=new_node.to_python(),
                        path=path,
                        template_path=template_path,
                    )
                )

    # -- Build descriptors ---------------------------------------------------

    def _merge_build(self, current: gradle.GradleDocument, incoming: gradle.GradleDocument, plan: MergePlan) -> None:
        for section in gradle.SECTIONS:
            new_block = incoming.root.entries.get(section)
            if not isinstance(new_block, MappingNode) or not new_block.entries:
                continue
            old_block = current.root.entries.get(section)

            if section == "include":
                self._merge_includes(current, old_block, new_block, plan)
            elif not isinstance(old_block, MappingNode):
                self._create_block(current, incoming, section, new_block)
                plan.added.extend(f"{section}.{entry_key}" for entry_key in new_block.entries)
            else:
                self._merge_entries(current, old_block, incoming, new_block, section, plan)

    def _merge_entries(
        self,
        current: Document,
        old_block: MappingNode,
        incoming: Document,
        new_block: MappingNode,
        section: str,
        plan: MergePlan,
    ) -> None:
        for entry_key, new_entry in new_block.entries.items():
            key = f"{section}.{entry_key}"
            old_entry = old_block.entries.get(entry_key)
            if old_entry is not None:
                plan.unchanged.append(key)
                if old_entry.value and new_entry.value and old_entry.value != new_entry.value:
                    identity = new_entry.key or entry_key
                    plan.notes.append(
                        UpgradeNote(
                            identity=identity, current_version=old_entry.value, proposed_version=new_entry.value
                        )
                    )
                    logger.info("%s is at %s; templates propose %s", identity, old_entry.value, new_entry.value)
                continue

            position = old_block.insert_at
            qualifier = new_entry.qualifier if isinstance(new_entry, ScalarNode) else None
            same_conf = [
                entry
                for entry in old_block.entries.values()
                if isinstance(entry, ScalarNode) and entry.qualifier == qualifier
            ]
            if same_conf:
                position = max(entry.end for entry in same_conf)
            block = reindent(incoming.source(new_entry), new_entry.indent, old_block.child_indent)
            current.insert(position, block, 1)
            plan.added.append(key)

    @staticmethod
    def _create_block(
        current: gradle.GradleDocument, incoming: Document, section: str, new_block: MappingNode
    ) -> None:
        block = reindent(incoming.source(new_block), new_block.indent, 0)
        if section == "plugins":
            position = current.preamble_end
            current.insert(position, block + ([""] if position < len(current.lines) else []))
            return
        position = len(current.lines)
        lead = [""] if current.lines and current.lines[-1].strip() else []
        current.insert(position, lead + block)

    @staticmethod
    def _merge_includes(
        current: Document, old_block: Optional[object], new_block: MappingNode, plan: MergePlan
    ) -> None:
        if isinstance(old_block, MappingNode):
            position, indent, known = old_block.insert_at, old_block.indent, old_block.entries
        else:
            position, indent, known = len(current.lines), 0, {}
        for module in new_block.entries:
            key = f"include.{module}"
            if module in known:
                plan.unchanged.append(key)
                continue
            current.insert(position, [gradle.include_line(module, indent)])
            plan.added.append(key)
