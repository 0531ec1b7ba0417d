"""Structural merge of generated fragments into existing config and build files."""

from archgen.merger.document import Document, MappingNode, ScalarNode, SequenceNode
from archgen.merger.merge import MergeOutcome, StructuralMerger, infer_artifact_kind, syntax_for

__all__ = [
    "Document",
    "MappingNode",
    "MergeOutcome",
    "ScalarNode",
    "SequenceNode",
    "StructuralMerger",
    "infer_artifact_kind",
    "syntax_for",
]
