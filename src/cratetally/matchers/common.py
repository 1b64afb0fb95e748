from __future__ import annotations

from collections import Counter
from typing import Protocol

from tree_sitter import Node

from cratetally.parsing import SyntaxTree, walk
from cratetally.schemas import MatchRecord


class MatcherInternalError(RuntimeError):
    pass


class PackageMatcher(Protocol):
    """Collects observations file by file, then emits records for the package."""

    name: str
    summary: Counter[str]

    def collect(self, tree: SyntaxTree) -> None:
        ...

    def finish(self) -> list[MatchRecord]:
        ...


def node_line(node: Node) -> int:
    return node.start_point[0] + 1


def type_signature(tree: SyntaxTree, node: Node) -> str:
    """Leaf tokens of a type joined by single spaces, so formatting does not matter."""
    tokens = [tree.text(item) for item in walk(node) if item.child_count == 0 and item.end_byte > item.start_byte]
    return " ".join(token.strip() for token in tokens if token.strip())


def last_segment(tree: SyntaxTree, node: Node) -> str | None:
    if node.type in {"identifier", "type_identifier"}:
        return tree.text(node)
    if node.type in {"scoped_identifier", "scoped_type_identifier"}:
        name = node.child_by_field_name("name")
        return tree.text(name) if name is not None else None
    return None


def type_name(tree: SyntaxTree, node: Node) -> str | None:
    """Base name of a nominal type: ``a::Meters<T>`` gives ``Meters``."""
    if node.type == "generic_type":
        base = node.child_by_field_name("type")
        return type_name(tree, base) if base is not None else None
    if node.type in {"type_identifier", "scoped_type_identifier"}:
        return last_segment(tree, node)
    return None
