"""Single-field tuple structs and their ``From<Field>`` implementations.

Candidates and impls are collected from every file of a package before they
are joined, because the impl often lives in a different file than the struct.
The join is syntactic: type aliases, re-exports and impls generated by macros
are not resolved and show up as ``no-conversion``.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass

from tree_sitter import Node

from cratetally.matchers.common import last_segment, node_line, type_name, type_signature
from cratetally.parsing import COMMENT_TYPES, SyntaxTree, walk
from cratetally.schemas import ConversionRecord, MatchRecord


@dataclass(slots=True)
class _Candidate:
    file: str
    line: int
    name: str
    signature: str
    field_type: str


def _has_derive(tree: SyntaxTree, node: Node) -> bool:
    sibling = node.prev_named_sibling
    while sibling is not None and (sibling.type == "attribute_item" or sibling.type in COMMENT_TYPES):
        if sibling.type == "attribute_item" and "derive" in tree.text(sibling):
            return True
        sibling = sibling.prev_named_sibling
    return False


class ConversionMatcher:
    name = "conversions"

    def __init__(self, package: str, trait_name: str = "From", skip_derived: bool = False) -> None:
        self.package = package
        self.trait_name = trait_name
        self.skip_derived = skip_derived
        self.summary: Counter[str] = Counter()
        self._candidates: list[_Candidate] = []
        self._impls: set[tuple[str, str]] = set()

    def collect(self, tree: SyntaxTree) -> None:
        for node in walk(tree.root):
            if node.type == "struct_item":
                self._collect_struct(tree, node)
            elif node.type == "impl_item":
                self._collect_impl(tree, node)

    def _collect_struct(self, tree: SyntaxTree, node: Node) -> None:
        body = node.child_by_field_name("body")
        if body is None or body.type != "ordered_field_declaration_list":
            return
        field_types = body.children_by_field_name("type")
        if len(field_types) != 1:
            return
        name_node = node.child_by_field_name("name")
        if name_node is None:
            return
        if self.skip_derived and _has_derive(tree, node):
            return

        field_type = field_types[0]
        self._candidates.append(
            _Candidate(
                file=tree.path,
                line=node_line(node),
                name=tree.text(name_node),
                signature=type_signature(tree, field_type),
                field_type=tree.text(field_type),
            )
        )

    def _collect_impl(self, tree: SyntaxTree, node: Node) -> None:
        trait = node.child_by_field_name("trait")
        target = node.child_by_field_name("type")
        if trait is None or target is None or trait.type != "generic_type":
            return
        base = trait.child_by_field_name("type")
        if base is None or last_segment(tree, base) != self.trait_name:
            return

        arguments = trait.child_by_field_name("type_arguments")
        if arguments is None:
            return
        type_args = [child for child in arguments.named_children if child.type not in COMMENT_TYPES]
        if len(type_args) != 1 or type_args[0].type in {"lifetime", "type_binding"}:
            return

        target_name = type_name(tree, target)
        if target_name:
            self._impls.add((target_name, type_signature(tree, type_args[0])))

    def finish(self) -> list[MatchRecord]:
        records: list[MatchRecord] = []
        for candidate in sorted(self._candidates, key=lambda item: (item.file, item.line, item.name)):
            records.append(
                ConversionRecord(
                    package=self.package,
                    file=candidate.file,
                    line=candidate.line,
                    struct_name=candidate.name,
                    field_type=candidate.field_type,
                    has_conversion=(candidate.name, candidate.signature) in self._impls,
                )
            )
        return records
