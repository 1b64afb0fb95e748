from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

import tree_sitter_rust
from tree_sitter import Language, Node, Parser, Tree

from cratetally.schemas import SourceFile

RUST_LANGUAGE = Language(tree_sitter_rust.language())
COMMENT_TYPES = {"line_comment", "block_comment"}

_EXPRESSION_PREFIX = b"fn __cratetally_expr() { let _ = "
_EXPRESSION_SUFFIX = b"; }"


class ParseError(ValueError):
    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason


def walk(node: Node) -> Iterator[Node]:
    """Depth-first pre-order traversal without recursion."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children))


def _first_error_line(node: Node) -> int:
    for item in walk(node):
        if item.type == "ERROR" or item.is_missing:
            return item.start_point[0] + 1
    return node.start_point[0] + 1


@dataclass(slots=True)
class SyntaxTree:
    source_file: SourceFile
    tree: Tree

    @property
    def root(self) -> Node:
        return self.tree.root_node

    @property
    def source(self) -> bytes:
        return self.source_file.text

    @property
    def path(self) -> str:
        return self.source_file.path

    def text(self, node: Node) -> str:
        return self.source[node.start_byte : node.end_byte].decode("utf-8", errors="replace")


@dataclass(slots=True)
class ParsedExpression:
    node: Node
    tree: SyntaxTree


class RustParser:
    """tree-sitter-rust wrapper; instances are not safe to share between threads."""

    def __init__(self, max_file_bytes: int | None = None) -> None:
        self.max_file_bytes = max_file_bytes
        self._parser = Parser(RUST_LANGUAGE)

    def parse(self, source_file: SourceFile) -> SyntaxTree:
        size = len(source_file.text)
        if self.max_file_bytes is not None and size > self.max_file_bytes:
            raise ParseError("too-large", f"{source_file.path}: {size} bytes exceeds {self.max_file_bytes}")
        try:
            source_file.text.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ParseError("decode-error", f"{source_file.path}: not valid UTF-8") from exc

        tree = self._parser.parse(source_file.text)
        if tree.root_node.has_error:
            line = _first_error_line(tree.root_node)
            raise ParseError("parse-error", f"{source_file.path}:{line}: syntax error")
        return SyntaxTree(source_file=source_file, tree=tree)

    def parse_expression(self, text: str, path: str = "<expression>") -> ParsedExpression:
        """Parse ``text`` as a single expression; ``path`` labels the wrapper tree."""
        source = _EXPRESSION_PREFIX + text.encode("utf-8") + _EXPRESSION_SUFFIX
        tree = self._parser.parse(source)
        root = tree.root_node
        if root.has_error:
            raise ParseError("parse-error", f"not an expression: {text!r}")

        items = [child for child in root.named_children if child.type not in COMMENT_TYPES]
        if len(items) != 1 or items[0].type != "function_item":
            raise ParseError("parse-error", f"not an expression: {text!r}")
        body = items[0].child_by_field_name("body")
        statements = [] if body is None else [
            child for child in body.named_children if child.type not in COMMENT_TYPES
        ]
        if len(statements) != 1 or statements[0].type != "let_declaration":
            raise ParseError("parse-error", f"not a single expression: {text!r}")
        value = statements[0].child_by_field_name("value")
        if value is None:
            raise ParseError("parse-error", f"not an expression: {text!r}")
        wrapper = SourceFile(package="", path=path, text=source)
        return ParsedExpression(node=value, tree=SyntaxTree(source_file=wrapper, tree=tree))
