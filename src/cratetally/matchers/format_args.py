"""Argument expressions of formatting macro calls.

Every call of a recognized macro is classified, including calls nested in the
arguments of other macros: tree-sitter keeps macro arguments as raw token
trees, so arguments are re-parsed as expressions and searched again.
"""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass
from enum import Enum

from tree_sitter import Node

from cratetally.logging import get_logger
from cratetally.matchers.common import MatcherInternalError, last_segment, node_line
from cratetally.parsing import COMMENT_TYPES, ParsedExpression, ParseError, RustParser, SyntaxTree, walk
from cratetally.schemas import ArgumentRecord, ExpressionKind, MatchRecord

logger = get_logger("matchers.format_args")

LITERAL_TYPES = {
    "string_literal",
    "raw_string_literal",
    "char_literal",
    "boolean_literal",
    "integer_literal",
    "float_literal",
}
IDENTIFIER_TYPES = {"identifier", "self"}
OPERATOR_TYPES = {"binary_expression", "unary_expression", "reference_expression"}
SUMMARY_KEYS = (
    "calls-with-arguments",
    "inlineable-today",
    "inlineable-with-field-access",
    "simple-field-access",
    "nested-field-access",
)

_IDENT_RE = re.compile(r"^(?:r#)?[A-Za-z_][A-Za-z0-9_]*$")
_COUNT_ARG_RE = re.compile(r"((?:r#)?[A-Za-z_][A-Za-z0-9_]*)\$")
_STRING_RE = re.compile(r'^"(.*)"$', re.DOTALL)
_RAW_STRING_RE = re.compile(r'^r(#*)"(.*)"\1$', re.DOTALL)
_ESCAPE_RE = re.compile(r"\\(?:u\{[0-9A-Fa-f_]*\}|x[0-9A-Fa-f]{2}|.)", re.DOTALL)


class FormatMacro(str, Enum):
    FORMAT_ARGS = "format_args"
    FORMAT = "format"
    PANIC = "panic"
    UNREACHABLE = "unreachable"
    UNIMPLEMENTED = "unimplemented"
    TODO = "todo"
    INFO = "info"
    DEBUG = "debug"
    WARN = "warn"
    ERROR = "error"
    TRACE = "trace"
    PRINT = "print"
    PRINTLN = "println"
    EPRINT = "eprint"
    EPRINTLN = "eprintln"
    WRITE = "write"
    WRITELN = "writeln"
    ASSERT = "assert"
    ASSERT_EQ = "assert_eq"
    ASSERT_NE = "assert_ne"

    @property
    def format_index(self) -> int:
        """Position of the format string among the macro arguments."""
        return _FORMAT_INDEX.get(self, 0)

    @property
    def accepts_fields(self) -> bool:
        """log/tracing macros allow ``target:`` and structured fields before the message."""
        return self in _LOG_MACROS

    @classmethod
    def lookup(cls, name: str) -> FormatMacro | None:
        return _BY_NAME.get(name)


_FORMAT_INDEX = {
    FormatMacro.WRITE: 1,
    FormatMacro.WRITELN: 1,
    FormatMacro.ASSERT: 1,
    FormatMacro.ASSERT_EQ: 2,
    FormatMacro.ASSERT_NE: 2,
}
_LOG_MACROS = {FormatMacro.INFO, FormatMacro.DEBUG, FormatMacro.WARN, FormatMacro.ERROR, FormatMacro.TRACE}
_BY_NAME = {item.value: item for item in FormatMacro}


@dataclass(slots=True)
class MacroArgument:
    name: str | None
    text: str
    nodes: list[Node]


def split_arguments(tree: SyntaxTree, token_tree: Node) -> list[MacroArgument]:
    """Split a macro token tree on its top-level commas."""
    children = token_tree.children
    if len(children) < 2:
        raise MatcherInternalError("token tree without delimiters")

    groups: list[list[Node]] = [[]]
    for child in children[1:-1]:
        if child.type == ",":
            groups.append([])
        elif child.type not in COMMENT_TYPES:
            groups[-1].append(child)
    if not groups[-1]:
        groups.pop()

    arguments: list[MacroArgument] = []
    for group in groups:
        if not group:
            raise MatcherInternalError("empty macro argument")
        name = None
        if len(group) >= 3 and group[0].type == "identifier" and group[1].type == "=":
            name = tree.text(group[0])
            group = group[2:]
        text = tree.source[group[0].start_byte : group[-1].end_byte].decode("utf-8", errors="replace")
        arguments.append(MacroArgument(name=name, text=text, nodes=group))
    return arguments


def format_literal(tree: SyntaxTree, argument: MacroArgument) -> str | None:
    """Body of a string literal argument, with escape sequences blanked out."""
    if len(argument.nodes) != 1:
        return None
    node = argument.nodes[0]
    if node.type == "string_literal":
        match = _STRING_RE.match(tree.text(node))
        return _ESCAPE_RE.sub(" ", match.group(1)) if match else None
    if node.type == "raw_string_literal":
        match = _RAW_STRING_RE.match(tree.text(node))
        return match.group(2) if match else None
    return None


def inline_captures(template: str, named: set[str] | frozenset[str] = frozenset()) -> list[str]:
    """Identifiers a format string captures from scope, each listed once."""
    captures: list[str] = []
    index = 0
    while index < len(template):
        char = template[index]
        if char == "{":
            if template.startswith("{{", index):
                index += 2
                continue
            end = template.find("}", index + 1)
            if end == -1:
                break
            argument, _, spec = template[index + 1 : end].partition(":")
            argument = argument.strip()
            names: list[str] = []
            if argument and argument != "_" and _IDENT_RE.match(argument):
                names.append(argument)
            names.extend(match.group(1) for match in _COUNT_ARG_RE.finditer(spec))
            for name in names:
                if name not in named and name not in captures:
                    captures.append(name)
            index = end + 1
        elif template.startswith("}}", index):
            index += 2
        else:
            index += 1
    return captures


def classify_expression(node: Node) -> ExpressionKind:
    kind = node.type
    if kind in LITERAL_TYPES:
        return ExpressionKind.LITERAL
    if kind in IDENTIFIER_TYPES:
        return ExpressionKind.IDENTIFIER
    if kind == "field_expression":
        return ExpressionKind.FIELD_ACCESS
    if kind == "call_expression":
        function = node.child_by_field_name("function")
        if function is not None and function.type == "generic_function":
            function = function.child_by_field_name("function")
        if function is not None and function.type == "field_expression":
            return ExpressionKind.METHOD_CALL
        return ExpressionKind.FUNCTION_CALL
    if kind in OPERATOR_TYPES:
        return ExpressionKind.OPERATOR
    if kind == "macro_invocation":
        return ExpressionKind.MACRO_CALL
    return ExpressionKind.OTHER


def field_access_depth(node: Node) -> str | None:
    """``simple`` for ``a.b``, ``nested`` for ``a.b.c``, None unless the chain starts at a name."""
    if node.type != "field_expression":
        return None
    base = node.child_by_field_name("value")
    if base is not None and base.type in IDENTIFIER_TYPES:
        return "simple"
    while base is not None and base.type == "field_expression":
        base = base.child_by_field_name("value")
    if base is not None and base.type in IDENTIFIER_TYPES:
        return "nested"
    return None


class FormatArgumentClassifier:
    name = "format-args"

    def __init__(self, package: str, parser: RustParser | None = None) -> None:
        self.package = package
        self.parser = parser or RustParser()
        self.summary: Counter[str] = Counter(dict.fromkeys(SUMMARY_KEYS, 0))
        self._records: list[MatchRecord] = []

    def collect(self, tree: SyntaxTree) -> None:
        for node in walk(tree.root):
            if node.type == "macro_invocation":
                self._collect_call(tree, node, node_line(node))

    def _macro(self, tree: SyntaxTree, node: Node) -> FormatMacro | None:
        macro_node = node.child_by_field_name("macro")
        if macro_node is None:
            return None
        name = last_segment(tree, macro_node)
        return FormatMacro.lookup(name) if name else None

    def _record(self, tree: SyntaxTree, line: int, macro: FormatMacro, index: int, kind: ExpressionKind) -> None:
        self._records.append(
            ArgumentRecord(
                package=self.package,
                file=tree.path,
                line=line,
                macro=macro.value,
                index=index,
                kind=kind,
            )
        )

    def _collect_call(self, tree: SyntaxTree, node: Node, line: int) -> None:
        token_tree = next((child for child in node.children if child.type == "token_tree"), None)
        if token_tree is None:
            return
        macro = self._macro(tree, node)
        try:
            arguments = split_arguments(tree, token_tree)
        except MatcherInternalError as exc:
            logger.debug("%s:%d: unsplittable macro arguments (%s)", tree.path, line, exc)
            if macro is not None:
                self._record(tree, line, macro, 1, ExpressionKind.OTHER)
                self._count_call([ExpressionKind.OTHER], [None])
            return

        if macro is None:
            for argument in arguments:
                self._collect_nested_text(tree, argument.text, line)
            return
        position = self._format_position(tree, macro, arguments)
        for argument in arguments[:position]:
            self._collect_nested_text(tree, argument.text, line)
        if position is None:
            return

        explicit = arguments[position + 1 :]
        kinds: list[ExpressionKind] = []
        depths: list[str | None] = []
        for index, argument in enumerate(explicit, start=1):
            parsed = self._parse_argument(tree, argument, line)
            kind = classify_expression(parsed.node) if parsed is not None else ExpressionKind.OTHER
            kinds.append(kind)
            depths.append(field_access_depth(parsed.node) if parsed is not None else None)
            self._record(tree, line, macro, index, kind)
            if parsed is not None:
                self._collect_nested(parsed, line)

        template = format_literal(tree, arguments[position])
        if template is not None:
            named = {argument.name for argument in explicit if argument.name}
            for _ in inline_captures(template, named):
                self._record(tree, line, macro, 0, ExpressionKind.INLINE_CAPTURE)

        self._count_call(kinds, depths)

    def _format_position(self, tree: SyntaxTree, macro: FormatMacro, arguments: list[MacroArgument]) -> int | None:
        if not macro.accepts_fields:
            return macro.format_index if len(arguments) > macro.format_index else None
        # The message is the first unnamed string literal after any target and fields.
        for position in range(macro.format_index, len(arguments)):
            argument = arguments[position]
            if argument.name is None and format_literal(tree, argument) is not None:
                return position
        return None

    def _count_call(self, kinds: list[ExpressionKind], depths: list[str | None]) -> None:
        for depth in depths:
            if depth is not None:
                self.summary[f"{depth}-field-access"] += 1
        if not kinds:
            return
        self.summary["calls-with-arguments"] += 1
        if all(kind == ExpressionKind.IDENTIFIER for kind in kinds):
            self.summary["inlineable-today"] += 1
        if all(
            kind == ExpressionKind.IDENTIFIER or (kind == ExpressionKind.FIELD_ACCESS and depth is not None)
            for kind, depth in zip(kinds, depths)
        ):
            self.summary["inlineable-with-field-access"] += 1

    def _parse_argument(self, tree: SyntaxTree, argument: MacroArgument, line: int) -> ParsedExpression | None:
        try:
            return self.parser.parse_expression(argument.text, path=tree.path)
        except ParseError as exc:
            logger.debug("%s:%d: unclassified argument (%s)", tree.path, line, exc)
            return None

    def _collect_nested_text(self, tree: SyntaxTree, text: str, line: int) -> None:
        if "!" not in text:
            return
        try:
            parsed = self.parser.parse_expression(text, path=tree.path)
        except ParseError:
            return
        self._collect_nested(parsed, line)

    def _collect_nested(self, parsed: ParsedExpression, line: int) -> None:
        for node in walk(parsed.node):
            if node.type == "macro_invocation":
                self._collect_call(parsed.tree, node, line)

    def finish(self) -> list[MatchRecord]:
        return list(self._records)
