from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum


class ConversionStatus(str, Enum):
    HAS_CONVERSION = "has-conversion"
    NO_CONVERSION = "no-conversion"


class ExpressionKind(str, Enum):
    LITERAL = "literal"
    IDENTIFIER = "identifier"
    FIELD_ACCESS = "field-access"
    METHOD_CALL = "method-call"
    FUNCTION_CALL = "function-call"
    OPERATOR = "operator"
    MACRO_CALL = "macro-call"
    OTHER = "other"
    INLINE_CAPTURE = "inline-capture"


@dataclass(frozen=True, slots=True)
class PackageRef:
    name: str
    version: str
    download_url: str
    downloads: int = 0
    checksum: str | None = None

    @property
    def label(self) -> str:
        return f"{self.name}-{self.version}" if self.version else self.name


@dataclass(frozen=True, slots=True)
class SourceFile:
    package: str
    path: str
    text: bytes


class MatchRecord:
    """One observation produced by a matcher; counted under ``category``."""

    @property
    def category(self) -> str:
        raise NotImplementedError


@dataclass(frozen=True, slots=True)
class ConversionRecord(MatchRecord):
    package: str
    file: str
    line: int
    struct_name: str
    field_type: str
    has_conversion: bool

    @property
    def category(self) -> str:
        status = ConversionStatus.HAS_CONVERSION if self.has_conversion else ConversionStatus.NO_CONVERSION
        return status.value


@dataclass(frozen=True, slots=True)
class ArgumentRecord(MatchRecord):
    package: str
    file: str
    line: int
    macro: str
    index: int
    kind: ExpressionKind

    @property
    def category(self) -> str:
        return self.kind.value


@dataclass(slots=True)
class PackageOutcome:
    package: PackageRef
    tally: Counter[str] = field(default_factory=Counter)
    summary: Counter[str] = field(default_factory=Counter)
    files_parsed: int = 0
    file_skips: Counter[str] = field(default_factory=Counter)
    skip_reason: str | None = None

    @property
    def processed(self) -> bool:
        return self.skip_reason is None


@dataclass(slots=True)
class AnalysisReport:
    matcher: str
    requested: int
    processed: int = 0
    skipped_packages: dict[str, int] = field(default_factory=dict)
    skipped_names: list[str] = field(default_factory=list)
    files_parsed: int = 0
    file_skips: dict[str, int] = field(default_factory=dict)
    rows: list[tuple[str, int]] = field(default_factory=list)
    summary: dict[str, int] = field(default_factory=dict)

    @property
    def skipped(self) -> int:
        return sum(self.skipped_packages.values())

    @property
    def total_records(self) -> int:
        return sum(count for _, count in self.rows)
