from __future__ import annotations

from enum import Enum

from cratetally.config import AnalysisConfig
from cratetally.matchers.common import PackageMatcher
from cratetally.matchers.conversions import ConversionMatcher
from cratetally.matchers.format_args import FormatArgumentClassifier
from cratetally.parsing import RustParser


class MatcherKind(str, Enum):
    CONVERSIONS = "conversions"
    FORMAT_ARGS = "format-args"


def build_matcher(kind: MatcherKind, package: str, config: AnalysisConfig, parser: RustParser) -> PackageMatcher:
    if kind == MatcherKind.CONVERSIONS:
        return ConversionMatcher(
            package,
            trait_name=config.conversion.trait_name,
            skip_derived=config.conversion.skip_derived,
        )
    if kind == MatcherKind.FORMAT_ARGS:
        return FormatArgumentClassifier(package, parser=parser)
    raise ValueError(f"unknown matcher: {kind}")
