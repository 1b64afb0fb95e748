from __future__ import annotations

import json
import re
from collections.abc import Iterable
from fnmatch import fnmatch
from pathlib import Path


def _expand_braces(pattern: str) -> list[str]:
    match = re.search(r"\{([^{}]+)\}", pattern)
    if not match:
        return [pattern]
    options = [item.strip() for item in match.group(1).split(",") if item.strip()]
    if not options:
        return [pattern]
    prefix = pattern[: match.start()]
    suffix = pattern[match.end() :]
    expanded: list[str] = []
    for option in options:
        expanded.extend(_expand_braces(f"{prefix}{option}{suffix}"))
    return expanded


def path_matches(path: str, patterns: Iterable[str]) -> bool:
    expanded_patterns: list[str] = []
    for pattern in patterns:
        expanded_patterns.extend(_expand_braces(pattern))
    return any(fnmatch(path, pattern) for pattern in expanded_patterns)


def is_included(path: str, include_patterns: list[str], exclude_patterns: list[str]) -> bool:
    return path_matches(path, include_patterns) and not path_matches(path, exclude_patterns)


def dumps_json(payload: dict) -> str:
    return json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True)


def write_json(path: Path, payload: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dumps_json(payload) + "\n", encoding="utf-8")


def split_name_version(stem: str) -> tuple[str, str]:
    """Split a ``name-1.2.3`` archive or directory stem into name and version."""
    match = re.match(r"^(?P<name>.+?)-(?P<version>\d+\.\d+\.\d+[\w.+-]*)$", stem)
    if not match:
        return stem, ""
    return match.group("name"), match.group("version")


def format_reasons(reasons: dict[str, int]) -> str:
    return ", ".join(f"{reason}={count}" for reason, count in sorted(reasons.items()))
