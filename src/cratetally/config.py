from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

DEFAULT_CONFIG = """registry:
  url: "https://crates.io/api/v1"
  download_url: "https://static.crates.io/crates"
  user_agent: "cratetally (https://github.com/cratetally/cratetally)"
  page_size: 100
  timeout: 30.0
  max_retries: 5
  backoff_seconds: 1.0
  min_interval: 1.0
  verify_checksums: false
fetch:
  max_archive_bytes: 104857600
parse:
  max_file_bytes: 1000000
include:
  - "**/*.rs"
  - "*.rs"
exclude:
  - "**/target/**"
  - "**/.git/**"
workers: 8
timeout_seconds: 0
conversion:
  trait_name: From
  skip_derived: false
"""

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


class ConfigError(ValueError):
    pass


@dataclass(slots=True)
class RegistryConfig:
    url: str = "https://crates.io/api/v1"
    download_url: str = "https://static.crates.io/crates"
    user_agent: str = "cratetally (https://github.com/cratetally/cratetally)"
    page_size: int = 100
    timeout: float = 30.0
    max_retries: int = 5
    backoff_seconds: float = 1.0
    min_interval: float = 1.0
    verify_checksums: bool = False


@dataclass(slots=True)
class FetchConfig:
    max_archive_bytes: int = 100 * 1024 * 1024


@dataclass(slots=True)
class ParseConfig:
    max_file_bytes: int = 1_000_000


@dataclass(slots=True)
class ConversionConfig:
    trait_name: str = "From"
    skip_derived: bool = False


@dataclass(slots=True)
class AnalysisConfig:
    registry: RegistryConfig
    fetch: FetchConfig
    parse: ParseConfig
    include: list[str]
    exclude: list[str]
    workers: int
    timeout_seconds: float
    conversion: ConversionConfig = field(default_factory=ConversionConfig)

    @classmethod
    def default(cls) -> AnalysisConfig:
        data = yaml.safe_load(DEFAULT_CONFIG)
        return cls.from_dict(data)

    @classmethod
    def from_path(cls, path: Path) -> AnalysisConfig:
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigError(f"cannot read config {path}: {exc}") from exc
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError(f"config {path} must be a mapping")
        try:
            return cls.from_dict(data)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"invalid value in config {path}: {exc}") from exc

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AnalysisConfig:
        registry_data = data.get("registry", {}) or {}
        registry = RegistryConfig(
            url=str(registry_data.get("url", "https://crates.io/api/v1")).rstrip("/"),
            download_url=str(registry_data.get("download_url", "https://static.crates.io/crates")).rstrip("/"),
            user_agent=str(registry_data.get("user_agent", "cratetally (https://github.com/cratetally/cratetally)")),
            page_size=max(1, min(100, int(registry_data.get("page_size", 100)))),
            timeout=float(registry_data.get("timeout", 30.0)),
            max_retries=max(0, int(registry_data.get("max_retries", 5))),
            backoff_seconds=float(registry_data.get("backoff_seconds", 1.0)),
            min_interval=float(registry_data.get("min_interval", 1.0)),
            verify_checksums=bool(registry_data.get("verify_checksums", False)),
        )
        fetch_data = data.get("fetch", {}) or {}
        fetch = FetchConfig(
            max_archive_bytes=int(fetch_data.get("max_archive_bytes", 100 * 1024 * 1024)),
        )
        parse_data = data.get("parse", {}) or {}
        parse = ParseConfig(
            max_file_bytes=int(parse_data.get("max_file_bytes", 1_000_000)),
        )
        conversion_data = data.get("conversion", {}) or {}
        conversion = ConversionConfig(
            trait_name=str(conversion_data.get("trait_name", "From")),
            skip_derived=bool(conversion_data.get("skip_derived", False)),
        )

        config = cls(
            registry=registry,
            fetch=fetch,
            parse=parse,
            include=list(data.get("include", ["**/*.rs", "*.rs"])),
            exclude=list(data.get("exclude", ["**/target/**", "**/.git/**"])),
            workers=max(1, int(data.get("workers", 8))),
            timeout_seconds=max(0.0, float(data.get("timeout_seconds", 0))),
            conversion=conversion,
        )
        _apply_env_overrides(config)
        return config


def _apply_env_overrides(config: AnalysisConfig) -> None:
    env_url = os.getenv("CRATETALLY_REGISTRY_URL", "").strip()
    env_user_agent = os.getenv("CRATETALLY_USER_AGENT", "").strip()
    env_workers = os.getenv("CRATETALLY_WORKERS", "").strip()
    env_timeout = os.getenv("CRATETALLY_TIMEOUT", "").strip()
    env_verify = os.getenv("CRATETALLY_VERIFY_CHECKSUMS", "").strip().lower()

    if env_url:
        config.registry.url = env_url.rstrip("/")
    if env_user_agent:
        config.registry.user_agent = env_user_agent
    if env_workers:
        try:
            config.workers = max(1, int(env_workers))
        except ValueError:
            pass
    if env_timeout:
        try:
            config.timeout_seconds = max(0.0, float(env_timeout))
        except ValueError:
            pass

    if env_verify in _TRUTHY:
        config.registry.verify_checksums = True
    elif env_verify in _FALSY:
        config.registry.verify_checksums = False


def ensure_config(path: Path, force: bool = False) -> None:
    if path.exists() and not force:
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(DEFAULT_CONFIG, encoding="utf-8")
