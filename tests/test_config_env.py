from __future__ import annotations

import pytest

from cratetally.config import AnalysisConfig, ConfigError, ensure_config


def test_env_overrides(monkeypatch) -> None:
    monkeypatch.setenv("CRATETALLY_REGISTRY_URL", "http://127.0.0.1:9090/api/v1/")
    monkeypatch.setenv("CRATETALLY_USER_AGENT", "tally-tests (ops@example.com)")
    monkeypatch.setenv("CRATETALLY_WORKERS", "3")
    monkeypatch.setenv("CRATETALLY_TIMEOUT", "120")
    monkeypatch.setenv("CRATETALLY_VERIFY_CHECKSUMS", "true")

    config = AnalysisConfig.default()

    assert config.registry.url == "http://127.0.0.1:9090/api/v1"
    assert config.registry.user_agent == "tally-tests (ops@example.com)"
    assert config.workers == 3
    assert config.timeout_seconds == 120.0
    assert config.registry.verify_checksums is True


def test_invalid_env_values_are_ignored(monkeypatch) -> None:
    monkeypatch.setenv("CRATETALLY_WORKERS", "many")
    monkeypatch.setenv("CRATETALLY_TIMEOUT", "soon")

    config = AnalysisConfig.default()

    assert config.workers == 8
    assert config.timeout_seconds == 0.0


def test_config_file_values_are_clamped(tmp_path) -> None:
    path = tmp_path / "cratetally.yaml"
    path.write_text("registry:\n  page_size: 500\nworkers: 0\nconversion:\n  skip_derived: true\n", encoding="utf-8")

    config = AnalysisConfig.from_path(path)

    assert config.registry.page_size == 100
    assert config.workers == 1
    assert config.conversion.skip_derived is True
    assert config.conversion.trait_name == "From"


def test_malformed_config_is_rejected(tmp_path) -> None:
    path = tmp_path / "cratetally.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ConfigError):
        AnalysisConfig.from_path(path)


def test_non_numeric_config_value_is_rejected(tmp_path) -> None:
    path = tmp_path / "cratetally.yaml"
    path.write_text("workers: plenty\n", encoding="utf-8")

    with pytest.raises(ConfigError, match="invalid value"):
        AnalysisConfig.from_path(path)


def test_ensure_config_keeps_existing_file(tmp_path) -> None:
    path = tmp_path / "cratetally.yaml"
    path.write_text("workers: 2\n", encoding="utf-8")

    ensure_config(path)
    assert path.read_text(encoding="utf-8") == "workers: 2\n"

    ensure_config(path, force=True)
    assert AnalysisConfig.from_path(path).workers == 8
