"""Configuration stories: layered settings become analyzer options."""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

import pytest

from dep_guardian import config as config_mod
from dep_guardian.config import (
    AnalyzerSettings,
    get_analyzer_settings,
    get_default_cache_path,
    get_default_config_path,
)
from dep_guardian.rate_limiter import RateLimit

_NATIVE_VARS = (
    "DEP_GUARDIAN_REGISTRY_URL",
    "DEP_GUARDIAN_TIMEOUT",
    "DEP_GUARDIAN_MAX_RETRIES",
    "DEP_GUARDIAN_RATE_LIMIT_COUNT",
    "DEP_GUARDIAN_CACHE_TTL",
    "DEP_GUARDIAN_CACHE_PATH",
    "DEP_GUARDIAN_ALLOWED_LICENSES",
)


class FakeConfig:
    """Stands in for the layered config object."""

    def __init__(self, data: dict[str, Any]) -> None:
        self.data = data

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def as_dict(self) -> dict[str, Any]:
        return self.data


@pytest.fixture
def bundled_defaults(monkeypatch: pytest.MonkeyPatch) -> dict[str, Any]:
    """Serve the bundled defaults without reading user or host layers."""
    for name in _NATIVE_VARS:
        monkeypatch.delenv(name, raising=False)
    with get_default_config_path().open("rb") as f:
        data = tomllib.load(f)
    monkeypatch.setattr(config_mod, "get_config", lambda: FakeConfig(data))
    return data


# ════════════════════════════════════════════════════════════════════════════
# Paths
# ════════════════════════════════════════════════════════════════════════════


@pytest.mark.os_agnostic
def test_default_config_file_is_bundled() -> None:
    path = get_default_config_path()

    assert path.name == "defaultconfig.toml"
    assert path.exists()


@pytest.mark.os_agnostic
def test_default_config_declares_analyzer_and_cache_sections() -> None:
    with get_default_config_path().open("rb") as f:
        data = tomllib.load(f)

    assert data["analyzer"]["registry_url"] == "https://registry.npmjs.org"
    assert data["cache"]["ttl"] == 3600.0


@pytest.mark.os_agnostic
def test_default_cache_path_honors_xdg_cache_home(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path))

    assert get_default_cache_path() == tmp_path / "dep-guardian" / "registry-cache.json"


# ════════════════════════════════════════════════════════════════════════════
# get_analyzer_settings
# ════════════════════════════════════════════════════════════════════════════


@pytest.mark.os_agnostic
def test_settings_come_from_bundled_defaults(bundled_defaults: dict[str, Any]) -> None:
    settings = get_analyzer_settings()

    assert settings.registry_url == "https://registry.npmjs.org"
    assert settings.timeout == 30.0
    assert settings.max_retries == 3
    assert settings.rate_limit_count == 100
    assert settings.include_dev is False
    assert settings.cache_ttl == 3600.0


@pytest.mark.os_agnostic
def test_empty_cache_path_means_platform_cache_dir(
    bundled_defaults: dict[str, Any], monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path))

    assert get_analyzer_settings().cache_path == tmp_path / "dep-guardian" / "registry-cache.json"


@pytest.mark.os_agnostic
def test_disabled_persistence_has_no_cache_path(bundled_defaults: dict[str, Any]) -> None:
    bundled_defaults["cache"]["persist"] = False

    assert get_analyzer_settings().cache_path is None


@pytest.mark.os_agnostic
def test_native_env_vars_override_config(
    bundled_defaults: dict[str, Any], monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.setenv("DEP_GUARDIAN_TIMEOUT", "5")
    monkeypatch.setenv("DEP_GUARDIAN_MAX_RETRIES", "7")
    monkeypatch.setenv("DEP_GUARDIAN_REGISTRY_URL", "https://mirror.test")
    monkeypatch.setenv("DEP_GUARDIAN_CACHE_PATH", str(tmp_path / "c.json"))

    settings = get_analyzer_settings()

    assert settings.timeout == 5.0
    assert settings.max_retries == 7
    assert settings.registry_url == "https://mirror.test"
    assert settings.cache_path == tmp_path / "c.json"


@pytest.mark.os_agnostic
def test_invalid_env_value_keeps_config_value(bundled_defaults: dict[str, Any], monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DEP_GUARDIAN_TIMEOUT", "soon")

    assert get_analyzer_settings().timeout == 30.0


@pytest.mark.os_agnostic
def test_string_booleans_from_env_layers_are_understood(bundled_defaults: dict[str, Any]) -> None:
    bundled_defaults["analyzer"]["include_dev"] = "true"

    assert get_analyzer_settings().include_dev is True


@pytest.mark.os_agnostic
def test_allowed_licenses_default_to_no_check(bundled_defaults: dict[str, Any]) -> None:
    settings = get_analyzer_settings()

    assert settings.allowed_licenses == ()
    assert settings.to_options().allowed_licenses is None


@pytest.mark.os_agnostic
def test_allowed_licenses_come_from_config_list(bundled_defaults: dict[str, Any]) -> None:
    bundled_defaults["analyzer"]["allowed_licenses"] = ["MIT", "ISC"]

    assert get_analyzer_settings().allowed_licenses == ("MIT", "ISC")


@pytest.mark.os_agnostic
def test_allowed_licenses_env_var_is_comma_separated(
    bundled_defaults: dict[str, Any], monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("DEP_GUARDIAN_ALLOWED_LICENSES", "MIT, apache-2.0")

    settings = get_analyzer_settings()

    assert settings.allowed_licenses == ("MIT", "apache-2.0")
    assert settings.to_options().allowed_licenses == frozenset({"MIT", "Apache-2.0"})


# ════════════════════════════════════════════════════════════════════════════
# AnalyzerSettings.to_options
# ════════════════════════════════════════════════════════════════════════════


def _settings(**overrides: Any) -> AnalyzerSettings:
    values: dict[str, Any] = {
        "registry_url": "https://registry.test",
        "timeout": 10.0,
        "max_retries": 2,
        "retry_delay": 0.5,
        "rate_limit_count": 20,
        "rate_limit_window": 30.0,
        "include_dev": False,
        "cache_ttl": 60.0,
        "cache_path": None,
    }
    values.update(overrides)
    return AnalyzerSettings(**values)


@pytest.mark.os_agnostic
def test_to_options_copies_every_setting() -> None:
    options = _settings().to_options()

    assert options.registry_url == "https://registry.test"
    assert options.rate_limit == RateLimit(20, 30.0)
    assert options.retry_delay == 0.5
    assert options.cache_ttl == 60.0


@pytest.mark.os_agnostic
def test_to_options_applies_overrides() -> None:
    options = _settings().to_options(include_dev=True)

    assert options.include_dev is True
