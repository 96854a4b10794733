"""Configuration management using lib_layered_config.

Purpose
-------
Provides a centralized configuration loader that merges defaults, application
configs, host configs, user configs, .env files, and environment variables
following a deterministic precedence order.

Contents
--------
* :func:`get_config` – loads configuration with lib_layered_config
* :func:`get_default_config_path` – returns path to bundled default config
* :func:`get_analyzer_settings` – returns analyzer and cache settings

Configuration identifiers (vendor, app, slug) are imported from
:mod:`dep_guardian.__init__conf__` as LAYEREDCONF_* constants.

System Role
-----------
Acts as the configuration adapter layer, bridging lib_layered_config with the
application's runtime needs while keeping domain logic decoupled from
configuration mechanics.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, TypeVar

from lib_layered_config import Config, read_config

from . import __init__conf__
from .analyzer import AnalysisOptions
from .rate_limiter import RateLimit

# Environment variable prefix for native (short) env vars
_ENV_PREFIX = "DEP_GUARDIAN_"
_CACHE_FILENAME = "registry-cache.json"

N = TypeVar("N", int, float)


def get_default_config_path() -> Path:
    """Return the path to the bundled default configuration file.

    Returns:
        Absolute path to defaultconfig.toml.

    Example:
        >>> path = get_default_config_path()
        >>> path.name
        'defaultconfig.toml'
        >>> path.exists()
        True
    """
    return Path(__file__).parent / "defaultconfig.toml"


def get_default_cache_path() -> Path:
    """Return the cache file location under the user's cache directory.

    Honors ``XDG_CACHE_HOME`` and falls back to ``~/.cache``.
    """
    base = os.environ.get("XDG_CACHE_HOME") or str(Path.home() / ".cache")
    return Path(base) / __init__conf__.LAYEREDCONF_SLUG / _CACHE_FILENAME


@lru_cache(maxsize=1)
def get_config(*, start_dir: str | None = None) -> Config:
    """Load layered configuration with application defaults.

    Loads configuration from multiple sources in precedence order:
    defaults → app → host → user → dotenv → env

    Args:
        start_dir: Optional directory that seeds .env discovery. Defaults to
            current working directory when None.

    Returns:
        Immutable configuration object with provenance tracking.

    Note:
        This function is cached (maxsize=1); call ``get_config.cache_clear()``
        to reload.

    Example:
        >>> config = get_config()
        >>> isinstance(config.as_dict(), dict)
        True
        >>> config.get("nonexistent", default="fallback")
        'fallback'
    """
    return read_config(
        vendor=__init__conf__.LAYEREDCONF_VENDOR,
        app=__init__conf__.LAYEREDCONF_APP,
        slug=__init__conf__.LAYEREDCONF_SLUG,
        default_file=get_default_config_path(),
        start_dir=start_dir,
    )


@dataclass(frozen=True, slots=True)
class AnalyzerSettings:
    """Immutable settings for the dependency analyzer.

    Attributes:
        registry_url: npm-compatible registry base URL.
        timeout: Maximum seconds to wait for a registry response.
        max_retries: Retries after the first attempt for transient failures.
        retry_delay: Base backoff delay in seconds.
        rate_limit_count: Requests allowed per window.
        rate_limit_window: Window length in seconds.
        include_dev: Whether devDependencies are analyzed.
        cache_ttl: Seconds a registry response stays fresh.
        cache_path: Cache file, or None when persistence is disabled.
        allowed_licenses: SPDX licenses permitted for dependencies; empty
            disables the allow-list check.
    """

    registry_url: str
    timeout: float
    max_retries: int
    retry_delay: float
    rate_limit_count: int
    rate_limit_window: float
    include_dev: bool
    cache_ttl: float
    cache_path: Path | None
    allowed_licenses: tuple[str, ...] = ()

    def to_options(self, **overrides: Any) -> AnalysisOptions:
        """Build :class:`AnalysisOptions`, letting callers override single fields."""
        values: dict[str, Any] = {
            "include_dev": self.include_dev,
            "cache_ttl": self.cache_ttl,
            "max_retries": self.max_retries,
            "retry_delay": self.retry_delay,
            "rate_limit": RateLimit(self.rate_limit_count, self.rate_limit_window),
            "timeout": self.timeout,
            "registry_url": self.registry_url,
            "cache_path": self.cache_path,
            "allowed_licenses": frozenset(self.allowed_licenses) if self.allowed_licenses else None,
        }
        values.update(overrides)
        return AnalysisOptions(**values)


def _env_number(name: str, current: N, cast: type[N]) -> N:
    """Return the native env var ``name`` cast to a number, or ``current``."""
    raw = os.environ.get(f"{_ENV_PREFIX}{name}")
    if raw:
        try:
            return cast(raw)
        except ValueError:
            pass  # Keep config value if env var is invalid
    return current


def _as_names(value: Any) -> tuple[str, ...]:
    """Accept a TOML list or a comma separated string from env layers."""
    if isinstance(value, str):
        value = value.split(",")
    return tuple(str(name).strip() for name in value or () if str(name).strip())


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def get_analyzer_settings() -> AnalyzerSettings:
    """Get analyzer settings from configuration with environment variable overrides.

    Settings are resolved in the following precedence order (highest wins):
    1. Native environment variables (DEP_GUARDIAN_TIMEOUT, etc.)
    2. lib_layered_config environment variables (DEP_GUARDIAN___ANALYZER__*, etc.)
    3. User config file (~/.config/dep-guardian/config.toml)
    4. Host config file
    5. Application config file
    6. Default config (bundled defaultconfig.toml)

    Returns:
        AnalyzerSettings with resolved values.

    Example:
        >>> settings = get_analyzer_settings()
        >>> settings.timeout
        30.0
        >>> settings.max_retries
        3
    """
    config = get_config()

    analyzer_section = config.get("analyzer", default={})
    cache_section = config.get("cache", default={})

    registry_url = analyzer_section.get("registry_url", "https://registry.npmjs.org")
    timeout = float(analyzer_section.get("timeout", 30.0))
    max_retries = int(analyzer_section.get("max_retries", 3))
    retry_delay = float(analyzer_section.get("retry_delay", 1.0))
    rate_limit_count = int(analyzer_section.get("rate_limit_count", 100))
    rate_limit_window = float(analyzer_section.get("rate_limit_window", 60.0))
    include_dev = _as_bool(analyzer_section.get("include_dev", False))
    allowed_licenses = _as_names(analyzer_section.get("allowed_licenses", []))
    cache_ttl = float(cache_section.get("ttl", 3600.0))
    persist = _as_bool(cache_section.get("persist", True))
    cache_path_value = cache_section.get("path", "")

    # Native environment variables have highest precedence
    if env_registry := os.environ.get(f"{_ENV_PREFIX}REGISTRY_URL"):
        registry_url = env_registry
    timeout = _env_number("TIMEOUT", timeout, float)
    max_retries = _env_number("MAX_RETRIES", max_retries, int)
    rate_limit_count = _env_number("RATE_LIMIT_COUNT", rate_limit_count, int)
    cache_ttl = _env_number("CACHE_TTL", cache_ttl, float)
    if env_cache_path := os.environ.get(f"{_ENV_PREFIX}CACHE_PATH"):
        cache_path_value = env_cache_path
    if env_licenses := os.environ.get(f"{_ENV_PREFIX}ALLOWED_LICENSES"):
        allowed_licenses = _as_names(env_licenses)

    cache_path: Path | None = None
    if persist:
        cache_path = Path(cache_path_value).expanduser() if cache_path_value else get_default_cache_path()

    return AnalyzerSettings(
        registry_url=registry_url,
        timeout=timeout,
        max_retries=max_retries,
        retry_delay=retry_delay,
        rate_limit_count=rate_limit_count,
        rate_limit_window=rate_limit_window,
        include_dev=include_dev,
        cache_ttl=cache_ttl,
        cache_path=cache_path,
        allowed_licenses=allowed_licenses,
    )


__all__ = [
    "AnalyzerSettings",
    "get_analyzer_settings",
    "get_config",
    "get_default_cache_path",
    "get_default_config_path",
]
