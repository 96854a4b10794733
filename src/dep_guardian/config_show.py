"""Rendering of the merged configuration for the ``config`` command.

Purpose
-------
Show which registry, cache and throttling values a run will use, either as
TOML-like text or as JSON, so users can check layered overrides.

Contents
--------
* :func:`display_config` – print the merged configuration or one section
* :func:`display_settings` – print the resolved analyzer settings

System Role
-----------
Presentation helper for the CLI. Command handlers only parse arguments and
delegate here.
"""

from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path
from typing import Any

import click

from .config import get_analyzer_settings, get_config


def _render_scalar(value: Any) -> str:
    """Render one value the way it would appear in a TOML file."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return f'"{value}"'
    if isinstance(value, (list, tuple, dict)):
        return json.dumps(value)
    return str(value)


def _echo_table(name: str, table: Any) -> None:
    click.echo(f"\n[{name}]")
    if not isinstance(table, dict):
        click.echo(f"  {_render_scalar(table)}")
        return
    for key, value in table.items():
        click.echo(f"  {key} = {_render_scalar(value)}")


def _select(data: dict[str, Any], section: str | None) -> dict[str, Any]:
    """Return the whole mapping or only ``section``.

    Raises:
        click.ClickException: If the section is missing or empty.
    """
    if section is None:
        return data
    table = data.get(section)
    if not table:
        raise click.ClickException(f"Section '{section}' not found or empty")
    return {section: table}


def display_config(*, format: str = "human", section: str | None = None) -> None:
    """Print the merged configuration from all layers.

    Args:
        format: ``"human"`` for TOML-like text, ``"json"`` for JSON.
        section: Restrict output to one top-level table, e.g. ``"cache"``.

    Raises:
        click.ClickException: If ``section`` does not exist.

    Example:
        >>> display_config(section="cache")  # doctest: +SKIP
        <BLANKLINE>
        [cache]
          ttl = 3600.0
          persist = true
          path = ""
    """
    data = _select(get_config().as_dict(), section)

    if format.lower() == "json":
        click.echo(json.dumps(data, indent=2))
        return
    for name, table in data.items():
        _echo_table(name, table)


def display_settings(*, format: str = "human") -> None:
    """Print the effective analyzer settings after environment overrides."""
    values = {key: str(value) if isinstance(value, Path) else value for key, value in asdict(get_analyzer_settings()).items()}
    if format.lower() == "json":
        click.echo(json.dumps(values, indent=2))
    else:
        _echo_table("effective", values)


__all__ = [
    "display_config",
    "display_settings",
]
