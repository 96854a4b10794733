"""Static package metadata and configuration identifiers.

Purpose
-------
Single place for the distribution name, version and the identifiers that
``lib_layered_config`` uses to locate platform-specific config files.
"""

from __future__ import annotations

import click

name = "dep_guardian"
title = "Dependency freshness, licensing and structure analysis for npm projects"
version = "1.2.0"
homepage = "https://github.com/dep-guardian/dep-guardian"
author = "Dependency Guardian Team"
shell_command = "dep-guardian"

# Identifiers used by lib_layered_config for config file discovery
LAYEREDCONF_VENDOR = "dep-guardian"
LAYEREDCONF_APP = "dep-guardian"
LAYEREDCONF_SLUG = "dep-guardian"


def print_info() -> None:
    """Print the summary metadata for the installed package."""
    fields = (
        ("name", name),
        ("title", title),
        ("version", version),
        ("homepage", homepage),
        ("author", author),
        ("shell_command", shell_command),
    )
    pad = max(len(label) for label, _ in fields)
    click.echo(f"Info for {name}:\n")
    for label, value in fields:
        click.echo(f"    {label.ljust(pad)} = {value}")


__all__ = [
    "LAYEREDCONF_APP",
    "LAYEREDCONF_SLUG",
    "LAYEREDCONF_VENDOR",
    "print_info",
]
