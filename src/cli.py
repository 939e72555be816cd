#!/usr/bin/env python3
"""
CLI for entity analytics.
"""

import click
from importlib.metadata import version
from commands import analyze, snapshot


@click.group()
@click.version_option(version=version("entity-analytics"))
def cli():
    """Entity Analytics CLI - Score, trend and roll up entities mentioned in AI answers."""
    pass


# Register command groups
cli.add_command(snapshot.snapshot)
cli.add_command(analyze.analyze)


if __name__ == "__main__":
    cli()
