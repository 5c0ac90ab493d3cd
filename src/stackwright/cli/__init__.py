"""Command-line interface."""

from stackwright.cli.main import cli, main

__all__ = ['cli', 'main']
