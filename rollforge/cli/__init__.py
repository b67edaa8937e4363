"""Rollforge CLI: Typer-based command-line interface.

Provides the ``rollforge`` command with subcommands for deploying an
environment, bootstrapping the state backend, browsing rollout history
and running an in-memory demo.

All output uses Rich for formatted terminal display.
"""
