"""tagdeploy CLI — Typer-based command-line interface.

Provides the ``tagdeploy`` command with subcommands for decoding tags,
running the release pipeline, running the branch checks, and routing a
CI event to the right pipeline.

All output uses Rich for formatted terminal display.
"""
