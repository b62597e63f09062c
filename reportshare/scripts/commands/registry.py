"""CLI registration by section/purpose/process groups."""

from .maintenance import MAINTENANCE_COMMANDS


def register_commands(app):
    """Register all CLI commands in stable grouped order."""
    for command in MAINTENANCE_COMMANDS:
        app.cli.add_command(command)
