"""Commands package - CLI subcommand helpers.

Subcommands are registered via @app.command() decorators in cli.py; the
modules here hold the interactive pieces they share.
"""

__all__ = []
