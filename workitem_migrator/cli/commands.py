#!/usr/bin/env python3
"""
Main execution module for the work item migration tool.

Importing the subcommand modules registers them on the ``cli`` group.
"""

from workitem_migrator.cli import migrate_cmd, validate_cmd  # noqa: F401
from workitem_migrator.cli.common import cli, handle_exception  # noqa: F401


def main() -> None:
    """Entry point for the ``workitem-migrator`` console script."""
    cli()


if __name__ == "__main__":
    main()
