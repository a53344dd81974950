"""Shared CLI infrastructure: option decorators, error handlers, and the CLI group."""

from __future__ import annotations

import logging
from typing import Callable, ClassVar

import click
import requests

import workitem_migrator
from workitem_migrator.constants import (
    HTTP_FORBIDDEN,
    HTTP_RATE_LIMIT,
    HTTP_SERVER_ERROR_MIN,
    HTTP_UNAUTHORIZED,
)
from workitem_migrator.exceptions import MigratorError, RemoteServiceError
from workitem_migrator.utils.logging import log_with_context

# ---------------------------------------------------------------------------
# Custom click.Group that accepts the flag-style invocation.
# ``workitem-migrator --validate config.json`` and
# ``workitem-migrator --migrate config.json`` are rewritten to the
# ``validate`` and ``migrate`` subcommands.
# ---------------------------------------------------------------------------


class DefaultGroup(click.Group):
    """Click group that maps ``--validate``/``--migrate`` onto subcommands."""

    _FLAG_COMMANDS: ClassVar[dict[str, str]] = {
        "--validate": "validate",
        "--migrate": "migrate",
    }

    def parse_args(self, ctx: click.Context, args: list[str]) -> list[str]:
        """Rewrite a leading ``--validate``/``--migrate`` flag as a subcommand.

        Args:
            ctx: The current Click context.
            args: Raw CLI argument list.

        Returns:
            The (possibly modified) argument list for further parsing.
        """
        if args:
            head, sep, value = args[0].partition("=")
            command = self._FLAG_COMMANDS.get(head)
            if command is not None:
                args = [command, *([value] if sep else []), *args[1:]]
        return super().parse_args(ctx, args)


# ---------------------------------------------------------------------------
# Shared option decorator
# ---------------------------------------------------------------------------


def common_options(f: Callable[..., None]) -> Callable[..., None]:
    """Decorator that adds the config argument and logging options.

    Args:
        f: The Click command function to decorate.

    Returns:
        The decorated function with common options attached.
    """
    f = click.argument(
        "config",
        type=click.Path(dir_okay=False),
    )(f)
    f = click.option(
        "--verbose",
        "-v",
        is_flag=True,
        default=False,
        help="Enable verbose console logging (shows DEBUG level messages)",
    )(f)
    f = click.option(
        "--debug_api",
        is_flag=True,
        default=False,
        help="Enable detailed API request/response logging (creates very large log files)",
    )(f)
    return f


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group(
    cls=DefaultGroup,
    invoke_without_command=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.version_option(version=workitem_migrator.__version__, prog_name="workitem-migrator")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Work item migration tool.

    Args:
        ctx: The Click context (injected by ``@click.pass_context``).
    """
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------


def handle_remote_error(e: RemoteServiceError) -> None:
    """Handle remote service errors with specific messages.

    Args:
        e: The error returned by the work item service.
    """
    if e.status_code in (HTTP_UNAUTHORIZED, HTTP_FORBIDDEN):
        log_with_context(logging.ERROR, f"Access denied: {e}")
        log_with_context(
            logging.INFO,
            "Check that the personal access tokens are valid and grant "
            "read/write access to work items on both accounts.",
        )
    elif e.status_code == HTTP_RATE_LIMIT:
        log_with_context(logging.ERROR, f"Rate limit exceeded: {e}")
        log_with_context(
            logging.INFO,
            "Lower 'parallelism' in the configuration and run again; "
            "work items already migrated are detected and skipped.",
        )
    elif e.status_code is not None and e.status_code >= HTTP_SERVER_ERROR_MIN:
        log_with_context(logging.ERROR, f"Server error from the work item service: {e}")
        log_with_context(
            logging.INFO, "This is likely a temporary issue. Please try again later."
        )
    else:
        log_with_context(logging.ERROR, f"Work item service error: {e}")


def handle_exception(e: BaseException) -> None:
    """Handle different types of exceptions.

    Args:
        e: The exception to handle.
    """
    if isinstance(e, RemoteServiceError):
        handle_remote_error(e)
    elif isinstance(e, MigratorError):
        log_with_context(logging.ERROR, str(e))
    elif isinstance(e, requests.exceptions.RequestException):
        log_with_context(logging.ERROR, f"Could not reach the work item service: {e}")
        log_with_context(
            logging.INFO, "Check the account URLs and your network connection."
        )
    elif isinstance(e, FileNotFoundError):
        log_with_context(logging.ERROR, f"File not found: {e}")
    elif isinstance(e, KeyboardInterrupt):
        log_with_context(logging.WARNING, "Migration interrupted by user.")
        log_with_context(
            logging.INFO,
            "Run again to resume; work items already migrated are detected "
            "through their back-links.",
        )
    else:
        log_with_context(
            logging.ERROR,
            f"Migration failed: {e}",
            exc_info=(type(e), e, e.__traceback__),
        )
