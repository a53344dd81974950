"""CLI command handler for the migrate workflow."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

from workitem_migrator.cli.common import cli, common_options, handle_exception
from workitem_migrator.cli.notify import send_summary_notification
from workitem_migrator.cli.report import (
    create_output_directory,
    generate_report,
    print_summary,
    summary_text,
)
from workitem_migrator.core.config import MigrationConfig, load_config
from workitem_migrator.core.context import MigrationContext
from workitem_migrator.core.migrator import Migrator
from workitem_migrator.core.validator import Validator
from workitem_migrator.services.client import WorkItemClient
from workitem_migrator.utils.logging import log_with_context, setup_logger


def log_startup_info(command: str, config_path: str, output_dir: str) -> None:
    """Log the invocation details at the top of the run log."""
    log_with_context(logging.INFO, "=" * 60)
    log_with_context(logging.INFO, f"Work item migration: {command}")
    log_with_context(logging.INFO, f"Config file: {config_path}")
    log_with_context(logging.INFO, f"Output directory: {output_dir}")
    log_with_context(logging.INFO, "=" * 60)


def load_run_config(config_path: str) -> MigrationConfig:
    """Load and validate the configuration file.

    Raises:
        ConfigError: If the file is missing or invalid
    """
    config = load_config(Path(config_path))
    config.validate()
    return config


def build_context(
    config: MigrationConfig, output_dir: str, verbose: bool = False
) -> MigrationContext:
    """Create the clients and the shared context for one run."""
    return MigrationContext(
        config=config,
        source=WorkItemClient.from_connection(config.source_connection),
        target=WorkItemClient.from_connection(config.target_connection),
        output_dir=Path(output_dir),
        verbose=verbose,
    )


def _write_partial_report(
    migrator: Optional[Migrator], output_dir: str, config: Optional[MigrationConfig]
) -> None:
    if migrator is None:
        return
    try:
        report_file = generate_report(migrator.summarize(), output_dir, config)
        log_with_context(
            logging.INFO,
            f"Migration report (with partial results) available at: {report_file}",
        )
    except Exception as report_error:
        log_with_context(
            logging.WARNING,
            f"Failed to generate migration report after failure: {report_error}",
        )


# ---------------------------------------------------------------------------
# migrate subcommand
# ---------------------------------------------------------------------------


@cli.command()
@common_options
def migrate(config: str, verbose: bool, debug_api: bool) -> None:
    """Validate CONFIG's query and migrate its work items.

    Args:
        config: Path to the configuration file.
        verbose: Enable verbose console logging.
        debug_api: Enable detailed API request/response logging.
    """
    # Create output directory early so all operations are logged to file
    output_dir = create_output_directory()
    setup_logger(verbose, debug_api, output_dir)
    log_startup_info("migrate", config, output_dir)

    migration_config: Optional[MigrationConfig] = None
    migrator: Optional[Migrator] = None
    message = ""

    try:
        migration_config = load_run_config(config)
        ctx = build_context(migration_config, output_dir, verbose)
        Validator(ctx).run()
        migrator = Migrator(ctx)
        summary = migrator.migrate()
        report_file = generate_report(summary, output_dir, migration_config)
        print_summary(summary, report_file)
        message = summary_text(summary)
    except (Exception, KeyboardInterrupt) as e:
        handle_exception(e)
        _write_partial_report(migrator, output_dir, migration_config)
        message = f"Migration failed: {e}"
        sys.exit(1)
    finally:
        send_summary_notification(migration_config, message)
