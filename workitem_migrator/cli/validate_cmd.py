"""CLI command handler for dry-run validation."""

from __future__ import annotations

import sys
from typing import Optional

from workitem_migrator.cli.common import cli, common_options, handle_exception
from workitem_migrator.cli.migrate_cmd import (
    build_context,
    load_run_config,
    log_startup_info,
)
from workitem_migrator.cli.notify import send_summary_notification
from workitem_migrator.cli.report import create_output_directory, generate_validation_report
from workitem_migrator.core.config import MigrationConfig
from workitem_migrator.core.validator import Validator
from workitem_migrator.utils.logging import setup_logger

# ---------------------------------------------------------------------------
# validate subcommand
# ---------------------------------------------------------------------------


@cli.command()
@common_options
def validate(config: str, verbose: bool, debug_api: bool) -> None:
    """Dry run: report what migrating CONFIG's query would do.

    Nothing is written to either account.

    Args:
        config: Path to the configuration file.
        verbose: Enable verbose console logging.
        debug_api: Enable detailed API request/response logging.
    """
    output_dir = create_output_directory()
    setup_logger(verbose, debug_api, output_dir)
    log_startup_info("validate", config, output_dir)

    migration_config: Optional[MigrationConfig] = None
    message = ""

    try:
        migration_config = load_run_config(config)
        ctx = build_context(migration_config, output_dir, verbose)
        result = Validator(ctx).run()
        generate_validation_report(result, output_dir, migration_config)
        message = (
            f"Validation found {result.returned} work item(s): {result.create} to create, "
            f"{result.update_phase1 + result.update_phase2_only} to update, "
            f"{result.unchanged} unchanged, {result.failed} failed"
        )
    except (Exception, KeyboardInterrupt) as e:
        handle_exception(e)
        message = f"Validation failed: {e}"
        sys.exit(1)
    finally:
        send_summary_notification(migration_config, message)
