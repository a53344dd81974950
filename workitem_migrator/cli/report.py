"""
Report generation for work item migration runs
"""

from __future__ import annotations

import datetime
import logging
import os
from dataclasses import asdict
from typing import TYPE_CHECKING, Any, Optional

import yaml

from workitem_migrator.constants import (
    OUTPUT_ROOT,
    REPORT_FILE_NAME,
    VALIDATION_REPORT_FILE_NAME,
)
from workitem_migrator.types import MigrationSummary
from workitem_migrator.utils.logging import log_with_context

if TYPE_CHECKING:
    from workitem_migrator.core.config import MigrationConfig
    from workitem_migrator.core.validator import ValidationResult


def create_output_directory(root: str = OUTPUT_ROOT) -> str:
    """Create the timestamped output directory for this run."""
    timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
    run_output_dir = os.path.join(root, f"run_{timestamp}")
    os.makedirs(run_output_dir, exist_ok=True)
    return run_output_dir


def _connections(config: Optional[MigrationConfig]) -> dict[str, Any]:
    if config is None:
        return {}
    return {
        "source": f"{config.source_connection.account}/{config.source_connection.project}",
        "target": f"{config.target_connection.account}/{config.target_connection.project}",
        "query": config.query,
    }


def summary_text(summary: MigrationSummary) -> str:
    """Plain-text digest of a run, used on the console and in notifications."""
    lines = [
        f"Work items processed: {summary.total}",
        f"Created:   {summary.created}",
        f"Updated:   {summary.updated}",
        f"Unchanged: {summary.unchanged}",
        f"Failed:    {summary.failed}",
    ]
    for reason, count in sorted(summary.failures_by_reason.items()):
        lines.append(f"  {reason}: {count}")
    return "\n".join(lines)


def print_summary(summary: MigrationSummary, report_file: Optional[str] = None) -> None:
    """Print a summary of the run to the console."""
    print("\n" + "=" * 80)
    print("MIGRATION SUMMARY")
    print("=" * 80)
    print(summary_text(summary))
    if report_file:
        print(f"\nDetailed report saved to {report_file}")
    print("=" * 80)


def generate_report(
    summary: MigrationSummary,
    output_dir: str,
    config: Optional[MigrationConfig] = None,
    output_file: str = REPORT_FILE_NAME,
) -> str:
    """Write the migration report and return its path.

    The report holds the counts, the failure breakdown and the per-record
    ledger. Records that failed can be found there by source id and migrated
    again in a later run.
    """
    report_path = os.path.join(output_dir, output_file)

    report: dict[str, Any] = {
        "migration_summary": {
            "timestamp": datetime.datetime.now().isoformat(),
            **_connections(config),
            "output_path": str(output_dir),
            "total": summary.total,
            "created": summary.created,
            "updated": summary.updated,
            "unchanged": summary.unchanged,
            "failed": summary.failed,
        },
        "failures_by_reason": dict(summary.failures_by_reason),
        "failed_work_items": [
            asdict(entry) for entry in summary.ledger if entry.failure_reasons
        ],
        "ledger": [asdict(entry) for entry in summary.ledger],
        "recommendations": [],
    }

    if summary.failures_by_reason.get("DUPLICATE_TARGET_LINK"):
        report["recommendations"].append(
            {
                "type": "duplicate_target_link",
                "message": "Some source work items are linked from more than one "
                "target work item. Delete the extra copies on the target and run again.",
                "severity": "warning",
            }
        )
    if summary.failed:
        report["recommendations"].append(
            {
                "type": "failed_work_items",
                "message": f"{summary.failed} work item(s) failed. Fix the causes "
                "listed in migration.log and run again; completed work items are skipped.",
                "severity": "warning",
            }
        )

    with open(report_path, "w", encoding="utf-8") as f:
        yaml.safe_dump(report, f, default_flow_style=False, sort_keys=False)

    log_with_context(logging.INFO, f"Migration report generated: {report_path}")
    return report_path


def generate_validation_report(
    result: ValidationResult,
    output_dir: str,
    config: Optional[MigrationConfig] = None,
    output_file: str = VALIDATION_REPORT_FILE_NAME,
) -> str:
    """Write the readiness counts of a validation run and return the path."""
    report_path = os.path.join(output_dir, output_file)
    report = {
        "validation_summary": {
            "timestamp": datetime.datetime.now().isoformat(),
            **_connections(config),
            **asdict(result),
            "to_migrate": result.to_migrate,
        }
    }
    with open(report_path, "w", encoding="utf-8") as f:
        yaml.safe_dump(report, f, default_flow_style=False, sort_keys=False)

    log_with_context(logging.INFO, f"Validation report generated: {report_path}")
    return report_path
