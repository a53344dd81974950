"""Remote work item service access."""
