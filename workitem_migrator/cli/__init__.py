"""Command-line interface for the work item migration tool."""
