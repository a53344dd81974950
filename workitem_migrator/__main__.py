#!/usr/bin/env python3
"""
Main execution module for the work item migration tool
"""

from workitem_migrator.cli.commands import main

if __name__ == "__main__":
    main()
