#!/usr/bin/env python3
"""
Work item migration tool
"""

__version__ = "0.1.0"

from workitem_migrator.cli.report import generate_report
from workitem_migrator.core.config import load_config
from workitem_migrator.core.migrator import Migrator
from workitem_migrator.core.state import MigrationRecord, StateStore
from workitem_migrator.core.validator import Validator
from workitem_migrator.utils.api import FaultClass, classify, retry_call
