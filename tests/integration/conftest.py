"""Integration test configuration.

These tests talk to a real work item service and are skipped by default.
Set WORKITEM_SOURCE_ACCOUNT, WORKITEM_SOURCE_PROJECT and WORKITEM_SOURCE_PAT
to enable them. WORKITEM_QUERY names a saved flat query to read.
"""

import os

import pytest

from workitem_migrator.services.client import WorkItemClient

skip_no_creds = pytest.mark.skipif(
    not (
        os.environ.get("WORKITEM_SOURCE_ACCOUNT")
        and os.environ.get("WORKITEM_SOURCE_PROJECT")
        and os.environ.get("WORKITEM_SOURCE_PAT")
    ),
    reason="Integration tests require WORKITEM_SOURCE_ACCOUNT, "
    "WORKITEM_SOURCE_PROJECT and WORKITEM_SOURCE_PAT env vars",
)


@pytest.fixture()
def source_client():
    return WorkItemClient(
        os.environ["WORKITEM_SOURCE_ACCOUNT"],
        os.environ["WORKITEM_SOURCE_PROJECT"],
        os.environ["WORKITEM_SOURCE_PAT"],
    )
