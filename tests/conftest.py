"""Shared test fixtures for the workitem_migrator test suite."""

import yaml

import pytest


@pytest.fixture()
def sample_config_data():
    """Return a raw configuration dict as a user would write it."""
    return {
        "source-connection": {
            "account": "https://dev.example.com/source-org",
            "project": "SourceProject",
            "access-token-env": "SOURCE_PAT",
        },
        "target-connection": {
            "account": "https://dev.example.com/target-org",
            "project": "TargetProject",
            "access-token-env": "TARGET_PAT",
        },
        "query": "Shared Queries/Migrate",
        "batch-size": 20,
        "move-attachments": True,
        "move-links": True,
        "target-post-move-tag": "Migrated",
    }


@pytest.fixture()
def config_file(tmp_path, sample_config_data):
    """Write ``sample_config_data`` to a YAML file and return its path."""
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(sample_config_data))
    return path
