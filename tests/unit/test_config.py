"""Unit tests for the config module."""

import json
from pathlib import Path

import pytest
import yaml

from tests.unit.conftest import make_config
from workitem_migrator.core.config import (
    ConnectionConfig,
    EmailSettings,
    MigrationConfig,
    create_default_config,
    load_config,
)
from workitem_migrator.exceptions import ConfigError

MINIMAL = {
    "source_connection": {"account": "https://dev.example.com/src/", "project": "Src"},
    "target_connection": {"account": "https://dev.example.com/dst", "project": "Dst"},
    "query": "Shared Queries/Migrate",
}


def _write(tmp_path: Path, data, name="config.yaml") -> Path:
    path = tmp_path / name
    path.write_text(yaml.safe_dump(data))
    return path


def test_load_minimal_config_applies_defaults(tmp_path):
    """Test loading a config with only the required keys."""
    config = load_config(_write(tmp_path, MINIMAL))

    assert config.source_connection.account == "https://dev.example.com/src"
    assert config.target_connection.project == "Dst"
    assert config.query == "Shared Queries/Migrate"

    assert config.batch_size == 50
    assert config.parallelism == 1
    assert config.link_parallelism == 1
    assert config.query_page_size == 20000
    assert config.heartbeat_frequency_in_seconds == 30
    assert config.create_new_work_items is True
    assert config.update_modified_work_items is True
    assert config.overwrite_existing_work_items is False
    assert config.move_attachments is False
    assert config.history_attachment_format == "json"
    assert config.max_attachment_size == 60 * 1024 * 1024
    assert config.max_retries == 5
    assert config.retry_delay == 1.0
    assert config.send_email_notification is False


def test_load_shared_sample_config(config_file, monkeypatch):
    monkeypatch.setenv("SOURCE_PAT", "abc")
    config = load_config(config_file)

    config.validate()
    assert config.batch_size == 20
    assert config.move_links is True
    assert config.target_post_move_tag == "Migrated"
    assert config.source_connection.token == "abc"


def test_load_json_config_with_kebab_case_keys(tmp_path):
    """JSON files with kebab-case keys load unchanged."""
    data = {
        "source-connection": {"account": "https://a", "project": "P", "access-token": "t"},
        "target-connection": {"account": "https://b", "project": "Q"},
        "query": "Shared Queries/All",
        "batch-size": 25,
        "move-attachments": True,
        "field-mappings": [{"source": "Custom.A", "target": "Custom.B"}],
        "field-replacements": [{"field": "System.Title", "pattern": "x"}],
        "identity-mappings": [
            {"source": "a@old.example", "target": "a@new.example"},
            {"source": "b@old.example", "target": "b@new.example"},
        ],
    }
    path = tmp_path / "config.json"
    path.write_text(json.dumps(data))

    config = load_config(path)

    assert config.batch_size == 25
    assert config.move_attachments is True
    assert config.source_connection.access_token == "t"
    assert config.field_mappings[0].target == "Custom.B"
    assert config.field_replacements[0].replacement == ""
    assert config.identity_map == {
        "a@old.example": "a@new.example",
        "b@old.example": "b@new.example",
    }


def test_load_config_nonexistent_path(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "missing.yaml")


def test_load_config_invalid_yaml(tmp_path):
    path = tmp_path / "broken.yaml"
    path.write_text("query: [unclosed")
    with pytest.raises(ConfigError, match="Failed to load"):
        load_config(path)


def test_load_config_missing_required_keys(tmp_path):
    with pytest.raises(ConfigError, match="query"):
        load_config(_write(tmp_path, {k: v for k, v in MINIMAL.items() if k != "query"}))


def test_load_config_not_a_mapping(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n")
    with pytest.raises(ConfigError, match="mapping"):
        load_config(path)


def test_token_falls_back_to_environment(monkeypatch):
    monkeypatch.setenv("MIGRATION_SOURCE_PAT", "from-env")
    connection = ConnectionConfig.from_dict(
        {"account": "https://a", "project": "P", "access_token_env": "MIGRATION_SOURCE_PAT"}
    )
    assert connection.token == "from-env"
    assert ConnectionConfig(access_token="inline").token == "inline"
    assert ConnectionConfig().token == ""


def test_email_settings_accept_single_recipient():
    settings = EmailSettings.from_dict(
        {"smtp_server": "smtp.example.com", "from_address": "a@x", "to_addresses": "b@x"}
    )
    assert settings.to_addresses == ["b@x"]
    assert settings.is_complete
    assert not EmailSettings().is_complete


def test_retry_options():
    config = MigrationConfig(max_retries=4, retry_delay=0.5, retry_delay_increment=2.0)
    assert config.retry_options == {
        "max_attempts": 4,
        "initial_delay": 0.5,
        "delay_increment": 2.0,
    }


def test_validate_accepts_valid_config():
    make_config().validate()


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"batch_size": 0}, "batch_size"),
        ({"batch_size": 201}, "batch_size"),
        ({"parallelism": 0}, "parallelism"),
        ({"query_page_size": 1}, "query_page_size"),
        ({"max_retries": 0}, "max_retries"),
        ({"retry_delay_increment": 0}, "retry_delay"),
        ({"history_attachment_format": "xml"}, "history_attachment_format"),
        ({"query": ""}, "query"),
        ({"send_email_notification": True}, "send_email_notification"),
    ],
)
def test_validate_rejects(overrides, message):
    with pytest.raises(ConfigError, match=message):
        make_config(**overrides).validate()


def test_validate_requires_connections():
    config = make_config(source_connection=ConnectionConfig())
    with pytest.raises(ConfigError, match="source_connection"):
        config.validate()


def test_create_default_config(tmp_path):
    path = tmp_path / "config.yaml"

    assert create_default_config(path) is True

    data = yaml.safe_load(path.read_text())
    assert data["query"]
    config = load_config(path)
    config.validate()


def test_create_default_config_no_overwrite(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("query: keep\n")

    assert create_default_config(path) is False
    assert path.read_text() == "query: keep\n"
