"""
Configuration module for the work item migration tool.

This module provides functions for loading migration settings from YAML (or
JSON, which YAML accepts unchanged) files, validating them, and writing a
starter configuration file.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from workitem_migrator.constants import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_RETRY_DELAY,
    DEFAULT_RETRY_DELAY_INCREMENT,
    MAX_BATCH_SIZE,
)
from workitem_migrator.exceptions import ConfigError
from workitem_migrator.utils.logging import log_with_context

REQUIRED_KEYS = ("source_connection", "target_connection", "query")
HISTORY_FORMATS = ("json", "txt")


def _normalize_keys(data: Any) -> Any:
    """Turn ``kebab-case`` keys into ``snake_case`` recursively."""
    if isinstance(data, dict):
        return {
            str(k).replace("-", "_"): _normalize_keys(v) for k, v in data.items()
        }
    if isinstance(data, list):
        return [_normalize_keys(item) for item in data]
    return data


@dataclass
class ConnectionConfig:
    """An account/project pair and the token used to reach it."""

    account: str = ""
    project: str = ""
    access_token: str = ""
    access_token_env: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ConnectionConfig:
        if not data:
            return cls()
        return cls(
            account=str(data.get("account", data.get("uri", ""))).rstrip("/"),
            project=data.get("project", ""),
            access_token=data.get("access_token", ""),
            access_token_env=data.get("access_token_env", ""),
        )

    @property
    def token(self) -> str:
        """The configured token, falling back to the named environment variable."""
        if self.access_token:
            return self.access_token
        if self.access_token_env:
            return os.environ.get(self.access_token_env, "")
        return ""


@dataclass
class EmailSettings:
    """SMTP settings for the end-of-run summary notification."""

    smtp_server: str = ""
    port: int = 25
    use_ssl: bool = False
    from_address: str = ""
    to_addresses: list[str] = field(default_factory=list)
    user_name: str = ""
    password: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> EmailSettings:
        if not data:
            return cls()
        recipients = data.get("to_addresses") or data.get("recipient_addresses") or []
        if isinstance(recipients, str):
            recipients = [recipients]
        return cls(
            smtp_server=data.get("smtp_server", ""),
            port=int(data.get("port", 25)),
            use_ssl=bool(data.get("use_ssl", False)),
            from_address=data.get("from_address", ""),
            to_addresses=list(recipients),
            user_name=data.get("user_name", ""),
            password=data.get("password", ""),
        )

    @property
    def is_complete(self) -> bool:
        return bool(self.smtp_server and self.from_address and self.to_addresses)


@dataclass
class FieldMapping:
    """Write the value of ``source`` into the ``target`` field instead."""

    source: str
    target: str


@dataclass
class FieldSubstitution:
    """Replace the value of ``field`` with a constant."""

    field: str
    value: Any


@dataclass
class FieldReplacement:
    """Apply a regular-expression replacement to the value of ``field``."""

    field: str
    pattern: str
    replacement: str


@dataclass
class IdentityMapping:
    """Write identity ``target`` wherever the source holds identity ``source``."""

    source: str
    target: str


@dataclass
class MigrationConfig:
    """Typed configuration for the migration tool."""

    source_connection: ConnectionConfig = field(default_factory=ConnectionConfig)
    target_connection: ConnectionConfig = field(default_factory=ConnectionConfig)
    query: str = ""

    # Batching and concurrency
    batch_size: int = 50
    parallelism: int = 1
    link_parallelism: int = 1
    query_page_size: int = 20000
    heartbeat_frequency_in_seconds: int = 30

    # Re-run policy
    create_new_work_items: bool = True
    update_modified_work_items: bool = True
    overwrite_existing_work_items: bool = False

    # Pipeline steps
    move_attachments: bool = False
    move_comments: bool = False
    move_history: bool = False
    move_links: bool = False
    clear_relations: bool = False
    move_history_limit: int = 200
    history_attachment_format: str = "json"
    max_attachment_size: int = 60 * 1024 * 1024
    attachment_upload_chunk_size: int = 1 * 1024 * 1024
    source_post_move_tag: str = ""
    target_post_move_tag: str = ""

    # Core field handling
    default_area_path: str = ""
    default_iteration_path: str = ""
    field_mappings: list[FieldMapping] = field(default_factory=list)
    field_substitutions: list[FieldSubstitution] = field(default_factory=list)
    field_replacements: list[FieldReplacement] = field(default_factory=list)
    identity_mappings: list[IdentityMapping] = field(default_factory=list)

    # Retry
    max_retries: int = DEFAULT_MAX_ATTEMPTS
    retry_delay: float = DEFAULT_RETRY_DELAY
    retry_delay_increment: float = DEFAULT_RETRY_DELAY_INCREMENT

    # Notification
    send_email_notification: bool = False
    email_settings: EmailSettings = field(default_factory=EmailSettings)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MigrationConfig:
        """Create a MigrationConfig from a raw config dictionary."""
        data = _normalize_keys(data or {})
        defaults = cls()
        return cls(
            source_connection=ConnectionConfig.from_dict(data.get("source_connection")),
            target_connection=ConnectionConfig.from_dict(data.get("target_connection")),
            query=data.get("query", ""),
            batch_size=int(data.get("batch_size", defaults.batch_size)),
            parallelism=int(data.get("parallelism") or defaults.parallelism),
            link_parallelism=int(
                data.get("link_parallelism") or defaults.link_parallelism
            ),
            query_page_size=int(data.get("query_page_size", defaults.query_page_size)),
            heartbeat_frequency_in_seconds=int(
                data.get(
                    "heartbeat_frequency_in_seconds",
                    defaults.heartbeat_frequency_in_seconds,
                )
            ),
            create_new_work_items=data.get("create_new_work_items", True),
            update_modified_work_items=data.get("update_modified_work_items", True),
            overwrite_existing_work_items=data.get(
                "overwrite_existing_work_items", data.get("overwrite_work_items", False)
            ),
            move_attachments=data.get("move_attachments", False),
            move_comments=data.get("move_comments", False),
            move_history=data.get("move_history", False),
            move_links=data.get("move_links", False),
            clear_relations=data.get("clear_relations", False),
            move_history_limit=int(
                data.get("move_history_limit", defaults.move_history_limit)
            ),
            history_attachment_format=str(
                data.get("history_attachment_format", "json")
            ).lower(),
            max_attachment_size=int(
                data.get("max_attachment_size", defaults.max_attachment_size)
            ),
            attachment_upload_chunk_size=int(
                data.get(
                    "attachment_upload_chunk_size",
                    defaults.attachment_upload_chunk_size,
                )
            ),
            source_post_move_tag=data.get("source_post_move_tag") or "",
            target_post_move_tag=data.get("target_post_move_tag") or "",
            default_area_path=data.get("default_area_path") or "",
            default_iteration_path=data.get("default_iteration_path") or "",
            field_mappings=[
                FieldMapping(source=m["source"], target=m["target"])
                for m in data.get("field_mappings") or []
            ],
            field_substitutions=[
                FieldSubstitution(field=s["field"], value=s.get("value"))
                for s in data.get("field_substitutions") or []
            ],
            field_replacements=[
                FieldReplacement(
                    field=r["field"],
                    pattern=r["pattern"],
                    replacement=r.get("replacement", ""),
                )
                for r in data.get("field_replacements") or []
            ],
            identity_mappings=[
                IdentityMapping(source=m["source"], target=m["target"])
                for m in data.get("identity_mappings") or []
            ],
            max_retries=int(data.get("max_retries", defaults.max_retries)),
            retry_delay=float(data.get("retry_delay", defaults.retry_delay)),
            retry_delay_increment=float(
                data.get("retry_delay_increment", defaults.retry_delay_increment)
            ),
            send_email_notification=data.get("send_email_notification", False),
            email_settings=EmailSettings.from_dict(data.get("email_settings")),
        )

    @property
    def identity_map(self) -> dict[str, str]:
        """Source identity to target identity; later entries win."""
        return {m.source: m.target for m in self.identity_mappings}

    @property
    def retry_options(self) -> dict[str, Any]:
        """Keyword arguments for ``retry_call``."""
        return {
            "max_attempts": self.max_retries,
            "initial_delay": self.retry_delay,
            "delay_increment": self.retry_delay_increment,
        }

    def validate(self) -> None:
        """Raise ConfigError describing every invalid setting."""
        problems = []
        for name in ("source_connection", "target_connection"):
            connection = getattr(self, name)
            if not connection.account or not connection.project:
                problems.append(f"{name} requires 'account' and 'project'")
        if not self.query:
            problems.append("query must name a saved query in the source project")
        if not 1 <= self.batch_size <= MAX_BATCH_SIZE:
            problems.append(f"batch_size must be between 1 and {MAX_BATCH_SIZE}")
        if self.parallelism < 1 or self.link_parallelism < 1:
            problems.append("parallelism and link_parallelism must be at least 1")
        if self.query_page_size < 2:
            problems.append("query_page_size must be at least 2")
        if self.max_retries < 1:
            problems.append("max_retries must be at least 1")
        if self.retry_delay < 0 or self.retry_delay_increment <= 0:
            problems.append(
                "retry_delay must be >= 0 and retry_delay_increment must be > 0"
            )
        if self.history_attachment_format not in HISTORY_FORMATS:
            problems.append(
                f"history_attachment_format must be one of {', '.join(HISTORY_FORMATS)}"
            )
        if self.attachment_upload_chunk_size < 1:
            problems.append("attachment_upload_chunk_size must be positive")
        if self.send_email_notification and not self.email_settings.is_complete:
            problems.append(
                "send_email_notification requires smtp_server, from_address and to_addresses"
            )
        if problems:
            raise ConfigError("Invalid configuration: " + "; ".join(problems))


def load_config(config_path: Path) -> MigrationConfig:
    """
    Load configuration from a YAML or JSON file.

    Args:
        config_path: Path to the config file

    Returns:
        MigrationConfig with defaults applied for missing options

    Raises:
        ConfigError: If the file is missing, unreadable, or lacks required keys
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise ConfigError(f"Config file {config_path} not found")

    try:
        with open(config_path, encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except (yaml.YAMLError, OSError) as e:
        raise ConfigError(f"Failed to load config file {config_path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {config_path} does not contain a mapping")

    raw = _normalize_keys(raw)
    missing = [key for key in REQUIRED_KEYS if not raw.get(key)]
    if missing:
        raise ConfigError(
            f"Config file {config_path} is missing required keys: {', '.join(missing)}"
        )

    log_with_context(logging.INFO, f"Loaded configuration from {config_path}")
    return MigrationConfig.from_dict(raw)


def create_default_config(output_path: Path) -> bool:
    """
    Create a starter configuration file.

    The function will not overwrite an existing configuration file.

    Args:
        output_path: Path where the default config should be saved

    Returns:
        True if the config file was created successfully, False otherwise
    """
    if output_path.exists():
        log_with_context(
            logging.WARNING,
            f"Config file {output_path} already exists, not overwriting",
        )
        return False

    default_config = {
        "source_connection": {
            "account": "https://dev.azure.com/source-org",
            "project": "SourceProject",
            "access_token_env": "SOURCE_PAT",
        },
        "target_connection": {
            "account": "https://dev.azure.com/target-org",
            "project": "TargetProject",
            "access_token_env": "TARGET_PAT",
        },
        "query": "Shared Queries/Migration",
        "batch_size": 50,
        "parallelism": 1,
        "link_parallelism": 1,
        "heartbeat_frequency_in_seconds": 30,
        "create_new_work_items": True,
        "update_modified_work_items": True,
        "overwrite_existing_work_items": False,
        "move_attachments": True,
        "move_comments": True,
        "move_history": False,
        "move_links": True,
        "max_retries": DEFAULT_MAX_ATTEMPTS,
        "retry_delay": DEFAULT_RETRY_DELAY,
        "send_email_notification": False,
    }

    try:
        with open(output_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(default_config, f, default_flow_style=False, sort_keys=False)
        log_with_context(logging.INFO, f"Created default config file at {output_path}")
        return True
    except OSError as e:
        log_with_context(logging.ERROR, f"Failed to create default config file: {e}")
        return False
