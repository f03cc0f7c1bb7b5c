"""
Configuration models for the Mailbox Migration Assistant.

This module defines Pydantic models for run configuration: validation
depth and parallelism, retry and session settings, batch submission
settings, check thresholds, output locations, logging and the gateway.
"""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator, model_validator

from mailbox_migration.core.exceptions import ConfigurationError
from mailbox_migration.models.batch import BatchStrategy
from mailbox_migration.utils.helpers import load_config_file, merge_dicts

MAX_CONCURRENCY = 20


class ValidationDepth(str, Enum):
    """Nested check sets: basic ⊂ standard ⊂ comprehensive."""
    BASIC = "basic"
    STANDARD = "standard"
    COMPREHENSIVE = "comprehensive"

    @property
    def level(self) -> int:
        return list(ValidationDepth).index(self)

    def includes(self, other: "ValidationDepth") -> bool:
        return other.level <= self.level


class ValidationSettings(BaseModel):
    """How mailboxes are validated."""
    depth: ValidationDepth = ValidationDepth.STANDARD
    concurrency: int = Field(default=5, ge=1, le=MAX_CONCURRENCY)
    window_size: int = Field(default=100, ge=1)
    identity_column: str = "EmailAddress"

    @field_validator('identity_column')
    @classmethod
    def identity_column_must_not_be_empty(cls, v):
        if not v or not v.strip():
            raise ValueError('Identity column name cannot be empty')
        return v.strip()


class RetrySettings(BaseModel):
    """Retry behaviour for remote calls."""
    max_retries: int = Field(default=3, ge=1, le=10)
    base_delay: float = Field(default=2.0, ge=0)
    max_delay: float = Field(default=30.0, gt=0, le=30.0)


class SessionSettings(BaseModel):
    """Gateway session lifetime."""
    lifetime_minutes: int = Field(default=50, ge=1)
    refresh_margin_minutes: int = Field(default=5, ge=0)

    @model_validator(mode='after')
    def margin_shorter_than_lifetime(self):
        if self.refresh_margin_minutes >= self.lifetime_minutes:
            raise ValueError('Session refresh margin must be shorter than its lifetime')
        return self


class BatchSettings(BaseModel):
    """Migration batch submission settings."""
    name: Optional[str] = None
    source_endpoint: Optional[str] = None
    target_delivery_domain: Optional[str] = None
    complete_after: Optional[datetime] = None
    start_after: Optional[datetime] = None
    notification_emails: List[str] = Field(default_factory=list)
    strategy: BatchStrategy = BatchStrategy.BULK
    poll_timeout_seconds: float = Field(default=600.0, ge=0)
    poll_interval_seconds: float = Field(default=5.0, ge=0)


class CheckThresholds(BaseModel):
    """Limits used by individual readiness checks."""
    large_mailbox_mb: float = Field(default=50 * 1024, gt=0)
    item_size_limit_mb: float = Field(default=150.0, gt=0)
    max_folder_count: int = Field(default=10000, ge=1)
    deep_folder_depth: int = Field(default=250, ge=1)
    calendar_item_warning: int = Field(default=50000, ge=1)
    contact_item_warning: int = Field(default=50000, ge=1)
    group_membership_warning: int = Field(default=500, ge=1)


class OutputSettings(BaseModel):
    """Where run artifacts are written."""
    work_dir: str = "./migration-runs"
    state_file: Optional[str] = None
    report_dir: Optional[str] = None


class LoggingSettings(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    log_file: Optional[str] = None
    structured: bool = False
    rich_console: bool = True

    @field_validator('level')
    @classmethod
    def level_must_be_known(cls, v):
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f'Unknown log level: {v}')
        return level


class GatewaySettings(BaseModel):
    """Which directory gateway to use and how to build it."""
    type: str = "memory"
    options: Dict[str, Any] = Field(default_factory=dict)


class RunConfig(BaseModel):
    """Complete configuration of one migration run."""
    validation: ValidationSettings = Field(default_factory=ValidationSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    batch: BatchSettings = Field(default_factory=BatchSettings)
    thresholds: CheckThresholds = Field(default_factory=CheckThresholds)
    output: OutputSettings = Field(default_factory=OutputSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    gateway: GatewaySettings = Field(default_factory=GatewaySettings)
    dry_run: bool = False
    force: bool = False

    @property
    def work_dir(self) -> Path:
        return Path(self.output.work_dir)

    @property
    def state_file(self) -> Path:
        if self.output.state_file:
            return Path(self.output.state_file)
        return self.work_dir / "run_state.json"

    @property
    def report_dir(self) -> Path:
        if self.output.report_dir:
            return Path(self.output.report_dir)
        return self.work_dir / "reports"


def load_run_config(
    file_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict[str, Any]] = None
) -> RunConfig:
    """
    Build a RunConfig from an optional YAML/JSON file and CLI overrides.

    Args:
        file_path: Optional configuration file
        overrides: Nested dictionary that takes precedence over the file

    Returns:
        Validated RunConfig

    Raises:
        ConfigurationError: If the file cannot be read or the result is invalid
    """
    data: Dict[str, Any] = {}
    if file_path:
        try:
            data = load_config_file(file_path) or {}
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Cannot load configuration file {file_path}: {e}")

    if overrides:
        data = merge_dicts(data, overrides)

    try:
        return RunConfig.model_validate(data)
    except PydanticValidationError as e:
        raise ConfigurationError(
            f"Invalid run configuration: {e}",
            details={"errors": e.errors(include_url=False)}
        )
