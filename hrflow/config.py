from __future__ import annotations

import os
from typing import Optional

import yaml
from pydantic import BaseModel, Field


class PaginationConfig(BaseModel):
    """Page sizes for instance listings."""

    default_limit: int = Field(default=50, ge=1)
    max_limit: int = Field(default=500, ge=1)


class HrflowConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    log_level: str = "INFO"
    pagination: PaginationConfig = PaginationConfig()


def load_config(path: Optional[str] = None) -> HrflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to HRFLOW_CONFIG env
            variable or 'hrflow.yaml' in the current directory.
    """

    config_path = path or os.getenv("HRFLOW_CONFIG", "hrflow.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = HrflowConfig(**data)
    else:
        config = HrflowConfig()

    env_db_url = os.getenv("HRFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_log_level = os.getenv("HRFLOW_LOG_LEVEL")
    if env_log_level:
        config.log_level = env_log_level
    return config
