from __future__ import annotations

import os
from typing import Optional

import yaml
from pydantic import BaseModel

from .constants import DEFAULT_POLL_INTERVAL


class DispatcherConfig(BaseModel):
    """Settings for the background dispatcher loop."""

    poll_interval: float = DEFAULT_POLL_INTERVAL
    strict_handlers: bool = False


class ApiConfig(BaseModel):
    """Settings for the HTTP query service."""

    host: str = "127.0.0.1"
    port: int = 8000


class FlowlineConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    dispatcher: DispatcherConfig = DispatcherConfig()
    api: ApiConfig = ApiConfig()


def load_config(path: Optional[str] = None) -> FlowlineConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to FLOWLINE_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("FLOWLINE_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = FlowlineConfig(**data)
    else:
        config = FlowlineConfig()

    env_db_url = os.getenv("FLOWLINE_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_interval = os.getenv("FLOWLINE_POLL_INTERVAL")
    if env_interval:
        config.dispatcher.poll_interval = float(env_interval)
    return config
