from __future__ import annotations

import os
from typing import Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field


class RedisConfig(BaseModel):
    """Configuration for Redis transport."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class TransportConfig(BaseModel):
    """Transport configuration settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = RedisConfig()
    queue: str = "nexusflow:inbound"


class ExecutorConfig(BaseModel):
    """Retry spacing and loop guard for pipeline runs."""

    retry_backoff_base: float = 1.5
    retry_jitter: float = 0.5
    retry_max_delay: float = 30.0
    max_step_transitions: int = 1000


class RestDestinationConfig(BaseModel):
    """Connection settings for one REST destination."""

    base_url: str
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = "POST"
    headers: Dict[str, str] = Field(default_factory=dict)
    auth_token: Optional[str] = None
    timeout: float = 30.0


class DestinationsConfig(BaseModel):
    """Destination connections keyed by destination id.

    ``database`` and ``sap`` map ids to SQLAlchemy async URLs.
    """

    database: Dict[int, str] = Field(default_factory=dict)
    sap: Dict[int, str] = Field(default_factory=dict)
    rest: Dict[int, RestDestinationConfig] = Field(default_factory=dict)


class NexusflowConfig(BaseModel):
    """Top-level configuration model."""

    transport: TransportConfig = TransportConfig()
    database_url: Optional[str] = None
    workflow_store_url: str = "sqlite+aiosqlite:///nexusflow.db"
    executor: ExecutorConfig = ExecutorConfig()
    destinations: DestinationsConfig = DestinationsConfig()
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> NexusflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to NEXUSFLOW_CONFIG env
            variable or 'nexusflow.yaml' in the current directory.
    """

    config_path = path or os.getenv("NEXUSFLOW_CONFIG", "nexusflow.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = NexusflowConfig(**data)
    else:
        config = NexusflowConfig()

    env_db_url = os.getenv("NEXUSFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
