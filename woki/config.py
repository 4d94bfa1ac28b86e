"""Configuration management for the log scraper."""

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .fetcher import DEFAULT_CHUNK_SIZE
from .models import MAX_TAIL_LINES
from .orchestrator import DEFAULT_CONCURRENCY

DEFAULT_CONFIG_PATH = "config/woki.yaml"


class ScraperConfig(BaseModel):
    """Settings for one scrape run."""

    # Runtime settings
    docker_host: Optional[str] = Field(default=None, description="Docker host URL, e.g. unix:///var/run/docker.sock")

    # Fetch settings
    tail_lines: int = Field(default=10, ge=1, le=MAX_TAIL_LINES, description="Lines to keep from the end of each log")
    fetch_timeout_seconds: float = Field(default=2.0, gt=0, description="Per-container fetch deadline in seconds")
    timestamps: bool = Field(default=True, description="Prefix every log line with its timestamp")
    chunk_size: int = Field(default=DEFAULT_CHUNK_SIZE, ge=1, description="Bytes read from a log stream at a time")

    # Scheduling settings
    mode: Literal["sequential", "concurrent"] = Field(default="concurrent", description="How fetches are scheduled")
    concurrency: int = Field(default=DEFAULT_CONCURRENCY, ge=1, description="Maximum fetches in flight")

    log_level: str = Field(default="INFO", description="Logging level")


def load_config(config_path: Optional[str] = None) -> ScraperConfig:
    """Load configuration from file, then apply environment overrides."""
    explicit = config_path is not None or os.getenv("WOKI_CONFIG") is not None
    if config_path is None:
        config_path = os.getenv("WOKI_CONFIG", DEFAULT_CONFIG_PATH)

    config_data = {}

    if os.path.exists(config_path):
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}
        if not isinstance(config_data, dict):
            raise ValueError(f"Config file must contain a mapping: {config_path}")
    elif explicit:
        raise FileNotFoundError(f"Config file not found: {config_path}")

    env_overrides = {
        "docker_host": os.getenv("DOCKER_HOST"),
        "tail_lines": os.getenv("WOKI_TAIL"),
        "fetch_timeout_seconds": os.getenv("WOKI_TIMEOUT"),
        "mode": os.getenv("WOKI_MODE"),
        "concurrency": os.getenv("WOKI_CONCURRENCY"),
        "timestamps": os.getenv("WOKI_TIMESTAMPS"),
        "log_level": os.getenv("LOG_LEVEL"),
    }

    for key, value in env_overrides.items():
        if value is not None:
            if key in ["timestamps"]:
                value = value.lower() in ("true", "1", "yes")
            config_data[key] = value

    return ScraperConfig(**config_data)
