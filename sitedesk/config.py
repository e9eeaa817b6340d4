"""
SiteDesk Configuration Module

Load and manage configuration from config.yaml.
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any
import yaml


DEFAULT_CONFIG = {
    "sites": {
        "path": "config/sites.yaml"
    },
    "platform": {
        "api_url": "https://www.wixapis.com",
        "functions_url": None,
        "timeout": 30.0,
    },
    "jobs": {
        "poll_interval": 0.2,
        "import": {
            "delay_seconds": 3,
            "custom_subject": "Welcome to Our Community!",
        },
        "bulk_delete": {
            "batch_size": 50,
            "settle_seconds": 5.0,
            "contact_delay_seconds": 0.2,
        },
    },
    "logging": {
        "level": "INFO"
    }
}


def find_config_file() -> Path | None:
    """Find the config file, checking common locations."""
    locations = [
        Path("config.yaml"),
        Path("config.yml"),
        Path.home() / ".config" / "sitedesk" / "config.yaml",
    ]

    for path in locations:
        if path.exists():
            return path

    return None


def load_config(config_path: str | Path | None = None) -> dict[str, Any]:
    """Load configuration from YAML file.

    Args:
        config_path: Optional explicit path to config file.

    Returns:
        Configuration dictionary with defaults applied.
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    if config_path:
        path = Path(config_path)
    else:
        path = find_config_file()

    if path and path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
            config = _deep_merge(config, file_config)

    # Override with environment variables
    if os.environ.get("SITEDESK_SITES_PATH"):
        config["sites"]["path"] = os.environ["SITEDESK_SITES_PATH"]

    if os.environ.get("SITEDESK_API_URL"):
        config["platform"]["api_url"] = os.environ["SITEDESK_API_URL"]

    if os.environ.get("SITEDESK_FUNCTIONS_URL"):
        config["platform"]["functions_url"] = os.environ["SITEDESK_FUNCTIONS_URL"]

    if os.environ.get("SITEDESK_LOG_LEVEL"):
        config["logging"]["level"] = os.environ["SITEDESK_LOG_LEVEL"]

    return config


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def get_job_defaults(config: dict, job_name: str) -> dict[str, Any]:
    """Get the default settings for one job type ('import' or 'bulk_delete')."""
    jobs = config.get("jobs", {})
    defaults = dict(jobs.get(job_name) or {})
    if "poll_interval" in jobs:
        defaults.setdefault("poll_interval", jobs["poll_interval"])
    return defaults


def configure_logging(config: dict, handler: logging.Handler | None = None) -> None:
    """Apply the configured log level, optionally with a custom handler."""
    level = str(config.get("logging", {}).get("level", "INFO")).upper()
    if handler is None:
        logging.basicConfig(
            level=level,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )
    else:
        logging.basicConfig(level=level, format="%(message)s", handlers=[handler])
