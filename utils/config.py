import copy
import logging
from pathlib import Path

import yaml

DEFAULT_CONFIG = {
    "storage": {
        "backend": "json",
        "records_file": "records.json",
        "corrections_file": "corrections.json",
    },
    "store": {
        "max_retries": 3,
    },
    "limits": {
        "max_work_hours": 20,
        "max_lunch_hours": 6,
        "max_rest_hours": 3,
    },
    "logging": {
        "level": "INFO",
        "format": "%(asctime)s %(levelname)s %(message)s",
    },
    "directory": {
        "users_file": "users.json",
    },
    "sweep": {
        "interval_minutes": 60,
    },
}


def _deep_merge(base: dict, override: dict) -> dict:
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(path: str = "config.yaml") -> dict:
    """Load the YAML config file and merge it over DEFAULT_CONFIG."""
    config_path = Path(path)
    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            user_config = yaml.safe_load(f) or {}
        return _deep_merge(copy.deepcopy(DEFAULT_CONFIG), user_config)
    return copy.deepcopy(DEFAULT_CONFIG)


def configure_logging(config: dict) -> None:
    log_config = config["logging"]
    logging.basicConfig(
        level=getattr(logging, str(log_config["level"]).upper(), logging.INFO),
        format=log_config["format"],
    )
