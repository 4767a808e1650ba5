"""Runtime settings from environment variables and an optional YAML file.

Precedence: environment, then YAML, then defaults. Malformed numbers fall
back to the default value.
"""

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

import yaml

ENV_PREFIX = "CARDFLO_"


@dataclass
class Settings:
    classifier_url: Optional[str] = None
    classifier_key: Optional[str] = None
    request_timeout: float = 30.0
    db_path: str = "data/cardflo.db"
    image_dir: str = "data/images"
    log_dir: str = "logs"
    log_level: str = "INFO"
    camera_index: int = 0
    poll_interval: float = 1.5
    snapshot_scale: float = 0.5
    snapshot_quality: int = 50
    still_quality: int = 92
    max_duplicate_scan: int = 1000
    warning_ratio: float = 0.8
    cycle_days: int = 30


def _cast(raw, default, kind):
    if raw is None:
        return default
    try:
        return kind(raw)
    except (TypeError, ValueError):
        return default


def load_yaml(config_path: str | Path) -> dict:
    """Load a YAML mapping; an empty file yields {}."""
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a mapping: {config_path}")
    return data


def load_settings(config_path: Optional[str | Path] = None) -> Settings:
    """Build settings from the environment and an optional YAML file."""
    file_values = load_yaml(config_path) if config_path else {}
    defaults = Settings()
    values = {}
    for f in fields(Settings):
        default = getattr(defaults, f.name)
        raw = os.environ.get(ENV_PREFIX + f.name.upper(), file_values.get(f.name))
        kind = type(default) if default is not None else str
        values[f.name] = _cast(raw, default, kind)
    return Settings(**values)
