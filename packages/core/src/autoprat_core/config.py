import os
from collections.abc import Mapping
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_CONFIG: dict = {
    "concurrency": 20,  # max simultaneous log downloads
    "request_timeout": 30.0,  # seconds, whole request
    "connect_timeout": 10.0,  # seconds, connection establishment only
    "prow_hosts": [],  # Prow front ends whose hostname does not start with "prow."
    "error_patterns": {},  # name -> regex, appended after the built-in table
    "ignore_pending_status_contexts": True,  # e.g. tide: a merge gate, not CI
}


def load_config(config_path: str = ".autoprat.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .autoprat.yml in the current directory
      3. CLI argument overrides
    """
    config = {
        **DEFAULT_CONFIG,
        "prow_hosts": list(DEFAULT_CONFIG["prow_hosts"]),
        "error_patterns": dict(DEFAULT_CONFIG["error_patterns"]),
    }

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        config.update(file_config)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    config["github_token"] = os.environ.get("GITHUB_TOKEN")

    return config


def validate_config(config: dict) -> None:
    """Raise ValueError if the log-fetch settings can't be used."""
    concurrency = config.get("concurrency")
    if not isinstance(concurrency, int) or isinstance(concurrency, bool) or concurrency < 1:
        raise ValueError(f"concurrency must be a positive integer, got {concurrency!r}")

    for key in ("request_timeout", "connect_timeout"):
        value = config.get(key)
        if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
            raise ValueError(f"{key} must be a positive number of seconds, got {value!r}")

    error_patterns = config.get("error_patterns") or {}
    if not isinstance(error_patterns, Mapping):
        raise ValueError("error_patterns must be a mapping of pattern name to regex")
    for name, regex in error_patterns.items():
        if not isinstance(regex, str):
            raise ValueError(f"error_patterns[{name!r}] must be a regex string, got {regex!r}")

    if not isinstance(config.get("prow_hosts") or [], list):
        raise ValueError("prow_hosts must be a list of hostnames")
