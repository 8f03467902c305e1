"""Static settings for gpubsub.

Subscriptions, rules and commands live in a single YAML file so they can be
edited without touching Python. Defaults for the command line flags may be
provided through the environment (or a .env file).
"""

from __future__ import annotations

import os
from typing import Any

import yaml
from dotenv import load_dotenv

from core.config import ConfigError

load_dotenv()

# Default path of the subscriptions document.
SUBS_PATH = os.getenv("GSUB_SUBS", "subs.yaml")

# Optional service account JSON file; application default credentials are
# used when it is empty.
CREDS_PATH = os.getenv("GSUB_CREDS", "")

# Optional log file; logs go to the console when it is empty.
LOG_FILE = os.getenv("GSUB_LOG_FILE", "")

# Rotation limits for the log file.
LOG_MAX_BYTES = int(os.getenv("GSUB_LOG_MAX_BYTES", str(5 * 1024 * 1024)))
LOG_BACKUP_COUNT = int(os.getenv("GSUB_LOG_BACKUP_COUNT", "5"))


def load_config_file(path: str) -> Any:
    """Load the subscriptions document (YAML, JSON works as well)."""

    try:
        with open(path, "r", encoding="utf-8") as handle:
            return yaml.safe_load(handle)
    except OSError as exc:
        raise ConfigError(f"Failed to read subscriptions: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"failed to unmarshal yaml: {exc}") from exc
