"""Run options and shared configuration helpers.

Options are resolved in this order (later wins):
1. Built-in defaults
2. Environment variables (STACKCTL_*)
3. Explicit CLI flags

The project document itself is loaded by project.load_project().
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_CONFIG_FILE = 'config.yml'
DEFAULT_MAX_WORKERS = 8
DEFAULT_MAX_REMOTE_CALLS = 4


class ConfigError(Exception):
    """Configuration error."""


@dataclass
class Options:
    """Options for a single invocation.

    Attributes:
        region: Default provider region (None: boto3 default chain)
        profile: AWS profile name
        max_workers: Upper bound on per-stack tasks running at once
        max_remote_calls: Upper bound on in-flight provider calls
        output_ttl: Seconds before a fetched output snapshot is refetched
            during resolution (None: fetch once per process)
        wait: Block until provider operations complete
    """
    region: Optional[str] = None
    profile: Optional[str] = None
    max_workers: int = DEFAULT_MAX_WORKERS
    max_remote_calls: int = DEFAULT_MAX_REMOTE_CALLS
    output_ttl: Optional[float] = None
    wait: bool = True

    def __post_init__(self):
        if self.max_workers < 1:
            raise ConfigError(f"max_workers must be >= 1, got {self.max_workers}")
        if self.max_remote_calls < 1:
            raise ConfigError(f"max_remote_calls must be >= 1, got {self.max_remote_calls}")

    @classmethod
    def from_env(cls, **overrides) -> 'Options':
        """Build options from STACKCTL_* environment variables.

        Keyword overrides that are not None take precedence.
        """
        values: dict = {
            'region': os.environ.get('STACKCTL_REGION') or None,
            'profile': os.environ.get('STACKCTL_PROFILE') or None,
            'max_workers': _env_int('STACKCTL_MAX_WORKERS', DEFAULT_MAX_WORKERS),
            'max_remote_calls': _env_int('STACKCTL_MAX_REMOTE_CALLS', DEFAULT_MAX_REMOTE_CALLS),
            'output_ttl': _env_float('STACKCTL_OUTPUT_TTL'),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got '{raw}'") from e


def _env_float(name: str) -> Optional[float]:
    raw = os.environ.get(name)
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got '{raw}'") from e


def get_config_path(path: Optional[str] = None) -> Path:
    """Resolve the project document path (flag > STACKCTL_CONFIG > default)."""
    return Path(path or os.environ.get('STACKCTL_CONFIG') or DEFAULT_CONFIG_FILE)


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    try:
        with open(path, encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
