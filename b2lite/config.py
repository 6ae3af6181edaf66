"""
Configuration Management

Handles loading configuration from environment variables and config files.
The library itself takes plain values (see StoreClient); this module is
how the CLI and scripts build them.

Environment variables:
| Variable           | Field                     | Default                |
|--------------------|---------------------------|------------------------|
| B2_KEY_ID          | key_id                    | (required)             |
| B2_APP_KEY         | app_key                   | (required)             |
| B2_BUCKET_ID       | bucket_id                 | (required)             |
| B2_BUCKET_NAME     | bucket_name               | (required)             |
| B2_AUTH_URL        | auth_url                  | B2 authorize endpoint  |
| B2_MAX_CONCURRENT  | max_concurrent            | 3                      |
| B2_FRESH_ENDPOINT  | fresh_endpoint_per_upload | false                  |
| B2_TIMEOUT         | timeout                   | 30.0                   |
| B2_LOG_LEVEL       | log_level                 | INFO                   |
"""

import os
import json
from pathlib import Path
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from .errors import ConfigurationError
from .protocol import DEFAULT_AUTH_URL

# field name -> environment variable
ENV_VARS = {
    'key_id': 'B2_KEY_ID',
    'app_key': 'B2_APP_KEY',
    'bucket_id': 'B2_BUCKET_ID',
    'bucket_name': 'B2_BUCKET_NAME',
    'auth_url': 'B2_AUTH_URL',
    'max_concurrent': 'B2_MAX_CONCURRENT',
    'fresh_endpoint_per_upload': 'B2_FRESH_ENDPOINT',
    'timeout': 'B2_TIMEOUT',
    'log_level': 'B2_LOG_LEVEL',
}

REQUIRED = ('key_id', 'app_key', 'bucket_id', 'bucket_name')


@dataclass
class Config:
    """
    Store client configuration.

    Configuration priority (highest to lowest):
    1. Environment variables (B2_*, a .env file is honored)
    2. Config file (config.json)
    3. Default values
    """
    # Credentials
    key_id: str = ''
    app_key: str = ''

    # Bucket
    bucket_id: str = ''
    bucket_name: str = ''

    # Endpoint
    auth_url: str = DEFAULT_AUTH_URL

    # Upload behavior
    max_concurrent: int = 3
    fresh_endpoint_per_upload: bool = False

    # Per-request timeout (seconds)
    timeout: float = 30.0

    log_level: str = 'INFO'

    def validate(self):
        """Raise ConfigurationError if required values are missing or out of range."""
        missing = [ENV_VARS[name] for name in REQUIRED if not getattr(self, name)]
        if missing:
            raise ConfigurationError(f"Missing configuration: {', '.join(missing)}")
        if self.max_concurrent < 1:
            raise ConfigurationError(f"max_concurrent must be >= 1, got {self.max_concurrent}")
        if self.timeout <= 0:
            raise ConfigurationError(f"timeout must be > 0, got {self.timeout}")

    @classmethod
    def from_env(cls) -> 'Config':
        """Read B2_* variables (after loading a .env file, if any)."""
        return cls(**env_values())

    @classmethod
    def from_file(cls, path: Path) -> 'Config':
        """Load a JSON config file; a missing file yields the defaults."""
        if not path.exists():
            return cls()

        try:
            with open(path) as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e

        unknown = set(data) - {f.name for f in fields(cls)}
        if unknown:
            raise ConfigurationError(
                f"Unknown keys in {path}: {', '.join(sorted(unknown))}"
            )
        return cls(**data)

    def to_dict(self, mask_secret: bool = True) -> dict:
        """Field values; the application key is masked unless asked otherwise."""
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        if mask_secret and self.app_key:
            data['app_key'] = '***'
        return data

    def save(self, path: Path):
        """Save configuration to a JSON file (the key is written in clear)."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(mask_secret=False), f, indent=2)


def _coerce(name: str, var: str, raw: str):
    try:
        if name == 'max_concurrent':
            return int(raw)
        if name == 'timeout':
            return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{var} is not a number: {raw!r}") from e
    if name == 'fresh_endpoint_per_upload':
        return raw.strip().lower() in ('1', 'true', 'yes')
    return raw


def env_values() -> Dict[str, Any]:
    """Coerced values of the B2_* variables that are set, keyed by field."""
    load_dotenv()

    values = {}
    for name, var in ENV_VARS.items():
        raw = os.getenv(var)
        if raw is not None:
            values[name] = _coerce(name, var, raw)
    return values


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from file and environment.

    Every environment variable that is set overrides the file, even when
    its value equals the default.
    """
    config = Config.from_file(config_path) if config_path else Config()

    for name, value in env_values().items():
        setattr(config, name, value)

    return config
