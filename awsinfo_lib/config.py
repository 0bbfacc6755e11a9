"""
Configuration module for AWS Info

Settings come from, lowest to highest priority:
1. Built-in defaults
2. YAML config file (~/.awsinfo/config.yaml)
3. Environment variables (AWSINFO_*)
4. Command-line options

Config file example:
```yaml
s3_bucket: awsinfo
s3_url_base: https://s3.amazonaws.com/awsinfo
api_seconds_delay: 1
r53_api_seconds_delay: 180
```

The resulting InventoryConfig is built once at startup and never mutated.
"""

import os
import stat
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .exceptions import ConfigError
from .logging import get_logger

logger = get_logger()

PROG_NAME = "awsinfo"
CONFIG_FILE_NAME = "config.yaml"

DEFAULT_S3_BUCKET = "awsinfo"
DEFAULT_S3_URL_BASE = "https://s3.amazonaws.com/awsinfo"
DEFAULT_API_DELAY_SECONDS = 1
DEFAULT_R53_API_DELAY_SECONDS = 180

# Keys a config file must define when it exists
REQUIRED_FILE_KEYS = (
    "s3_bucket",
    "s3_url_base",
    "api_seconds_delay",
    "r53_api_seconds_delay",
)

ENV_VAR_MAPPING = {
    "s3_bucket": "AWSINFO_S3_BUCKET",
    "s3_url_base": "AWSINFO_S3_URL_BASE",
    "api_seconds_delay": "AWSINFO_API_SECONDS_DELAY",
    "r53_api_seconds_delay": "AWSINFO_R53_API_SECONDS_DELAY",
    "config_dir": "AWSINFO_CONFIG_DIR",
}

# Checked in order before falling back to the boto3 profile configuration
REGION_ENV_VARS = ("AWS_REGION", "AMAZON_REGION", "AWS_DEFAULT_REGION")


@dataclass(frozen=True)
class InventoryConfig:
    """Settings shared by every store, collector and sync operation."""

    config_dir: Path
    s3_bucket: str = DEFAULT_S3_BUCKET
    s3_url_base: str = DEFAULT_S3_URL_BASE
    api_delay_seconds: int = DEFAULT_API_DELAY_SECONDS
    r53_api_delay_seconds: int = DEFAULT_R53_API_DELAY_SECONDS
    region: Optional[str] = None
    profile: Optional[str] = None

    @property
    def config_file(self) -> Path:
        return self.config_dir / CONFIG_FILE_NAME

    def with_region(self, region: str) -> "InventoryConfig":
        return replace(self, region=region)


def default_config_dir() -> Path:
    return Path.home() / f".{PROG_NAME}"


def ensure_config_dir(config_dir: Path) -> Path:
    """Create the per-user config directory with owner-only permissions."""
    if not config_dir.exists():
        try:
            config_dir.mkdir(mode=0o700, parents=True)
        except OSError as e:
            raise ConfigError(f"Cannot create config directory {config_dir}: {e}") from e
    return config_dir


def _as_int(key: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{key} must be an integer, got {value!r}") from e


def load_config_file(config_file: Path) -> Dict[str, Any]:
    """Load settings from a YAML config file. A missing file means defaults."""
    if not config_file.exists():
        logger.debug("No config file at %s, using defaults", config_file)
        return {}

    file_mode = config_file.stat().st_mode
    if file_mode & (stat.S_IRWXG | stat.S_IRWXO):
        logger.warning(
            "Config file %s has loose permissions. Consider: chmod 600 %s",
            config_file,
            config_file,
        )

    try:
        with open(config_file, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot read {config_file}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{config_file} must contain a mapping of settings")

    for key in REQUIRED_FILE_KEYS:
        if data.get(key) in (None, ""):
            raise ConfigError(f"Error. {key} not defined in {config_file}")

    logger.debug("Loaded config from %s", config_file)
    return data


def load_env_config() -> Dict[str, Any]:
    """Load settings from AWSINFO_* environment variables."""
    config: Dict[str, Any] = {}
    for key, env_var in ENV_VAR_MAPPING.items():
        value = os.environ.get(env_var)
        if value:
            config[key] = value
    return config


def load_config(
    config_dir: Optional[Path] = None,
    profile: Optional[str] = None,
    region: Optional[str] = None,
) -> InventoryConfig:
    """
    Build the InventoryConfig from defaults, config file, environment and
    explicit arguments.
    """
    env_config = load_env_config()
    directory = Path(
        config_dir or env_config.get("config_dir") or default_config_dir()
    ).expanduser()
    ensure_config_dir(directory)

    merged: Dict[str, Any] = {}
    merged.update(load_config_file(directory / CONFIG_FILE_NAME))
    merged.update({k: v for k, v in env_config.items() if k != "config_dir"})

    return InventoryConfig(
        config_dir=directory,
        s3_bucket=str(merged.get("s3_bucket", DEFAULT_S3_BUCKET)),
        s3_url_base=str(merged.get("s3_url_base", DEFAULT_S3_URL_BASE)),
        api_delay_seconds=_as_int(
            "api_seconds_delay", merged.get("api_seconds_delay", DEFAULT_API_DELAY_SECONDS)
        ),
        r53_api_delay_seconds=_as_int(
            "r53_api_seconds_delay",
            merged.get("r53_api_seconds_delay", DEFAULT_R53_API_DELAY_SECONDS),
        ),
        region=region or region_from_env(),
        profile=profile,
    )


def region_from_env() -> Optional[str]:
    for env_var in REGION_ENV_VARS:
        value = os.environ.get(env_var)
        if value:
            return value
    return None


def generate_sample_config(config: Optional[InventoryConfig] = None) -> str:
    """Generate skeleton config file content with the current values."""
    config = config or InventoryConfig(config_dir=default_config_dir())
    return (
        "# Edit these values to match your environment setup\n"
        "\n"
        "# Bucket that receives uploads from 'awsinfo sync'\n"
        f"s3_bucket: {config.s3_bucket}\n"
        "\n"
        "# Public base URL the shared stores are read from\n"
        f"s3_url_base: {config.s3_url_base}\n"
        "\n"
        "# Seconds to back off when AWS throttles a request\n"
        f"api_seconds_delay: {config.api_delay_seconds}\n"
        "# Read for compatibility with older config files, no longer used\n"
        f"r53_api_seconds_delay: {config.r53_api_delay_seconds}\n"
    )


def create_skeleton_config(config: InventoryConfig) -> Optional[Path]:
    """
    Write a skeleton config file. Returns its path, or None when a config
    file already exists.
    """
    config_file = config.config_file
    if config_file.exists():
        return None
    ensure_config_dir(config.config_dir)
    fd = os.open(config_file, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(generate_sample_config(config))
    return config_file
