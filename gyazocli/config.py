"""
Configuration management for gyazocli.
Handles loading, validation, and defaults for all settings.
"""

import os
import yaml
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field
import logging

logger = logging.getLogger(__name__)

# Default paths
DEFAULT_CONFIG_PATHS = [
    os.path.expanduser("~/.config/gyazo/config.yaml"),
    "./config.yaml",
]

# Environment variables that override values from the config file
ENV_CONFIG_PATH = "GYAZO_CONFIG"
ENV_ACCESS_TOKEN = "GYAZO_ACCESS_TOKEN"
ENV_CACHE_DIR = "GYAZO_CACHE_DIR"


def default_cache_directory() -> str:
    """Return the XDG cache location used when nothing else is configured."""
    cache_base = os.environ.get("XDG_CACHE_HOME") or os.path.expanduser("~/.cache")
    return os.path.join(cache_base, "gyazocli")


@dataclass
class ApiConfig:
    """Remote API settings."""
    access_token: Optional[str] = None
    base_url: str = "https://api.gyazo.com"
    upload_url: str = "https://upload.gyazo.com/api/upload"
    timeout_seconds: int = 30
    max_retries: int = 5
    default_retry_after: int = 5  # Seconds to wait on 429 without Retry-After


@dataclass
class CacheConfig:
    """Cache settings."""
    directory: str = ""


@dataclass
class SyncConfig:
    """Warm and sync settings."""
    max_pages: int = 10
    per_page: int = 100
    detail_delay_seconds: float = 0.2  # Pause after each detail fetch during bulk sync


@dataclass
class RankingConfig:
    """Ranking output settings."""
    limit: int = 10
    default_days: int = 7


@dataclass
class GyazoConfig:
    """Main configuration class."""
    api: ApiConfig = field(default_factory=ApiConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    ranking: RankingConfig = field(default_factory=RankingConfig)

    # Runtime state (not persisted)
    config_path: Optional[str] = None


def _dict_to_dataclass(data: Dict[str, Any], cls: type) -> Any:
    """Convert a dictionary to a dataclass instance, handling nested dataclasses."""
    if data is None:
        return cls()

    field_types = {f.name: f.type for f in cls.__dataclass_fields__.values()}
    kwargs = {}

    for key, value in data.items():
        if key not in field_types:
            continue

        field_type = field_types[key]

        if hasattr(field_type, '__dataclass_fields__'):
            kwargs[key] = _dict_to_dataclass(value, field_type)
        else:
            kwargs[key] = value

    return cls(**kwargs)


def load_config(config_path: Optional[str] = None) -> GyazoConfig:
    """
    Load configuration from a YAML file and the environment.

    Args:
        config_path: Path to config file. If None, checks $GYAZO_CONFIG and
            then the default locations.

    Returns:
        GyazoConfig instance with loaded or default values.
    """
    if config_path:
        paths_to_try = [config_path]
    elif os.environ.get(ENV_CONFIG_PATH):
        paths_to_try = [os.environ[ENV_CONFIG_PATH]]
    else:
        paths_to_try = DEFAULT_CONFIG_PATHS

    config_data = {}
    found_path = None

    for path in paths_to_try:
        expanded_path = os.path.expanduser(path)
        if os.path.exists(expanded_path):
            try:
                with open(expanded_path, 'r') as f:
                    config_data = yaml.safe_load(f) or {}
                found_path = expanded_path
                logger.info(f"Loaded config from {expanded_path}")
                break
            except Exception as e:
                logger.warning(f"Failed to load config from {expanded_path}: {e}")

    if not found_path:
        logger.debug("No config file found, using defaults")

    config = GyazoConfig(
        api=_dict_to_dataclass(config_data.get('api'), ApiConfig),
        cache=_dict_to_dataclass(config_data.get('cache'), CacheConfig),
        sync=_dict_to_dataclass(config_data.get('sync'), SyncConfig),
        ranking=_dict_to_dataclass(config_data.get('ranking'), RankingConfig),
        config_path=found_path,
    )

    # Environment wins over the file
    if os.environ.get(ENV_ACCESS_TOKEN):
        config.api.access_token = os.environ[ENV_ACCESS_TOKEN]
    if os.environ.get(ENV_CACHE_DIR):
        config.cache.directory = os.environ[ENV_CACHE_DIR]

    if not config.cache.directory:
        config.cache.directory = default_cache_directory()
    config.cache.directory = os.path.expanduser(config.cache.directory)

    return config


def validate_config(config: GyazoConfig) -> List[str]:
    """
    Validate configuration and return list of errors.

    Returns:
        List of error messages. Empty if valid.
    """
    errors = []

    if not config.api.base_url.startswith(('http://', 'https://')):
        errors.append("api.base_url must start with http:// or https://")

    if config.api.timeout_seconds <= 0:
        errors.append("api.timeout_seconds must be positive")

    if config.api.max_retries < 0:
        errors.append("api.max_retries cannot be negative")

    if not config.cache.directory:
        errors.append("cache.directory is empty")

    if config.sync.max_pages < 1:
        errors.append("sync.max_pages must be at least 1")

    if not (1 <= config.sync.per_page <= 100):
        errors.append("sync.per_page must be between 1 and 100")

    if config.sync.detail_delay_seconds < 0:
        errors.append("sync.detail_delay_seconds cannot be negative")

    if config.ranking.limit < 1:
        errors.append("ranking.limit must be at least 1")

    if config.ranking.default_days < 1:
        errors.append("ranking.default_days must be at least 1")

    return errors
