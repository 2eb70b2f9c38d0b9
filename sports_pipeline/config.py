import os
import json
import logging
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from pydantic import ValidationError

from sports_pipeline.ingestion.base import ConfigError
from sports_pipeline.types import MonitorConfig, RateLimitConfig, SourceConfig

logger = logging.getLogger(__name__)

# Load environment variables from .env file
load_dotenv()

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("LOG_JSON", "false").lower() == "true"
LOG_FILE = os.getenv("LOG_FILE") or None

# Collection
FETCH_TIMEOUT_SECONDS = float(os.getenv("FETCH_TIMEOUT_SECONDS", "30"))
USE_FIXTURE_ADAPTERS = os.getenv("USE_FIXTURE_ADAPTERS", "false").lower() == "true"
EXTRACTION_SERVICE_URL = os.getenv("EXTRACTION_SERVICE_URL") or None
EXTRACTION_SERVICE_API_KEY = os.getenv("EXTRACTION_SERVICE_API_KEY") or None

# Collaborators
PREDICTION_SERVICE_URL = os.getenv("PREDICTION_SERVICE_URL") or None
REDIS_URL = os.getenv("REDIS_URL") or None
SLACK_WEBHOOK_URL = os.getenv("SLACK_WEBHOOK_URL") or None

# Status log interval for the service entry point
STATUS_LOG_INTERVAL_SECONDS = float(os.getenv("STATUS_LOG_INTERVAL_SECONDS", "60"))


# ============================================================================
# Settings Loader for config/pipeline.json
# ============================================================================

DEFAULT_RATE_LIMITS: Dict[str, Dict[str, Any]] = {
    "espn.com": {"requests_per_window": 60, "backoff_multiplier": 2.0, "max_retries": 3},
    "yahoo.com": {"requests_per_window": 40, "backoff_multiplier": 1.5, "max_retries": 3},
    "draftkings.com": {"requests_per_window": 30, "backoff_multiplier": 2.0, "max_retries": 2},
    "default": {"requests_per_window": 20, "backoff_multiplier": 2.0, "max_retries": 3},
}

# Cache for loaded settings
_settings_cache: Optional[Dict[str, Any]] = None


def get_settings_path() -> str:
    """Get the path to pipeline.json, overridable with PIPELINE_CONFIG_PATH."""
    override = os.getenv("PIPELINE_CONFIG_PATH")
    if override:
        return override

    # Project root is the parent of the sports_pipeline package
    current_dir = os.path.dirname(os.path.abspath(__file__))
    project_root = os.path.dirname(current_dir)
    return os.path.join(project_root, "config", "pipeline.json")


def _default_settings() -> Dict[str, Any]:
    return {
        "rate_limit_window_seconds": 60,
        "rate_limits": {k: dict(v) for k, v in DEFAULT_RATE_LIMITS.items()},
        "monitor": {},
        "sources": [],
    }


def load_settings(force_reload: bool = False) -> Dict[str, Any]:
    """
    Load settings from config/pipeline.json.

    Args:
        force_reload: If True, reload from file even if cached

    Returns:
        Dictionary of settings with defaults for missing values

    Raises:
        ConfigError: If the file exists but is not valid JSON
    """
    global _settings_cache

    # Return cached settings if available and not forcing reload
    if _settings_cache is not None and not force_reload:
        return _settings_cache

    settings = _default_settings()
    settings_path = get_settings_path()

    if not os.path.exists(settings_path):
        logger.warning(f"Settings file not found at {settings_path}, using defaults")
        _settings_cache = settings
        return settings

    try:
        with open(settings_path, "r") as f:
            file_settings = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot read settings from {settings_path}: {e}") from e

    if not isinstance(file_settings, dict):
        raise ConfigError(f"Settings in {settings_path} must be a JSON object")

    # Merge with defaults (file settings override defaults, per section)
    for key, value in file_settings.items():
        if isinstance(value, dict) and isinstance(settings.get(key), dict):
            settings[key] = {**settings[key], **value}
        else:
            settings[key] = value

    _settings_cache = settings
    return settings


def get_rate_limits(settings: Optional[Dict[str, Any]] = None) -> Dict[str, RateLimitConfig]:
    """
    Get per-origin rate limits, including the "default" entry.

    Raises:
        ConfigError: If an entry is invalid
    """
    settings = settings if settings is not None else load_settings()
    limits = {}
    for origin, raw in settings.get("rate_limits", {}).items():
        try:
            limits[origin] = RateLimitConfig(**raw)
        except (TypeError, ValidationError) as e:
            raise ConfigError(f"Invalid rate limit for '{origin}': {e}") from e
    return limits


def get_rate_limit_window(settings: Optional[Dict[str, Any]] = None) -> float:
    settings = settings if settings is not None else load_settings()
    return float(settings.get("rate_limit_window_seconds", 60))


def get_monitor_config(settings: Optional[Dict[str, Any]] = None) -> MonitorConfig:
    """
    Raises:
        ConfigError: If the monitor section is invalid
    """
    settings = settings if settings is not None else load_settings()
    try:
        return MonitorConfig(**settings.get("monitor", {}))
    except (TypeError, ValidationError) as e:
        raise ConfigError(f"Invalid monitor settings: {e}") from e


def get_source_configs(settings: Optional[Dict[str, Any]] = None) -> List[SourceConfig]:
    """
    Get the declared sources.

    Raises:
        ConfigError: If a source entry is invalid or an id repeats
    """
    settings = settings if settings is not None else load_settings()
    sources = []
    seen = set()
    for index, raw in enumerate(settings.get("sources", [])):
        try:
            source = SourceConfig(**raw)
        except (TypeError, ValidationError) as e:
            raise ConfigError(f"Invalid source #{index}: {e}") from e
        if source.id in seen:
            raise ConfigError(f"Duplicate source id '{source.id}'")
        seen.add(source.id)
        sources.append(source)
    return sources
