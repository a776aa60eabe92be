"""Configuration loader with environment variable support."""
import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
import yaml
from dotenv import load_dotenv

logger = logging.getLogger("trade_journal")

ENV_PREFIX = "TRADE_JOURNAL_"

DEFAULTS: Dict[str, Any] = {
    "solana_tracker": {
        "base_url": "https://data.solanatracker.io",
        "api_key": "",
        "timeout": 15,
        "max_retries": 1,
        "min_wait": 1,
        "max_wait": 30,
        "max_rate_limit_wait": 60.0,
    },
    "ingestion": {
        "interval_seconds": 1800,
        "max_pages": 10,
        "page_delay": 0.5,
        "wallet_delay": 1.0,
        "run_on_startup": True,
    },
    "database": {
        "path": "journal.db",
    },
    "reporting": {
        "log_level": "INFO",
    },
    "health": {
        "port": 8080,
    },
}

# TRADE_JOURNAL_<suffix> -> (section, key)
ENV_MAPPING: Dict[str, Tuple[str, str]] = {
    "API_KEY": ("solana_tracker", "api_key"),
    "API_BASE_URL": ("solana_tracker", "base_url"),
    "API_TIMEOUT": ("solana_tracker", "timeout"),
    "API_MAX_RETRIES": ("solana_tracker", "max_retries"),
    "MAX_RATE_LIMIT_WAIT": ("solana_tracker", "max_rate_limit_wait"),
    "INTERVAL_SECONDS": ("ingestion", "interval_seconds"),
    "MAX_PAGES": ("ingestion", "max_pages"),
    "PAGE_DELAY": ("ingestion", "page_delay"),
    "WALLET_DELAY": ("ingestion", "wallet_delay"),
    "RUN_ON_STARTUP": ("ingestion", "run_on_startup"),
    "DB_PATH": ("database", "path"),
    "LOG_LEVEL": ("reporting", "log_level"),
    "HEALTH_PORT": ("health", "port"),
}

# Keys that must be positive numbers, and the ones allowed to be zero
_POSITIVE = {
    ("solana_tracker", "timeout"),
    ("solana_tracker", "max_retries"),
    ("ingestion", "interval_seconds"),
    ("ingestion", "max_pages"),
}
_NON_NEGATIVE = {
    ("solana_tracker", "min_wait"),
    ("solana_tracker", "max_wait"),
    ("solana_tracker", "max_rate_limit_wait"),
    ("ingestion", "page_delay"),
    ("ingestion", "wallet_delay"),
}

_PLACEHOLDER_KEYS = ("placeholder", "disabled", "none", "null")


class ConfigError(ValueError):
    """Raised when a config file or override cannot be used."""
    pass


def _merge_sections(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Return ``base`` with ``override`` merged in; nested dicts merge recursively."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if value is None and isinstance(current, dict):
            # An empty YAML section keeps its defaults
            continue
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _merge_sections(current, value)
        else:
            merged[key] = value
    return merged


def _coerce(env_var: str, raw: str, like: Any) -> Any:
    """Convert an env string to the type of the value it replaces."""
    try:
        if isinstance(like, bool):
            return raw.strip().lower() in ("true", "1", "yes", "on")
        if isinstance(like, int):
            return int(raw)
        if isinstance(like, float):
            return float(raw)
    except ValueError:
        raise ConfigError(f"{env_var}={raw!r} is not a valid {type(like).__name__}")
    return raw


def _read_yaml(config_file: Path) -> Dict[str, Any]:
    with open(config_file) as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Cannot parse {config_file}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{config_file} must contain a mapping at the top level")
    return data


def _apply_env_overrides(config: Dict[str, Any]) -> List[str]:
    applied = []
    for suffix, (section, key) in ENV_MAPPING.items():
        env_var = f"{ENV_PREFIX}{suffix}"
        raw = os.getenv(env_var)
        if raw is None:
            continue
        target = config.setdefault(section, {})
        target[key] = _coerce(env_var, raw, target.get(key))
        applied.append(env_var)
    return applied


def validate_config(config: Dict[str, Any]) -> None:
    """Reject settings the ingestion loop cannot run with.

    Raises:
        ConfigError: On a non-numeric, zero or negative timing/paging value
    """
    for rule, keys in (("positive", _POSITIVE), ("non-negative", _NON_NEGATIVE)):
        for section, key in sorted(keys):
            values = config.get(section)
            if not isinstance(values, dict):
                raise ConfigError(f"{section} must be a mapping, got {values!r}")
            value = values.get(key)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigError(f"{section}.{key} must be a number, got {value!r}")
            if value < 0 or (rule == "positive" and value == 0):
                raise ConfigError(f"{section}.{key} must be {rule}, got {value!r}")


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from defaults, config file, and environment variables.

    Priority (highest to lowest):
    1. Environment variables (TRADE_JOURNAL_*)
    2. Config file (config.yaml, or TRADE_JOURNAL_CONFIG_PATH)
    3. Default values

    A ``.env`` file is only read when no explicit path is given.

    Raises:
        ConfigError: If the file is unreadable YAML, an override has the
            wrong type, or a timing/paging value is out of range
    """
    config = copy.deepcopy(DEFAULTS)

    if config_path is None:
        load_dotenv()
        config_path = os.getenv(f"{ENV_PREFIX}CONFIG_PATH", "config.yaml")

    config_file = Path(config_path)
    if config_file.exists():
        config = _merge_sections(config, _read_yaml(config_file))

    applied = _apply_env_overrides(config)
    if applied:
        logger.debug("Config overridden from environment: %s", ", ".join(applied))

    validate_config(config)
    return config


def get_db_path(config: Dict[str, Any]) -> str:
    return config.get("database", {}).get("path", DEFAULTS["database"]["path"])


def get_api_key(config: Dict[str, Any]) -> Optional[str]:
    """Get the SolanaTracker API key, or None if empty or a placeholder.

    Secret Manager does not allow empty values, so 'placeholder', 'disabled'
    and 'none' are treated as unset.
    """
    key = (config.get("solana_tracker", {}).get("api_key") or "").strip()
    if not key or key.lower() in _PLACEHOLDER_KEYS:
        return None
    return key


def get_ingestion_settings(config: Dict[str, Any]) -> Dict[str, Any]:
    """Ingestion settings merged over defaults."""
    return _merge_sections(DEFAULTS["ingestion"], config.get("ingestion") or {})


def get_api_settings(config: Dict[str, Any]) -> Dict[str, Any]:
    """SolanaTracker client settings merged over defaults."""
    return _merge_sections(DEFAULTS["solana_tracker"], config.get("solana_tracker") or {})
