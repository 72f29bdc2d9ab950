"""YAML configuration loader with environment variable overrides.

Configuration is loaded in layers (later layers override earlier):

  1. config/config.yaml  -- static defaults checked into the repo
                            (retrieval weights, chunk size, source limits)
  2. .env file           -- local developer overrides (not committed)
  3. Environment vars    -- set at deploy time

``load_config()`` reads the YAML file first, then deep-merges the
environment-derived values from :class:`Settings` on top.
"""

from pathlib import Path

import yaml

from marginalia.config.settings import Settings
from marginalia.utils.errors import ConfigurationError


def load_config(path: str = "config/config.yaml", settings: Settings | None = None) -> dict:
    """Load YAML config and merge with environment-based Settings.

    Args:
        path: Path to the YAML configuration file.
        settings: Pre-built settings; a fresh :class:`Settings` is read
            from the environment when omitted.

    Returns:
        Fully resolved configuration dictionary.

    Raises:
        ConfigurationError: If the YAML file is unparseable or its top
            level is not a mapping.
    """
    config_path = Path(path)
    if config_path.exists():
        try:
            with open(config_path) as f:
                yaml_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(message=f"Unparseable config file {config_path}: {exc}") from exc
        if not isinstance(yaml_config, dict):
            raise ConfigurationError(message=f"Config file {config_path} must contain a mapping")
    else:
        yaml_config = {}

    settings = settings or Settings()
    env_overrides = {
        "app": {
            "host": settings.app_host,
            "port": settings.app_port,
            "env": settings.app_env,
        },
        "llm": {
            "anthropic_model": settings.anthropic_model,
            "available_providers": settings.get_available_llm_providers(),
            "chat_max_tokens": settings.chat_max_tokens,
            "landscape_max_tokens": settings.landscape_max_tokens,
        },
        "retrieval": {
            "top_k": settings.retrieval_top_k,
        },
        "store": {
            "max_books": settings.store_max_books,
            "ttl_seconds": settings.store_ttl_seconds,
        },
        "logging": {
            "level": settings.log_level,
        },
    }

    _deep_merge(yaml_config, env_overrides)
    return yaml_config


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
