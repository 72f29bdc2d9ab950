"""Configuration module: exports Settings and load_config."""

from marginalia.config.loader import load_config
from marginalia.config.settings import Settings

__all__ = ["Settings", "load_config"]
