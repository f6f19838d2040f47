"""Configuration module."""
from .settings import VeriCallConfig, get_config, reset_config
from .logging import setup_logging

__all__ = ["VeriCallConfig", "get_config", "reset_config", "setup_logging"]
