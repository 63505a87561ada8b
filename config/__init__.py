"""Configuration management module for protosearch."""

from .config_manager import (
    ConfigManager,
    DEFAULT_CONFIG_PATH,
    LOG_FORMAT,
    configure_logging,
    indexer_config_from,
    load_config_with_env_override,
    search_config_from
)

__all__ = [
    'ConfigManager',
    'DEFAULT_CONFIG_PATH',
    'LOG_FORMAT',
    'configure_logging',
    'indexer_config_from',
    'load_config_with_env_override',
    'search_config_from'
]
