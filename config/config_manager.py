"""Configuration management for protosearch with validation and defaults."""

import copy
import json
import logging
import os
from typing import Dict, Any, List

from filelock import FileLock

from search.indexer import IndexerConfig
from search.search_service import SearchConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = os.path.join('.protosearch', 'config.json')

VALID_LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


class ConfigManager:
    """Loads, validates and saves the protosearch configuration file."""

    DEFAULT_CONFIG = {
        "database_path": os.path.join('.protosearch', 'registry.db'),
        "search": {
            "default_limit": 50,
            "max_limit": 1000,
            "query_timeout_ms": 5000,
            "suggestion_default_limit": 5,
            "suggestion_max_limit": 20,
            "suggestion_window_days": 30
        },
        "indexing": {
            "batch_size": 100,
            "atomic_reindex": True,
            "lock_dir": None,
            "lock_timeout": 60.0
        },
        "logging": {
            "level": "INFO"
        }
    }

    # Positive integer settings per section
    _POSITIVE_INTS = {
        'search': (
            'default_limit', 'max_limit', 'suggestion_default_limit',
            'suggestion_max_limit', 'suggestion_window_days'
        ),
        'indexing': ('batch_size',),
    }

    def __init__(self, config_path: str = DEFAULT_CONFIG_PATH):
        self.config_path = config_path
        self.lock_path = config_path + '.lock'

    def _read_file(self) -> Dict[str, Any]:
        try:
            with open(self.config_path, 'r') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in config file {self.config_path}: {e}")
        if not isinstance(data, dict):
            raise ValueError(f"Config file {self.config_path} must contain a JSON object")
        return data

    def load_raw_config(self) -> Dict[str, Any]:
        """
        Load the file merged over defaults, without validation.

        A missing file yields the defaults.
        """
        config = copy.deepcopy(self.DEFAULT_CONFIG)
        if os.path.exists(self.config_path):
            config = self._deep_merge(config, self._read_file())
        return config

    def load_config(self, create_if_missing: bool = False) -> Dict[str, Any]:
        """
        Load and validate the configuration.

        Args:
            create_if_missing: Write the defaults when no file exists

        Raises:
            ValueError: If the configuration is invalid
        """
        self._ensure_dir()
        with FileLock(self.lock_path):
            if not os.path.exists(self.config_path) and create_if_missing:
                self._write(copy.deepcopy(self.DEFAULT_CONFIG))
                logger.info(f"Created default configuration at {self.config_path}")
            return self.validate_config(self.load_raw_config())

    def save_config(self, config: Dict[str, Any]):
        """
        Validate and write the configuration atomically.

        Raises:
            ValueError: If the configuration is invalid
        """
        validated = self.validate_config(config)
        self._ensure_dir()
        with FileLock(self.lock_path):
            self._write(validated)

    def set_value(self, key: str, value: Any) -> Dict[str, Any]:
        """
        Set one dotted setting (``search.default_limit``) and save.

        Raises:
            KeyError: If the key is not a known setting
            ValueError: If the resulting configuration is invalid
        """
        parts = key.split('.')
        defaults = self.DEFAULT_CONFIG
        for part in parts:
            if not isinstance(defaults, dict) or part not in defaults:
                raise KeyError(f"Unknown configuration key: {key}")
            defaults = defaults[part]
        if isinstance(defaults, dict):
            raise KeyError(f"Configuration key {key} is a section, not a setting")

        self._ensure_dir()
        with FileLock(self.lock_path):
            config = self.load_raw_config()
            target = config
            for part in parts[:-1]:
                target = target.setdefault(part, {})
            target[parts[-1]] = value

            validated = self.validate_config(config)
            self._write(validated)

        return validated

    def validate_config(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge a configuration over defaults and validate it.

        Raises:
            ValueError: If any setting is invalid
        """
        result = self._deep_merge(copy.deepcopy(self.DEFAULT_CONFIG), config)

        db_path = result.get('database_path')
        if not isinstance(db_path, str) or not db_path.strip():
            raise ValueError("database_path must be a non-empty string")

        for section, keys in self._POSITIVE_INTS.items():
            for key in keys:
                value = result[section].get(key)
                if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                    raise ValueError(f"{section}.{key} must be a positive integer")

        search = result['search']
        if search['default_limit'] > search['max_limit']:
            raise ValueError("search.default_limit cannot exceed search.max_limit")
        if search['suggestion_default_limit'] > search['suggestion_max_limit']:
            raise ValueError("search.suggestion_default_limit cannot exceed search.suggestion_max_limit")

        timeout = search.get('query_timeout_ms')
        if isinstance(timeout, bool) or not isinstance(timeout, int) or timeout < 0:
            raise ValueError("search.query_timeout_ms must be a non-negative integer (0 disables)")

        indexing = result['indexing']
        if not isinstance(indexing.get('atomic_reindex'), bool):
            raise ValueError("indexing.atomic_reindex must be a boolean")
        lock_dir = indexing.get('lock_dir')
        if lock_dir is not None and not isinstance(lock_dir, str):
            raise ValueError("indexing.lock_dir must be a string or null")
        lock_timeout = indexing.get('lock_timeout')
        if isinstance(lock_timeout, bool) or not isinstance(lock_timeout, (int, float)):
            raise ValueError("indexing.lock_timeout must be a number")

        level = result['logging'].get('level')
        if not isinstance(level, str) or level.upper() not in VALID_LOG_LEVELS:
            raise ValueError(f"logging.level must be one of: {', '.join(VALID_LOG_LEVELS)}")

        return result

    def validate_config_file(self) -> List[str]:
        """Return the problems found in the configuration file."""
        issues = []
        try:
            config = self._read_file() if os.path.exists(self.config_path) else {}
            self.validate_config(config)
        except ValueError as e:
            issues.append(str(e))
            return issues

        unknown = set(config) - set(self.DEFAULT_CONFIG)
        if unknown:
            issues.append(f"Unknown configuration fields: {', '.join(sorted(unknown))}")
        for section in ('search', 'indexing', 'logging'):
            extra = set(config.get(section) or {}) - set(self.DEFAULT_CONFIG[section])
            if extra:
                issues.append(f"Unknown {section} fields: {', '.join(sorted(extra))}")
        return issues

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result

    def _ensure_dir(self):
        config_dir = os.path.dirname(self.config_path)
        if config_dir:
            os.makedirs(config_dir, exist_ok=True)

    def _write(self, config: Dict[str, Any]):
        temp_path = self.config_path + '.tmp'
        with open(temp_path, 'w') as f:
            json.dump(config, f, indent=2)
        os.replace(temp_path, self.config_path)


def _env_int(name: str, minimum: int) -> Any:
    raw = os.environ.get(name)
    if raw is None or raw == '':
        return None
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"Invalid value for {name}: '{raw}' is not an integer")
    if value < minimum:
        raise ValueError(f"Invalid value for {name}: must be at least {minimum}")
    return value


def load_config_with_env_override(config_manager: ConfigManager) -> Dict[str, Any]:
    """
    Load configuration with environment variable overrides.

    Environment variables:
    - PROTOSEARCH_DB_PATH: Override database_path
    - PROTOSEARCH_QUERY_TIMEOUT_MS: Override search.query_timeout_ms
    - PROTOSEARCH_BATCH_SIZE: Override indexing.batch_size
    - PROTOSEARCH_LOG_LEVEL: Override logging.level

    Raises:
        ValueError: If an override or the combined configuration is invalid
    """
    config = config_manager.load_raw_config()

    if db_path := os.environ.get('PROTOSEARCH_DB_PATH'):
        config['database_path'] = db_path

    timeout = _env_int('PROTOSEARCH_QUERY_TIMEOUT_MS', 0)
    if timeout is not None:
        config['search']['query_timeout_ms'] = timeout

    batch_size = _env_int('PROTOSEARCH_BATCH_SIZE', 1)
    if batch_size is not None:
        config['indexing']['batch_size'] = batch_size

    if level := os.environ.get('PROTOSEARCH_LOG_LEVEL'):
        config['logging']['level'] = level.upper()

    return config_manager.validate_config(config)


def search_config_from(config: Dict[str, Any]) -> SearchConfig:
    """Typed view of the ``search`` section."""
    search = config['search']
    return SearchConfig(
        default_limit=search['default_limit'],
        max_limit=search['max_limit'],
        query_timeout_ms=search['query_timeout_ms'],
        suggestion_default_limit=search['suggestion_default_limit'],
        suggestion_max_limit=search['suggestion_max_limit'],
        suggestion_window_days=search['suggestion_window_days']
    )


def indexer_config_from(config: Dict[str, Any]) -> IndexerConfig:
    """Typed view of the ``indexing`` section."""
    indexing = config['indexing']
    return IndexerConfig(
        batch_size=indexing['batch_size'],
        atomic_reindex=indexing['atomic_reindex'],
        lock_dir=indexing['lock_dir'],
        lock_timeout=float(indexing['lock_timeout'])
    )


def configure_logging(config: Dict[str, Any]):
    """Configure root logging from the ``logging`` section."""
    level = config.get('logging', {}).get('level', 'INFO').upper()
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)
