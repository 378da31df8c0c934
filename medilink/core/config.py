"""
Configuration Management System for MediLink

Handles loading configuration from environment variables, config files,
and provides validation and runtime updates.
"""

import os
import json
import yaml
import logging
from typing import Any, Dict, List, Optional, Callable
from pathlib import Path
from dataclasses import dataclass


@dataclass
class ConfigSource:
    """Configuration source definition"""
    name: str
    priority: int
    loader: Callable
    path: Optional[str] = None


class ConfigurationError(Exception):
    """Configuration-related errors"""
    pass


class ConfigurationManager:
    """
    Manages tracker configuration with support for multiple sources,
    validation, and runtime updates.
    """

    def __init__(self, config_dir: str = "config"):
        self.config_dir = Path(config_dir)
        self.config: Dict[str, Any] = {}
        self.watchers: Dict[str, List[Callable]] = {}
        self.sources: List[ConfigSource] = []
        self.logger = logging.getLogger(__name__)

        # Default configuration values
        self.defaults = {
            "app": {
                "name": "MediLink Tracker",
                "version": "1.0.0",
                "debug": False,
                "log_level": "INFO"
            },
            "api": {
                "base_url": "http://localhost:8080",
                "timeout": 10,
                "max_retries": 0
            },
            "tracking": {
                "poll_interval": 30,
                "failure_threshold": 5,
                "backoff_max": 300,
                "distance_unit": "km"
            },
            "geolocation": {
                "enabled": True,
                "provider_url": "https://ipapi.co/json/",
                "timeout": 10,
                "fallback": {
                    "latitude": -1.2921,
                    "longitude": 36.8219
                }
            },
            "logging": {
                "level": "INFO",
                "file": "logs/medilink.log",
                "max_size": "10MB",
                "backup_count": 5,
                "console": True
            }
        }

        self._setup_sources()

    def _setup_sources(self):
        """Set up configuration sources in priority order"""
        # Environment variables (highest priority)
        self.sources.append(ConfigSource(
            name="environment",
            priority=4,
            loader=self._load_from_env
        ))

        # Local config file
        local_config_path = str(self.config_dir / "config.yaml")
        self.sources.append(ConfigSource(
            name="local_config",
            priority=3,
            loader=lambda: self._load_from_file(local_config_path),
            path=local_config_path
        ))

        # Default config file
        default_config_path = str(self.config_dir / "default.yaml")
        self.sources.append(ConfigSource(
            name="default_config",
            priority=2,
            loader=lambda: self._load_from_file(default_config_path),
            path=default_config_path
        ))

        # Built-in defaults (lowest priority)
        self.sources.append(ConfigSource(
            name="defaults",
            priority=1,
            loader=lambda: self.defaults
        ))

    def load_config(self) -> None:
        """Load configuration from all sources"""
        self.logger.info("Loading configuration from all sources")

        merged_config = {}

        # Lowest priority first so later sources override
        for source in sorted(self.sources, key=lambda x: x.priority):
            try:
                source_config = source.loader()
                if source_config:
                    merged_config = self._deep_merge(merged_config, source_config)
                    self.logger.debug(f"Loaded configuration from {source.name}")
            except (OSError, ValueError, yaml.YAMLError) as e:
                self.logger.warning(f"Failed to load config from {source.name}: {e}")

        self.config = merged_config
        self._validate_config()
        self.logger.info("Configuration loaded successfully")

    def _load_from_env(self) -> Dict[str, Any]:
        """Load configuration from environment variables"""
        config = {}

        env_mappings = {
            "MEDILINK_API_BASE_URL": "api.base_url",
            "MEDILINK_POLL_INTERVAL": "tracking.poll_interval",
            "MEDILINK_LOG_LEVEL": "logging.level",
            "MEDILINK_GEOLOCATION_ENABLED": "geolocation.enabled"
        }

        for env_var, config_key in env_mappings.items():
            value = os.getenv(env_var)
            if value is not None:
                # Convert string values to appropriate types
                if value.lower() in ('true', 'false'):
                    value = value.lower() == 'true'
                elif value.isdigit():
                    value = int(value)
                else:
                    try:
                        value = float(value)
                    except ValueError:
                        pass

                self._set_nested_value(config, config_key, value)

        return config

    def _load_from_file(self, file_path: str) -> Dict[str, Any]:
        """Load configuration from YAML or JSON file"""
        path = Path(file_path)

        if not path.exists():
            return {}

        try:
            with open(path, 'r') as f:
                if path.suffix.lower() in ['.yaml', '.yml']:
                    return yaml.safe_load(f) or {}
                elif path.suffix.lower() == '.json':
                    return json.load(f)
                else:
                    self.logger.warning(f"Unsupported config file format: {path}")
                    return {}
        except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
            self.logger.error(f"Error loading config file {path}: {e}")
            return {}

    def _deep_merge(self, base: Dict, override: Dict) -> Dict:
        """Deep merge two dictionaries"""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def _set_nested_value(self, config: Dict, key_path: str, value: Any) -> None:
        """Set a nested configuration value using dot notation"""
        keys = key_path.split('.')
        current = config

        for key in keys[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]

        current[keys[-1]] = value

    def _validate_config(self) -> None:
        """Validate configuration values"""
        errors = []

        required_sections = ['api', 'tracking', 'geolocation']
        for section in required_sections:
            if section not in self.config:
                errors.append(f"Missing required configuration section: {section}")

        poll_interval = self.get('tracking.poll_interval', 30)
        if not isinstance(poll_interval, (int, float)) or poll_interval <= 0:
            errors.append(f"Invalid poll interval: {poll_interval}")

        failure_threshold = self.get('tracking.failure_threshold', 5)
        if not isinstance(failure_threshold, int) or failure_threshold < 1:
            errors.append(f"Invalid failure threshold: {failure_threshold}")

        backoff_max = self.get('tracking.backoff_max', 300)
        if (isinstance(poll_interval, (int, float)) and
                (not isinstance(backoff_max, (int, float)) or backoff_max < poll_interval)):
            errors.append(f"Backoff maximum {backoff_max} is below poll interval {poll_interval}")

        unit = self.get('tracking.distance_unit', 'km')
        if unit not in ('km', 'miles'):
            errors.append(f"Invalid distance unit: {unit}")

        latitude = self.get('geolocation.fallback.latitude', 0)
        longitude = self.get('geolocation.fallback.longitude', 0)
        if not isinstance(latitude, (int, float)) or not -90 <= latitude <= 90:
            errors.append(f"Invalid fallback latitude: {latitude}")
        if not isinstance(longitude, (int, float)) or not -180 <= longitude <= 180:
            errors.append(f"Invalid fallback longitude: {longitude}")

        log_level = self.get('logging.level', 'INFO')
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if str(log_level).upper() not in valid_levels:
            errors.append(f"Invalid log level: {log_level}")

        if errors:
            raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}")

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation"""
        keys = key.split('.')
        current = self.config

        try:
            for k in keys:
                current = current[k]
            return current
        except (KeyError, TypeError):
            return default

    def set(self, key: str, value: Any) -> None:
        """Set configuration value using dot notation"""
        self._set_nested_value(self.config, key, value)

        # Notify watchers
        for callback in self.watchers.get(key, []):
            try:
                callback(key, value)
            except Exception as e:
                self.logger.error(f"Error in config watcher for {key}: {e}")

    def watch(self, key: str, callback: Callable[[str, Any], None]) -> None:
        """Watch for configuration changes"""
        self.watchers.setdefault(key, []).append(callback)

    def get_api_base_url(self) -> str:
        """Get the MediLink backend base URL"""
        return str(self.get('api.base_url', 'http://localhost:8080')).rstrip('/')

    def get_poll_interval(self) -> float:
        """Get status/location polling interval in seconds"""
        return self.get('tracking.poll_interval', 30)

    def get_failure_threshold(self) -> int:
        """Get consecutive failed ticks before tracking is reported lost"""
        return self.get('tracking.failure_threshold', 5)

    def get_backoff_max(self) -> float:
        """Get maximum polling period after repeated failures"""
        return self.get('tracking.backoff_max', 300)

    def get_fallback_location(self) -> Dict[str, float]:
        """Get the fixed viewer coordinate used when geolocation fails"""
        return {
            'lat': self.get('geolocation.fallback.latitude', -1.2921),
            'lng': self.get('geolocation.fallback.longitude', 36.8219)
        }
