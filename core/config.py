# edgeguard/core/config.py

import copy
import json
import yaml
import os
from typing import Any, Callable, Dict, List, Optional
import logging
logger = logging.getLogger(f"edgeguard.{__name__}")

DEFAULT_CONFIG_PATH = "config/config.yaml"

DEFAULT_CONFIG: Dict[str, Any] = {
    "server": {"host": "0.0.0.0", "port": 8000, "log_level": "info"},
    "logging": {"file": {"path": "data/logs/edgeguard.log"}},
    "trusted_proxies": {
        "matcher": "dynamic_remote_ip",
        "source": {"source": "cloudflare", "interval": "1h", "timeout": "15s"},
        "client_ip_headers": ["CF-Connecting-IP", "X-Forwarded-For"],
    },
}


class ValidationResult:
    def __init__(self, valid: bool, errors: Optional[List[str]] = None):
        self.valid = valid
        self.errors = errors or []

    def __bool__(self):
        return self.valid

class ConfigValidator:
    """
    Validate the top-level structure of the configuration.
    Per-module options (sources, matchers) are validated by the modules themselves
    when they are provisioned.
    """
    def __init__(self):
        self._schemas: Dict[str, type] = {
            "server": dict,
            "trusted_proxies": dict,
        }

    def add_schema(self, name: str, expected_type: type):
        """Require a top-level part of the given type"""
        self._schemas[name] = expected_type

    def validate(self, config: Any) -> ValidationResult:
        if not isinstance(config, dict):
            return ValidationResult(False, [f"Configuration must be a mapping, got {type(config).__name__}"])

        errors = []
        for key, expected_type in self._schemas.items():
            if key not in config:
                errors.append(f"Configuration is missing the key: '{key}'")
            elif not isinstance(config[key], expected_type):
                errors.append(f"Configuration part '{key}' has the wrong type, expected {expected_type.__name__}, got {type(config[key]).__name__}")

        trusted = config.get("trusted_proxies")
        if isinstance(trusted, dict) and not trusted.get("source"):
            # a matcher without a source never matches anything
            errors.append("Configuration 'trusted_proxies' is missing 'source'")

        if errors:
            return ValidationResult(False, errors)
        return ValidationResult(True)


class ConfigLoader:
    """
    Configuration loading interface.
    """
    def load(self) -> Dict:
        raise NotImplementedError

    def supports_reload(self) -> bool:
        return False

    def reload(self) -> Dict:
        raise NotImplementedError("Reloading not supported by this loader.")


class DictConfigLoader(ConfigLoader):
    """Serves an in-memory configuration, mostly useful for embedding and tests."""
    def __init__(self, data: Dict):
        self._data = data

    def load(self) -> Dict:
        return self._data


class FileConfigLoader(ConfigLoader):
    """
    Load configuration from a configuration file (YAML/JSON).
    """
    def __init__(self, file_path: str, file_format: Optional[str] = None):
        self._file_path = file_path
        if file_format is None:
            file_format = "json" if file_path.lower().endswith(".json") else "yaml"
        self._format = file_format.lower()
        if not os.path.exists(self._file_path):
            raise FileNotFoundError(f"Configuration file not found: {self._file_path}")

    def load(self) -> Dict:
        """Load configuration from a file"""
        try:
            with open(self._file_path, 'r', encoding='utf-8') as f:
                if self._format == "yaml":
                    return yaml.safe_load(f)
                elif self._format == "json":
                    return json.load(f)
                else:
                    raise ValueError(f"Unsupported configuration file format: {self._format}")
        except Exception as e:
            logger.error(f"Failed to load configuration file '{self._file_path}': {e}")
            raise

    def supports_reload(self) -> bool:
        return True

    def reload(self) -> Dict:
        """Reload the configuration file"""
        logger.info(f"Reloading configuration file: {self._file_path}")
        return self.load()


def _lookup(data: Any, path: str, default: Any = None) -> Any:
    value = data
    for key in path.split('.'):
        if not isinstance(value, dict) or key not in value:
            return default
        value = value[key]
    return value


class ConfigManager:
    """
    Central access point for configuration: loads, validates and serves
    configuration values by dotted path.
    """
    _instance = None

    def __new__(cls, *args, **kwargs):
        if not cls._instance:
            cls._instance = super(ConfigManager, cls).__new__(cls)
        return cls._instance

    def __init__(self, loader: ConfigLoader = None, validator: ConfigValidator = None):
        # Prevent duplicate initialization
        if hasattr(self, '_initialized') and self._initialized:
            return

        self._config_data: Dict = {}
        self._loader = loader
        self._validator = validator or ConfigValidator()
        self._listeners: Dict[str, List[Callable[[str, Any], None]]] = {}
        self._initialized = False

        if self._loader:
            self.load_config()
            self._initialized = True

    @classmethod
    def reset(cls) -> None:
        """Drop the singleton so the next construction starts from scratch."""
        cls._instance = None

    def load_config(self) -> bool:
        """Load configuration, if a loader is provided."""
        if not self._loader:
            logger.error("Error: No configuration loader (ConfigLoader) provided.")
            return False
        try:
            new_config = self._loader.load()
            validation_result = self._validator.validate(new_config)
            if not validation_result:
                logger.error(f"Configuration validation failed: {validation_result.errors}")
                return False
            self._config_data = new_config
            logger.info("Configuration loaded and validated successfully.")
            return True
        except Exception as e:
            logger.error(f"Error loading configuration: {e}")
            return False

    def get_config(self, path: str, default: Any = None) -> Any:
        """
        Get a configuration item by path, e.g. "trusted_proxies.source".
        """
        if not self._config_data:
            logger.warning("Warning: Configuration data is empty. Possibly not loaded or loading failed.")
            return default
        return _lookup(self._config_data, path, default)

    def set_config(self, path: str, value: Any) -> bool:
        """
        Set a configuration item in memory and notify listeners.
        The change is rejected, and nothing is notified, if the resulting
        configuration fails validation.
        """
        keys = path.split('.')
        new_config = copy.deepcopy(self._config_data)
        data_ref = new_config
        for key in keys[:-1]:
            if not isinstance(data_ref.get(key), dict):
                data_ref[key] = {} # if the path does not exist, create it
            data_ref = data_ref[key]
        data_ref[keys[-1]] = value

        validation_result = self._validator.validate(new_config)
        if not validation_result:
            logger.error(f"Rejected update of '{path}': {validation_result.errors}")
            return False

        self._config_data = new_config
        logger.info(f"Configuration item '{path}' updated.")
        self._notify_listeners(path, value)
        return True

    def register_listener(self, path: str, callback: Callable[[str, Any], None]) -> None:
        """
        Register a callback for changes at `path` or below it.
        The callback receives the changed path and its new value.
        """
        self._listeners.setdefault(path, []).append(callback)
        logger.info(f"Listener registered for path: {path}")

    def _notify_listeners(self, path: str, value: Any) -> None:
        for listener_path, callbacks in self._listeners.items():
            if path == listener_path or path.startswith(listener_path + "."):
                self._call_listeners(callbacks, path, value)

    def _notify_changed(self, old_config: Dict, new_config: Dict) -> None:
        """After a reload, notify every listener whose value differs."""
        missing = object()
        for listener_path, callbacks in self._listeners.items():
            new_value = _lookup(new_config, listener_path, missing)
            if _lookup(old_config, listener_path, missing) != new_value:
                self._call_listeners(callbacks, listener_path, None if new_value is missing else new_value)

    def _call_listeners(self, callbacks: List[Callable[[str, Any], None]], path: str, value: Any) -> None:
        for callback in callbacks:
            try:
                callback(path, value)
            except Exception as e:
                logger.error(f"Error executing configuration listener callback (path: {path}): {e}")

    def reload_config_from_source(self) -> bool:
        """
        Reload configuration from the source (e.g. file).
        The previous configuration is kept if the new one fails validation.
        """
        if not self._loader or not self._loader.supports_reload():
            logger.warning("Warning: Current configuration loader does not support reloading.")
            return False

        try:
            logger.info("Attempting to reload configuration...")
            new_config = self._loader.reload()
            validation_result = self._validator.validate(new_config)
            if not validation_result:
                logger.error(f"Reloaded configuration validation failed: {validation_result.errors}")
                return False

            old_config, self._config_data = self._config_data, new_config
            logger.info("Configuration reloaded and validated successfully.")
            self._notify_changed(old_config, new_config)
            return True
        except Exception as e:
            logger.error(f"Error reloading configuration: {e}")
            return False


def get_config_manager(config_file_path: str = None) -> ConfigManager:
    """
    Get the singleton instance of ConfigManager.
    If first call, provide the configuration file path for initialization.
    """
    if ConfigManager._instance is None or not ConfigManager._instance._initialized:
        if config_file_path is None:
            config_file_path = os.getenv("EDGEGUARD_CONFIG_PATH", DEFAULT_CONFIG_PATH)
        if not os.path.exists(config_file_path):
            default_config_dir = os.path.dirname(config_file_path)
            if default_config_dir and not os.path.exists(default_config_dir):
                os.makedirs(default_config_dir, exist_ok=True)

            logger.warning(f"Warning: Configuration file '{config_file_path}' not found. Will try to use a minimal default configuration.")
            try:
                with open(config_file_path, 'w', encoding='utf-8') as f_default:
                    yaml.safe_dump(DEFAULT_CONFIG, f_default, default_flow_style=False)
                logger.info(f"Default configuration file '{config_file_path}' has been created.")
            except OSError as e_create:
                logger.error(f"Failed to create default configuration file '{config_file_path}': {e_create}")
                raise RuntimeError(f"Failed to load or create configuration file: {config_file_path}") from e_create

        loader = FileConfigLoader(file_path=config_file_path)
        ConfigManager(loader=loader)

    return ConfigManager._instance
