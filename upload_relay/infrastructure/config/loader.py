"""
Configuration loading and saving utilities.

This module loads configuration from YAML or JSON files and applies
environment variable overrides on top.
"""

import json
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import yaml

from .models import ApplicationConfig

EnvMapping = Dict[str, Tuple[str, Callable[[str], Any]]]


def _parse_int_list(value: str) -> List[int]:
    return [int(part) for part in value.split(',') if part.strip()]


def _parse_str_list(value: str) -> List[str]:
    return [part.strip() for part in value.split(',') if part.strip()]


class ConfigLoader:
    """Configuration loader supporting multiple formats and sources."""

    def __init__(self, env_prefix: str = "UPLOAD_RELAY_") -> None:
        self._env_prefix = env_prefix

    def load_config(self, config_file: Optional[str] = None) -> ApplicationConfig:
        """
        Load configuration from file and environment variables.

        Args:
            config_file: Path to configuration file (optional)

        Returns:
            Loaded and validated configuration

        Raises:
            FileNotFoundError: If the configuration file does not exist
            ValueError: If the file or an environment value is invalid
        """
        config_data: Dict[str, Any] = {}

        if config_file:
            config_data = self._load_from_file(config_file)

        env_overrides = self._load_from_environment()
        config_data = self._merge_configs(config_data, env_overrides)

        config = ApplicationConfig.from_dict(config_data)
        config.config_file_path = config_file

        return config

    def save_config(self, config: ApplicationConfig, file_path: str, format: str = "yaml") -> None:
        """
        Save configuration to file.

        Args:
            config: Configuration to save
            file_path: Output file path
            format: File format (yaml or json)
        """
        config_data = config.to_dict()

        if format.lower() == "yaml":
            self._save_yaml(config_data, file_path)
        elif format.lower() == "json":
            self._save_json(config_data, file_path)
        else:
            raise ValueError(f"Unsupported format: {format}")

    def _load_from_file(self, file_path: str) -> Dict[str, Any]:
        path = Path(file_path)

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {file_path}")

        if path.suffix.lower() in ['.yaml', '.yml']:
            data = self._load_yaml(file_path)
        elif path.suffix.lower() == '.json':
            data = self._load_json(file_path)
        else:
            raise ValueError(f"Unsupported configuration file format: {path.suffix}")

        if not isinstance(data, dict):
            raise ValueError(f"Configuration in {file_path} must be a mapping")
        return data

    def _load_yaml(self, file_path: str) -> Any:
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {file_path}: {e}")
        except OSError as e:
            raise ValueError(f"Error reading {file_path}: {e}")

    def _load_json(self, file_path: str) -> Any:
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in {file_path}: {e}")
        except OSError as e:
            raise ValueError(f"Error reading {file_path}: {e}")

    def _save_yaml(self, data: Dict[str, Any], file_path: str) -> None:
        try:
            with open(file_path, 'w', encoding='utf-8') as f:
                yaml.safe_dump(data, f, default_flow_style=False, indent=2, sort_keys=False)
        except OSError as e:
            raise ValueError(f"Error writing YAML to {file_path}: {e}")

    def _save_json(self, data: Dict[str, Any], file_path: str) -> None:
        try:
            with open(file_path, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2)
        except OSError as e:
            raise ValueError(f"Error writing JSON to {file_path}: {e}")

    def _env_mappings(self) -> EnvMapping:
        p = self._env_prefix
        return {
            f"{p}DEBUG": ("debug", self._parse_bool),
            f"{p}ENVIRONMENT": ("environment", str),
            f"{p}HOST": ("server.host", str),
            f"{p}PORT": ("server.port", int),
            f"{p}PUBLIC_BASE_URL": ("server.public_base_url", str),
            f"{p}STORAGE_BACKEND": ("storage.backend", str),
            f"{p}BUCKET": ("storage.bucket", str),
            f"{p}REGION": ("storage.region", str),
            f"{p}ENDPOINT_URL": ("storage.endpoint_url", str),
            f"{p}ACCESS_KEY_ID": ("storage.access_key_id", str),
            f"{p}SECRET_ACCESS_KEY": ("storage.secret_access_key", str),
            f"{p}SIGNED_URL_EXPIRE_SECONDS": ("storage.signed_url_expire_seconds", int),
            f"{p}SIGNING_SECRET": ("storage.signing_secret", str),
            f"{p}CHUNK_SIZE": ("upload.chunk_size", int),
            f"{p}ACCEPTED_STATUS_CODES": ("upload.accepted_status_codes", _parse_int_list),
            f"{p}REQUEST_TIMEOUT": ("upload.request_timeout", float),
            f"{p}LOG_LEVEL": ("logging.level", str),
            f"{p}LOG_DIR": ("logging.log_directory", str),
            f"{p}ALLOWED_ORIGINS": ("security.allowed_origins", _parse_str_list),
        }

    # Unprefixed names kept for deployments configured the old way
    _LEGACY_MAPPINGS: EnvMapping = {
        "PORT": ("server.port", int),
        "ACCESS_KEY_ID": ("storage.access_key_id", str),
        "SECRET_ACCESS_KEY": ("storage.secret_access_key", str),
        "S3_BUCKET": ("storage.bucket", str),
        "SIGNED_URL_EXPIRE_SECONDS": ("storage.signed_url_expire_seconds", int),
    }

    def _load_from_environment(self) -> Dict[str, Any]:
        """Load configuration overrides from environment variables."""
        config: Dict[str, Any] = {}

        # Legacy first so prefixed variables win
        for mappings in (self._LEGACY_MAPPINGS, self._env_mappings()):
            for env_var, (config_path, converter) in mappings.items():
                value = os.getenv(env_var)
                if value is None:
                    continue
                try:
                    self._set_nested_value(config, config_path, converter(value))
                except (ValueError, TypeError) as e:
                    raise ValueError(f"Invalid value for {env_var}: {value} ({e})")

        return config

    def _parse_bool(self, value: str) -> bool:
        return value.lower() in ('true', '1', 'yes', 'on', 'enabled')

    def _set_nested_value(self, config: Dict[str, Any], path: str, value: Any) -> None:
        """Set a nested configuration value using dot notation."""
        keys = path.split('.')
        current = config

        for key in keys[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]

        current[keys[-1]] = value

    def _merge_configs(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge two configuration dictionaries."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value

        return result
