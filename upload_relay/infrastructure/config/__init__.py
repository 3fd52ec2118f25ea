"""
Configuration management.

Dataclass models plus a loader for YAML/JSON files with environment overrides.
"""

from .loader import ConfigLoader
from .models import (
    ApplicationConfig, LoggingConfig, SecurityConfig, ServerConfig,
    StorageConfig, UploadConfig
)

__all__ = [
    "ApplicationConfig",
    "ConfigLoader",
    "LoggingConfig",
    "SecurityConfig",
    "ServerConfig",
    "StorageConfig",
    "UploadConfig",
]
