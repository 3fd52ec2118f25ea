"""
Configuration models and data structures.

This module defines the configuration models used throughout the application,
providing type safety and validation for configuration values.
"""

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from ...core.domain.attachments import BodyEncoding, ResponseFormat, UploadMethod


@dataclass
class ServerConfig:
    """HTTP server configuration."""
    host: str = "0.0.0.0"
    port: int = 3003
    public_base_url: Optional[str] = None

    @property
    def base_url(self) -> str:
        """URL clients use to reach this server."""
        if self.public_base_url:
            return self.public_base_url.rstrip("/")
        host = "localhost" if self.host in ("0.0.0.0", "::") else self.host
        return f"http://{host}:{self.port}"


@dataclass
class StorageConfig:
    """Object store and signed-URL configuration."""
    backend: str = "s3"
    bucket: str = "upload-relay-files"
    region: Optional[str] = None
    endpoint_url: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    signed_url_expire_seconds: int = 300
    signing_secret: Optional[str] = None


@dataclass
class UploadConfig:
    """Client-side upload pipeline configuration."""
    chunk_size: int = 64 * 1024
    accepted_status_codes: List[int] = field(default_factory=lambda: [200, 201, 204])
    request_timeout: Optional[float] = None
    max_file_size: int = 0
    default_method: str = "POST"
    default_body_encoding: str = "multipart"
    default_response_format: str = "json"


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    log_directory: str = "logs"
    max_file_size: str = "10 MB"
    backup_count: int = 5
    console_enabled: bool = True
    file_enabled: bool = True


@dataclass
class SecurityConfig:
    """Security configuration."""
    allowed_origins: List[str] = field(default_factory=lambda: ["*"])


STORAGE_BACKENDS = ("s3", "memory")
LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")


@dataclass
class ApplicationConfig:
    """Main application configuration."""

    # Basic application settings
    name: str = "Upload Relay"
    version: str = "0.1.0"
    debug: bool = False
    environment: str = "production"

    # Component configurations
    server: ServerConfig = field(default_factory=ServerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    upload: UploadConfig = field(default_factory=UploadConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)

    config_file_path: Optional[str] = None

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        self._validate_ports()
        self._validate_storage()
        self._validate_upload()
        self._validate_logging()

    def _validate_ports(self) -> None:
        if not (1 <= self.server.port <= 65535):
            raise ValueError(f"Server port must be between 1 and 65535, got {self.server.port}")

    def _validate_storage(self) -> None:
        if self.storage.backend not in STORAGE_BACKENDS:
            raise ValueError(
                f"Storage backend must be one of {', '.join(STORAGE_BACKENDS)}, "
                f"got {self.storage.backend!r}")

        if self.storage.signed_url_expire_seconds <= 0:
            raise ValueError(
                "Signed URL expiry must be positive, "
                f"got {self.storage.signed_url_expire_seconds}")

        if not self.storage.bucket:
            raise ValueError("Storage bucket cannot be empty")

    def _validate_upload(self) -> None:
        if self.upload.chunk_size <= 0:
            raise ValueError(f"Upload chunk size must be positive, got {self.upload.chunk_size}")

        if self.upload.request_timeout is not None and self.upload.request_timeout <= 0:
            raise ValueError(
                f"Upload request timeout must be positive, got {self.upload.request_timeout}")

        if not self.upload.accepted_status_codes:
            raise ValueError("At least one accepted status code is required")

        for code in self.upload.accepted_status_codes:
            if not (100 <= int(code) <= 599):
                raise ValueError(f"Invalid accepted status code: {code}")

        # Raise ValueError on unknown values
        UploadMethod(self.upload.default_method.upper())
        BodyEncoding(self.upload.default_body_encoding)
        ResponseFormat(self.upload.default_response_format)

    def _validate_logging(self) -> None:
        if self.logging.level.upper() not in LOG_LEVELS:
            raise ValueError(f"Invalid log level: {self.logging.level}")

    @property
    def log_directory(self) -> Path:
        return Path(self.logging.log_directory)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        result = asdict(self)
        result.pop('config_file_path', None)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ApplicationConfig':
        """Create configuration from dictionary."""
        try:
            server_config = ServerConfig(**data.get('server', {}))
            storage_config = StorageConfig(**data.get('storage', {}))
            upload_config = UploadConfig(**data.get('upload', {}))
            logging_config = LoggingConfig(**data.get('logging', {}))
            security_config = SecurityConfig(**data.get('security', {}))
        except TypeError as e:
            raise ValueError(f"Invalid configuration: {e}")

        return cls(
            name=data.get('name', 'Upload Relay'),
            version=data.get('version', '0.1.0'),
            debug=data.get('debug', False),
            environment=data.get('environment', 'production'),
            server=server_config,
            storage=storage_config,
            upload=upload_config,
            logging=logging_config,
            security=security_config,
            config_file_path=data.get('config_file_path')
        )
