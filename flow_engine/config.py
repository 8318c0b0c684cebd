"""Configuration management for the flow engine."""

import os
from typing import Optional
from pydantic import BaseModel, Field, field_validator
from enum import Enum

from .core.exceptions import ConfigurationError


ENV_PREFIX = "FLOW_ENGINE_"


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Environment(str, Enum):
    """Deployment environment recorded in run metadata."""
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class EngineConfig(BaseModel):
    """Flow engine configuration settings."""

    engine_version: str = Field(default="1.0.0", description="Version recorded in run metadata")
    environment: Environment = Field(default=Environment.DEVELOPMENT, description="Deployment environment")

    # Logging settings
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log message format"
    )
    log_file: Optional[str] = Field(default=None, description="Log file path")
    log_max_size: int = Field(default=10485760, description="Maximum log file size in bytes")  # 10MB
    log_backup_count: int = Field(default=5, description="Number of log backup files to keep")
    structured_logging: bool = Field(default=False, description="Emit JSON log lines")
    console_echo: bool = Field(
        default=True,
        description="Echo every run log entry to the python logging stream"
    )

    # Execution settings
    node_timeout: Optional[float] = Field(
        default=None,
        description="Default node execution timeout in seconds; unset means no limit"
    )

    # Run export settings
    export_dir: str = Field(default="execution_logs", description="Directory for exported run records")
    auto_export: bool = Field(default=False, description="Write every completed run to export_dir")

    @field_validator('node_timeout')
    @classmethod
    def validate_node_timeout(cls, v):
        """Validate timeout value."""
        if v is not None and v <= 0:
            raise ValueError("Node timeout must be a positive number of seconds")
        return v

    @field_validator('log_max_size', 'log_backup_count')
    @classmethod
    def validate_non_negative(cls, v):
        if v < 0:
            raise ValueError("Log rotation settings cannot be negative")
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == Environment.PRODUCTION

    @classmethod
    def from_env(cls) -> 'EngineConfig':
        """Create configuration from environment variables."""
        def get_env(key: str, default=None, type_func=str):
            """Get environment variable with type conversion."""
            value = os.getenv(f"{ENV_PREFIX}{key}")
            if value is None or value == "":
                return default
            if type_func == bool:
                return str(value).lower() in ('true', '1', 'yes', 'on')
            try:
                return type_func(value)
            except ValueError as e:
                raise ConfigurationError(
                    f"Invalid value for {ENV_PREFIX}{key}: {value}", config_key=key
                ) from e

        try:
            return cls(
                engine_version=get_env("ENGINE_VERSION", "1.0.0"),
                environment=Environment(get_env("ENVIRONMENT", "development").lower()),
                log_level=LogLevel(get_env("LOG_LEVEL", "INFO").upper()),
                log_format=get_env("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"),
                log_file=get_env("LOG_FILE", None),
                log_max_size=get_env("LOG_MAX_SIZE", 10485760, int),
                log_backup_count=get_env("LOG_BACKUP_COUNT", 5, int),
                structured_logging=get_env("STRUCTURED_LOGGING", False, bool),
                console_echo=get_env("CONSOLE_ECHO", True, bool),
                node_timeout=get_env("NODE_TIMEOUT", None, float),
                export_dir=get_env("EXPORT_DIR", "execution_logs"),
                auto_export=get_env("AUTO_EXPORT", False, bool),
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid flow engine configuration: {e}") from e


# Global configuration instance
_config: Optional[EngineConfig] = None


def get_config() -> EngineConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = EngineConfig.from_env()
    return _config


def load_config(config_file: Optional[str] = None) -> EngineConfig:
    """Load configuration from a .env file and environment variables."""
    global _config

    if config_file and os.path.exists(config_file):
        from dotenv import load_dotenv
        load_dotenv(config_file)
    elif os.path.exists('.env'):
        from dotenv import load_dotenv
        load_dotenv('.env')

    _config = EngineConfig.from_env()

    return _config


def reset_config():
    """Reset the global configuration instance (mainly for testing)."""
    global _config
    _config = None


def get_testing_config() -> EngineConfig:
    """Get testing configuration."""
    return EngineConfig(
        log_level=LogLevel.WARNING,
        console_echo=False,
        node_timeout=10,
        auto_export=False
    )
