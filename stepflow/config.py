"""Configuration management for stepflow."""

import os
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator
from enum import Enum


ENV_PREFIX = "STEPFLOW_"


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class AppConfig(BaseModel):
    """Application configuration settings."""

    # Application settings
    app_name: str = Field(default="stepflow", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server settings
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")
    reload: bool = Field(default=False, description="Enable auto-reload in development")

    # Database settings
    database_url: str = Field(
        default="sqlite:///./stepflow.db",
        description="Database connection URL for execution history"
    )
    database_echo: bool = Field(default=False, description="Enable SQLAlchemy query logging")

    # Interpreter settings
    max_iterations: int = Field(
        default=1000,
        description="Maximum number of node dispatches in one execution"
    )
    max_loop_iterations: int = Field(
        default=1000,
        description="Maximum number of true iterations of a single while node"
    )
    max_template_passes: int = Field(
        default=10,
        description="Maximum number of template resolution passes"
    )
    max_subworkflow_depth: int = Field(
        default=10,
        description="Maximum nesting depth of sub-workflow calls"
    )
    allow_back_edges: bool = Field(
        default=False,
        description="Accept successor references to earlier non-while nodes"
    )
    record_history: bool = Field(default=True, description="Persist execution history records")
    history_retry_attempts: int = Field(
        default=3,
        description="Attempts made when persisting a history record fails"
    )

    # Collaborator settings
    workflows_dir: str = Field(
        default=".",
        description="Base directory for notes, files and sub-workflow definitions"
    )
    default_model: str = Field(default="", description="Model used by command nodes without a 'model' property")
    http_timeout: float = Field(default=30.0, description="Default HTTP request timeout in seconds")
    http_retry_attempts: int = Field(
        default=2,
        description="Attempts made when an HTTP request fails to connect"
    )

    # Logging settings
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    log_format: Optional[str] = Field(default=None, description="Log message format")
    log_file: Optional[str] = Field(default=None, description="Log file path")
    log_structured: bool = Field(default=False, description="Emit JSON log records")
    log_max_size: int = Field(default=10485760, description="Maximum log file size in bytes")
    log_backup_count: int = Field(default=5, description="Number of log backup files to keep")

    @field_validator('database_url')
    @classmethod
    def validate_database_url(cls, v):
        """Validate database URL format."""
        if not v:
            raise ValueError("Database URL cannot be empty")

        supported_schemes = ['sqlite', 'postgresql', 'mysql']
        scheme = v.split('://')[0].split('+')[0].lower()

        if scheme not in supported_schemes:
            raise ValueError(f"Unsupported database scheme: {scheme}. Supported: {supported_schemes}")

        return v

    @field_validator('port')
    @classmethod
    def validate_port(cls, v):
        """Validate port number."""
        if not 1 <= v <= 65535:
            raise ValueError("Port must be between 1 and 65535")
        return v

    @field_validator(
        'max_iterations', 'max_loop_iterations', 'max_template_passes',
        'max_subworkflow_depth', 'history_retry_attempts', 'http_retry_attempts'
    )
    @classmethod
    def validate_limits(cls, v):
        """Validate interpreter limits."""
        if v < 1:
            raise ValueError("Limits must be at least 1")
        return v

    @field_validator('http_timeout')
    @classmethod
    def validate_http_timeout(cls, v):
        """Validate HTTP timeout."""
        if v <= 0:
            raise ValueError("HTTP timeout must be positive")
        return v

    @property
    def is_sqlite(self) -> bool:
        """Check if using SQLite database."""
        return self.database_url.lower().startswith("sqlite")

    def get_uvicorn_config(self) -> Dict[str, Any]:
        """Get Uvicorn server configuration."""
        return {
            "host": self.host,
            "port": self.port,
            "reload": self.reload,
            "log_level": self.log_level.value.lower(),
            "access_log": self.debug
        }

    @classmethod
    def from_env(cls) -> 'AppConfig':
        """Create configuration from environment variables."""
        def get_env(key: str, default=None, type_func=str):
            """Get environment variable with type conversion."""
            value = os.getenv(f"{ENV_PREFIX}{key}")
            if value is None:
                return default
            if type_func == bool:
                return str(value).lower() in ('true', '1', 'yes', 'on')
            return type_func(value)

        return cls(
            app_name=get_env("APP_NAME", "stepflow"),
            app_version=get_env("APP_VERSION", "0.1.0"),
            debug=get_env("DEBUG", False, bool),
            host=get_env("HOST", "0.0.0.0"),
            port=get_env("PORT", 8000, int),
            reload=get_env("RELOAD", False, bool),
            database_url=get_env("DATABASE_URL", "sqlite:///./stepflow.db"),
            database_echo=get_env("DATABASE_ECHO", False, bool),
            max_iterations=get_env("MAX_ITERATIONS", 1000, int),
            max_loop_iterations=get_env("MAX_LOOP_ITERATIONS", 1000, int),
            max_template_passes=get_env("MAX_TEMPLATE_PASSES", 10, int),
            max_subworkflow_depth=get_env("MAX_SUBWORKFLOW_DEPTH", 10, int),
            allow_back_edges=get_env("ALLOW_BACK_EDGES", False, bool),
            record_history=get_env("RECORD_HISTORY", True, bool),
            history_retry_attempts=get_env("HISTORY_RETRY_ATTEMPTS", 3, int),
            workflows_dir=get_env("WORKFLOWS_DIR", "."),
            default_model=get_env("DEFAULT_MODEL", ""),
            http_timeout=get_env("HTTP_TIMEOUT", 30.0, float),
            http_retry_attempts=get_env("HTTP_RETRY_ATTEMPTS", 2, int),
            log_level=LogLevel(get_env("LOG_LEVEL", "INFO").upper()),
            log_format=get_env("LOG_FORMAT", None),
            log_file=get_env("LOG_FILE", None),
            log_structured=get_env("LOG_STRUCTURED", False, bool),
            log_max_size=get_env("LOG_MAX_SIZE", 10485760, int),
            log_backup_count=get_env("LOG_BACKUP_COUNT", 5, int)
        )


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def load_config(config_file: Optional[str] = None) -> AppConfig:
    """Load configuration from a .env file and the environment."""
    global _config
    from dotenv import load_dotenv

    if config_file and os.path.exists(config_file):
        load_dotenv(config_file)
    elif os.path.exists('.env'):
        load_dotenv('.env')

    _config = AppConfig.from_env()

    return _config


def reset_config():
    """Reset the global configuration instance (mainly for testing)."""
    global _config
    _config = None


def validate_config(config: AppConfig) -> None:
    """Validate configuration settings, creating missing directories."""
    errors = []

    if config.is_sqlite and ":memory:" not in config.database_url:
        db_path = config.database_url.split(":///", 1)[-1]
        db_dir = os.path.dirname(db_path)
        if db_dir and not os.path.exists(db_dir):
            try:
                os.makedirs(db_dir, exist_ok=True)
            except OSError as e:
                errors.append(f"Cannot create database directory {db_dir}: {e}")

    if config.log_file:
        log_dir = os.path.dirname(config.log_file)
        if log_dir and not os.path.exists(log_dir):
            try:
                os.makedirs(log_dir, exist_ok=True)
            except OSError as e:
                errors.append(f"Cannot create log directory {log_dir}: {e}")

    if not os.path.isdir(config.workflows_dir):
        errors.append(f"Workflows directory does not exist: {config.workflows_dir}")

    if errors:
        raise ValueError(f"Configuration validation failed: {'; '.join(errors)}")


def get_development_config() -> AppConfig:
    """Get development configuration."""
    return AppConfig(
        debug=True,
        reload=True,
        log_level=LogLevel.DEBUG,
        database_echo=True
    )


def get_testing_config() -> AppConfig:
    """Get testing configuration."""
    return AppConfig(
        debug=True,
        database_url="sqlite:///:memory:",
        log_level=LogLevel.WARNING,
        history_retry_attempts=1
    )
