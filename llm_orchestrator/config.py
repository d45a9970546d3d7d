"""
Configuration Management for the LLM Orchestrator Service

This module provides centralized configuration for retry bounds, backoff
parameters, rate-limit ceilings, provider credentials and default model names.
All values are read from the environment once and treated as immutable for the
lifetime of the process.
"""

import logging
from typing import Annotated, Any, Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings with environment variable support.

    Every field can be overridden by the upper-cased environment variable of the
    same name (e.g. ``MAX_RETRY_ATTEMPTS``) or by an entry in a local ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application Settings
    app_name: str = Field(default="LLM Orchestrator")
    app_version: str = Field(default="1.0.0")
    debug: bool = Field(default=False)
    environment: str = Field(default="development")

    # Server Settings
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # CORS Settings
    cors_origins: Annotated[List[str], NoDecode] = Field(default=["*"])

    # Logging Settings
    log_level: str = Field(default="INFO")
    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    log_file: Optional[str] = Field(default=None)

    # Provider credentials
    openai_api_key: str = Field(default="")
    anthropic_api_key: str = Field(default="")
    gemini_api_key: str = Field(default="")

    # Provider selection: "openai", "anthropic" or "auto"
    llm_provider: str = Field(default="auto")

    # Model Settings
    openai_model: str = Field(default="gpt-4-turbo-preview")
    anthropic_model: str = Field(default="claude-3-5-sonnet-20241022")
    gemini_model: str = Field(default="gemini-2.5-flash")
    gemini_api_base: str = Field(default="https://generativelanguage.googleapis.com/v1beta")
    llm_temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    llm_max_tokens: int = Field(default=4096, gt=0)
    openai_timeout: float = Field(default=120.0, gt=0)  # seconds, per SDK request
    anthropic_timeout: float = Field(default=120.0, gt=0)  # seconds, per SDK request

    # Retry Settings
    max_retry_attempts: int = Field(default=3, ge=1)
    initial_retry_delay_ms: int = Field(default=1000, ge=0)
    max_retry_delay_ms: int = Field(default=10000, ge=0)
    retry_multiplier: float = Field(default=2.0, ge=1.0)

    # Rate Limiting Settings
    enable_rate_limiting: bool = Field(default=True)
    rate_limit_requests_per_minute: int = Field(default=10, ge=1)
    rate_limit_requests_per_hour: int = Field(default=100, ge=1)
    rate_limit_cleanup_probability: float = Field(default=0.01, ge=0.0, le=1.0)

    # Timeout Settings (milliseconds)
    api_timeout_ms: int = Field(default=300000, gt=0)  # 5 minutes
    gemini_timeout_ms: int = Field(default=240000, gt=0)  # 4 minutes

    # Knowledge Query Settings
    enable_web_search: bool = Field(default=True)
    search_max_concurrency: int = Field(default=3, ge=1)
    search_delay_ms: int = Field(default=500, ge=0)
    search_max_tokens: int = Field(default=1000, gt=0)

    # Metrics Settings
    enable_metrics: bool = Field(default=True)
    metrics_max_events: int = Field(default=1000, ge=1)

    # File Settings
    max_file_size: int = Field(default=int(4.5 * 1024 * 1024))  # 4.5MB
    max_text_length: int = Field(default=20000)
    allowed_extensions: Annotated[List[str], NoDecode] = Field(
        default=[".pdf", ".docx", ".txt"]
    )

    # Sentry Settings
    sentry_enabled: bool = Field(default=False)
    sentry_dsn: Optional[str] = Field(default=None)
    sentry_environment: str = Field(default="development")
    sentry_traces_sample_rate: float = Field(default=0.1, ge=0.0, le=1.0)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("llm_provider")
    @classmethod
    def validate_llm_provider(cls, v):
        """Validate provider selection mode."""
        valid_providers = ["openai", "anthropic", "auto"]
        if v.lower() not in valid_providers:
            raise ValueError(f"LLM provider must be one of: {valid_providers}")
        return v.lower()

    @field_validator("cors_origins", "allowed_extensions", mode="before")
    @classmethod
    def parse_list_from_string(cls, v):
        """Parse comma-separated strings from environment variables into lists."""
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @field_validator("allowed_extensions")
    @classmethod
    def normalize_extensions(cls, v):
        """Lower-case extensions and ensure a leading dot."""
        return [ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in v]

    def get_retry_config(self) -> Dict[str, Any]:
        """Get retry and backoff configuration."""
        return {
            "max_attempts": self.max_retry_attempts,
            "initial_delay_ms": self.initial_retry_delay_ms,
            "max_delay_ms": self.max_retry_delay_ms,
            "multiplier": self.retry_multiplier,
        }

    def get_rate_limit_config(self) -> Dict[str, Any]:
        """Get per-client rate limiting configuration."""
        return {
            "enabled": self.enable_rate_limiting,
            "requests_per_minute": self.rate_limit_requests_per_minute,
            "requests_per_hour": self.rate_limit_requests_per_hour,
            "cleanup_probability": self.rate_limit_cleanup_probability,
        }

    def get_feature_flags(self) -> Dict[str, Any]:
        """
        Get feature flags.

        These are surfaced by the health endpoint so operators can see which
        optional behaviours are active in a running process.
        """
        return {
            "enable_web_search": self.enable_web_search,
            "enable_metrics": self.enable_metrics,
            "enable_rate_limiting": self.enable_rate_limiting,
            "llm_provider": self.llm_provider,
            "max_retry_attempts": self.max_retry_attempts,
        }

    def get_sentry_config(self) -> Dict[str, Any]:
        """Get Sentry error tracking configuration."""
        return {
            "dsn": self.sentry_dsn,
            "environment": self.sentry_environment,
            "traces_sample_rate": self.sentry_traces_sample_rate,
            "enabled": self.sentry_enabled,
            "release": f"{self.app_name}@{self.app_version}",
        }

    def is_file_size_valid(self, file_size: int) -> bool:
        """Check if file size is within limits."""
        return file_size <= self.max_file_size

    def get_logging_config(self) -> Dict[str, Any]:
        """Get logging configuration dictionary."""
        config = {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": self.log_format,
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "level": self.log_level,
                },
            },
            "loggers": {
                "": {  # Root logger
                    "handlers": ["console"],
                    "level": self.log_level,
                    "propagate": False,
                },
                "uvicorn": {
                    "handlers": ["console"],
                    "level": "INFO",
                    "propagate": False,
                },
                "uvicorn.access": {
                    "handlers": ["console"],
                    "level": "INFO",
                    "propagate": False,
                },
                "httpx": {
                    "handlers": ["console"],
                    "level": "WARNING",
                    "propagate": False,
                },
            },
        }

        if self.log_file:
            config["handlers"]["file"] = {
                "class": "logging.FileHandler",
                "filename": self.log_file,
                "formatter": "default",
                "level": self.log_level,
            }
            for logger_config in config["loggers"].values():
                logger_config["handlers"].append("file")

        return config

    def get_cors_config(self) -> Dict[str, Any]:
        """Get CORS configuration."""
        return {
            "allow_origins": self.cors_origins,
            "allow_methods": ["*"],
            "allow_headers": ["*"],
            "allow_credentials": True,
        }


# Global settings instance
settings = Settings()


def configure_logging():
    """Configure application logging using the settings."""
    import logging.config

    logging.config.dictConfig(settings.get_logging_config())

    logger = logging.getLogger(__name__)
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Log level set to: {settings.log_level}")


def get_settings() -> Settings:
    """Get the global settings instance."""
    return settings


def reload_settings() -> Settings:
    """Reload settings from environment variables."""
    global settings
    settings = Settings()
    configure_logging()
    return settings
