"""
Configuration management using environment variables.
Handles storage, logging and reconciliation settings with validation and defaults.
"""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class LibraryConfig(BaseSettings):
    """
    Configuration class for the catalog backend.
    Uses pydantic BaseSettings for environment variable management.
    """

    # MongoDB Configuration
    mongodb_url: str = Field(default="mongodb://localhost:27017")
    mongodb_database: str = Field(default="literary_db")
    server_selection_timeout_ms: int = Field(default=5000)

    # Logging Configuration
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")
    log_file: Optional[str] = Field(default=None)

    # Development/Testing
    debug: bool = Field(default=False)

    # Aggregate Reconciliation
    reconcile_enabled: bool = Field(default=True)
    reconcile_hour: int = Field(default=3)
    reconcile_minute: int = Field(default=0)
    reconcile_interval_minutes: Optional[int] = Field(default=None)
    timezone: str = Field(default="UTC")

    @field_validator("server_selection_timeout_ms")
    def validate_timeout(cls, v):
        """Ensure the driver timeout is reasonable."""
        if v < 100 or v > 60000:
            raise ValueError("server_selection_timeout_ms must be between 100 and 60000")
        return v

    @field_validator("reconcile_hour")
    def validate_hour(cls, v):
        if v < 0 or v > 23:
            raise ValueError("reconcile_hour must be between 0 and 23")
        return v

    @field_validator("reconcile_minute")
    def validate_minute(cls, v):
        if v < 0 or v > 59:
            raise ValueError("reconcile_minute must be between 0 and 59")
        return v

    @field_validator("reconcile_interval_minutes")
    def validate_interval(cls, v):
        if v is not None and v < 1:
            raise ValueError("reconcile_interval_minutes must be at least 1")
        return v

    @field_validator("log_level")
    def validate_log_level(cls, v):
        """Ensure log level is valid."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("log_format")
    def validate_log_format(cls, v):
        """Ensure log format is valid."""
        valid_formats = ["json", "console"]
        if v.lower() not in valid_formats:
            raise ValueError(f"log_format must be one of: {valid_formats}")
        return v.lower()

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }


# Global configuration instance
config = LibraryConfig()
