"""
API configuration settings.
"""

from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings


class APIConfig(BaseSettings):
    """API configuration settings."""

    # API Settings
    api_title: str = "Literary Database API"
    api_version: str = "1.0.0"

    # Server Settings
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    # Session Token Settings
    secret_key: str = "change-me-in-production"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24 * 7

    # CORS Settings
    cors_origins: List[str] = ["*"]
    cors_allow_credentials: bool = True
    cors_allow_methods: List[str] = ["*"]
    cors_allow_headers: List[str] = ["*"]

    @field_validator("algorithm")
    def validate_algorithm(cls, v):
        """Only symmetric HMAC algorithms are supported."""
        valid = ["HS256", "HS384", "HS512"]
        if v.upper() not in valid:
            raise ValueError(f"algorithm must be one of: {valid}")
        return v.upper()

    @field_validator("access_token_expire_minutes")
    def validate_expiry(cls, v):
        if v < 1:
            raise ValueError("access_token_expire_minutes must be positive")
        return v

    model_config = {
        "env_file": ".env",
        "extra": "ignore"
    }


# Global config instance
config = APIConfig()
