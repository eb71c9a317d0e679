"""
JWT authentication configuration settings.

Bearer tokens identify a principal only; its role is always re-read from the
store. Settings come from ``RBAC_JWT_*`` environment variables or ``.env``.
"""

from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

DEFAULT_SECRET = "change-me-quicklink-rbac-jwt-secret-key"


class JWTSettings(BaseSettings):
    """JWT Authentication settings."""

    model_config = SettingsConfigDict(
        env_prefix="RBAC_JWT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    secret_key: str = Field(
        default=DEFAULT_SECRET,
        description="Secret key for JWT token signing"
    )

    algorithm: str = Field(
        default="HS256",
        description="JWT signing algorithm"
    )

    access_token_expire_minutes: int = Field(
        default=15,
        description="Access token expiration in minutes"
    )

    token_issuer: str = Field(
        default="quicklink-rbac",
        description="JWT token issuer"
    )

    token_audience: str = Field(
        default="quicklink-admin",
        description="JWT token audience"
    )


def get_jwt_settings() -> JWTSettings:
    """Get JWT settings, read fresh from the environment."""
    return JWTSettings()


def validate_jwt_config(settings: JWTSettings) -> List[str]:
    """
    Validate JWT configuration.

    Returns:
        List of issues; empty when the configuration is fit for production
    """
    issues = []

    if settings.secret_key == DEFAULT_SECRET:
        issues.append("Using default JWT secret key - change for production")

    if len(settings.secret_key) < 32:
        issues.append("JWT secret key should be at least 32 characters long")

    if settings.access_token_expire_minutes > 60:
        issues.append("Access token expiration is longer than 1 hour")

    return issues
