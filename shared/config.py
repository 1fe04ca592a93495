"""
Shared configuration management for the business licence map services.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServiceSettings(BaseSettings):
    """Service configuration loaded from LICENCES_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="LICENCES_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")
    service_name: str = Field(default="licences")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=4000)

    # Upstream open-data portal
    socrata_base_url: str = Field(default="https://data.calgary.ca/resource/vdjc-pybd.json")
    socrata_app_token: str = Field(default="")
    upstream_timeout_seconds: float = Field(default=10.0)
    upstream_max_attempts: int = Field(default=3)
    upstream_backoff_base_seconds: float = Field(default=0.5)

    # Cache
    redis_url: str = Field(default="redis://localhost:6379/0")
    redis_connect_timeout_seconds: float = Field(default=3.0)
    cache_ttl_seconds: int = Field(default=3600)
    staff_cache_ttl_seconds: int = Field(default=900)

    # Security
    jwt_secret: str = Field(default="")
    jwt_algorithm: str = Field(default="HS256")
    jwt_audience: Optional[str] = Field(default=None)
    jwt_issuer: Optional[str] = Field(default=None)
    staff_roles: List[str] = Field(default_factory=lambda: ["staff", "admin"])

    # Query bounds
    max_radius_metres: float = Field(default=50_000)
    default_radius_metres: float = Field(default=1000)
    default_public_limit: int = Field(default=500)
    max_public_limit: int = Field(default=2000)
    max_nearby_limit: int = Field(default=500)
    default_category_limit: int = Field(default=100)
    max_category_limit: int = Field(default=500)
    default_staff_limit: int = Field(default=1000)
    max_staff_limit: int = Field(default=5000)

    # Rate limiting
    rate_limit_requests: int = Field(default=100)
    rate_limit_window_seconds: int = Field(default=60)
    # Only enable behind a proxy that overwrites X-Forwarded-For.
    trust_forwarded_for: bool = Field(default=False)

    # CORS
    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])

    @property
    def is_ephemeral(self) -> bool:
        """True when running without network dependencies (tests)."""
        return self.env.lower() == "test"


@lru_cache
def get_settings() -> ServiceSettings:
    """Get the process-wide settings instance."""
    return ServiceSettings()
