"""Centralized configuration management using Pydantic Settings.

Every section is loaded from environment variables with its own prefix and
sensible defaults, so the service starts with in-memory storage and no
external services.

Usage:
    from formtrack.config import get_settings
    settings = get_settings()
    backend = settings.storage.sessions
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

StorageBackend = Literal["memory", "postgres", "redis"]


def _parse_bool(v):
    if isinstance(v, str):
        return v.strip().lower() in ("1", "true", "yes")
    return bool(v)


class RedisSettings(BaseSettings):
    """Redis connection configuration."""

    model_config = SettingsConfigDict(env_prefix="REDIS_", extra="ignore")

    host: str = Field(default="redis", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    password: str = Field(default="", description="Redis password")
    max_connections: int = Field(default=200, description="Maximum pool connections")
    pool_timeout_sec: float = Field(default=5.0, description="Pool timeout in seconds")
    health_check_interval: int = Field(default=30, description="Health check interval in seconds")
    retry_on_timeout: bool = Field(default=True, description="Retry on timeout")
    socket_timeout: float = Field(default=5.0, description="Socket timeout in seconds")
    socket_connect_timeout: float = Field(default=5.0, description="Socket connect timeout in seconds")
    key_prefix: str = Field(default="formtrack", description="Namespace for all keys")


class PostgresSettings(BaseSettings):
    """PostgreSQL connection configuration."""

    model_config = SettingsConfigDict(
        env_prefix="POSTGRES_",
        extra="ignore",
        populate_by_name=True,
    )

    host: str = Field(default="postgres", description="PostgreSQL host")
    port: int = Field(default=5432, description="PostgreSQL port")
    user: str = Field(default="formtrack", description="PostgreSQL user")
    password: str = Field(default="", description="PostgreSQL password")
    database: str = Field(
        default="formtrack",
        validation_alias="POSTGRES_DB",
        description="Database name",
    )
    pool_min_size: int = Field(default=2, description="Minimum pool size")
    pool_max_size: int = Field(default=10, description="Maximum pool size")
    pool_timeout: int = Field(default=30, description="Timeout for acquiring connections")
    pool_max_lifetime: int = Field(
        default=1800, description="Maximum connection lifetime in seconds"
    )
    pool_max_idle: int = Field(
        default=300, description="Maximum idle time before closing connection"
    )

    def get_dsn(self) -> str:
        """Generate PostgreSQL DSN connection string."""
        return (
            f"host={self.host} port={self.port} user={self.user} "
            f"password={self.password} dbname={self.database} sslmode=disable"
        )


class StorageSettings(BaseSettings):
    """Which backend holds the event log and the session aggregates."""

    model_config = SettingsConfigDict(env_prefix="STORAGE_", extra="ignore")

    events: Literal["memory", "postgres"] = Field(default="memory")
    sessions: StorageBackend = Field(default="memory")
    merge_max_retries: int = Field(
        default=10, ge=1, description="Optimistic merge attempts before giving up"
    )

    @property
    def uses_postgres(self) -> bool:
        return self.events == "postgres" or self.sessions == "postgres"

    @property
    def uses_redis(self) -> bool:
        return self.sessions == "redis"


class AnalyticsSettings(BaseSettings):
    """Reporting defaults."""

    model_config = SettingsConfigDict(env_prefix="ANALYTICS_", extra="ignore")

    debug: bool = Field(default=False, description="Verbose tracking logs")

    @field_validator("debug", mode="before")
    @classmethod
    def parse_debug(cls, v):
        return _parse_bool(v)


class AuthSettings(BaseSettings):
    """Identity and ownership collaborator configuration."""

    model_config = SettingsConfigDict(env_prefix="AUTH_", extra="ignore", populate_by_name=True)

    user_header: str = Field(default="x-user-id", description="Trusted header carrying the user id")
    reveal_form_existence: bool = Field(default=False)
    form_owners_raw: str = Field(default="", validation_alias="FORM_OWNERS")

    @field_validator("reveal_form_existence", mode="before")
    @classmethod
    def parse_reveal(cls, v):
        return _parse_bool(v)

    @property
    def form_owners(self) -> dict[str, str]:
        """Parse ``form:user,form2:user2`` into a mapping."""
        owners: dict[str, str] = {}
        for pair in self.form_owners_raw.split(","):
            form_id, sep, user_id = pair.partition(":")
            if sep and form_id.strip() and user_id.strip():
                owners[form_id.strip()] = user_id.strip()
        return owners


class CorsSettings(BaseSettings):
    """CORS configuration. The tracking endpoint is called from any origin."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    origins_raw: str = Field(
        default="*",
        validation_alias="CORS_ORIGINS",
    )

    @property
    def origins(self) -> list[str]:
        """Parse comma-separated origins into list."""
        return [o.strip() for o in self.origins_raw.split(",") if o.strip()]

    @property
    def allow_credentials(self) -> bool:
        """Credentials not allowed with wildcard origins."""
        return self.origins != ["*"]


class DebugSettings(BaseSettings):
    """Debug flags configuration."""

    model_config = SettingsConfigDict(extra="ignore")

    request: bool = Field(default=False, alias="request_debug")

    @field_validator("*", mode="before")
    @classmethod
    def parse_bool(cls, v):
        return _parse_bool(v)


class GeoIPSettings(BaseSettings):
    """GeoIP configuration."""

    model_config = SettingsConfigDict(extra="ignore")

    db_path: str = Field(default="/app/GeoLite2-Country.mmdb", alias="geoip_db_path")


class Settings:
    """Main application settings combining all configuration sections.

    This is not a BaseSettings subclass to avoid env var conflicts.
    Each subsetting is loaded independently with its own prefix.
    """

    def __init__(self) -> None:
        self.redis = RedisSettings()
        self.postgres = PostgresSettings()
        self.storage = StorageSettings()
        self.analytics = AnalyticsSettings()
        self.auth = AuthSettings()
        self.cors = CorsSettings()
        self.debug = DebugSettings()
        self.geoip = GeoIPSettings()


@lru_cache
def get_settings() -> Settings:
    """Get cached Settings instance (singleton pattern)."""
    return Settings()


def clear_settings_cache() -> None:
    """Clear cached settings (useful for testing)."""
    get_settings.cache_clear()
