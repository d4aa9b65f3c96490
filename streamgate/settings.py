import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


class NamespaceConfig(BaseModel):
    """TTL and capacity policy for one cache namespace."""

    default_ttl: float
    max_entries: int


class Settings(BaseModel):
    # Server Configuration
    environment: str = Field(default="development", alias="APP_ENV")
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=3001, alias="PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Upstream API Configuration
    upstream_override_url: str | None = Field(
        default=None, alias="UPSTREAM_API_BASE_URL"
    )
    upstream_fallback_file: str = Field(
        default="endpoint.json", alias="UPSTREAM_FALLBACK_FILE"
    )
    upstream_default_url: str = Field(
        default="http://localhost:3000/v1", alias="UPSTREAM_DEFAULT_URL"
    )
    upstream_timeout: float = Field(default=5.0, alias="UPSTREAM_TIMEOUT")
    snapshot_dir: str = Field(default="snapshots", alias="SNAPSHOT_DIR")

    # Circuit Breaker Configuration
    breaker_failure_threshold: int = Field(
        default=3, alias="BREAKER_FAILURE_THRESHOLD"
    )
    breaker_open_seconds: float = Field(default=30.0, alias="BREAKER_OPEN_SECONDS")

    # Cache Configuration
    cache_sweep_seconds: int = Field(default=120, alias="CACHE_SWEEP_SECONDS")

    # Database Configuration (read-only endpoint/settings store)
    database_url: str = Field(
        default="sqlite+aiosqlite:///./streamgate.db", alias="DATABASE_URL"
    )
    database_echo: bool = Field(default=False, alias="DATABASE_ECHO")

    # Media Proxy Configuration
    media_timeout: float = Field(default=45.0, alias="MEDIA_TIMEOUT")
    embed_timeout: float = Field(default=10.0, alias="EMBED_TIMEOUT")

    model_config = {"populate_by_name": True}

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    def cache_namespaces(self) -> dict[str, NamespaceConfig]:
        """Per-namespace cache policy, larger in production."""
        if self.is_production:
            return {
                "api": NamespaceConfig(default_ttl=900, max_entries=2000),
                "user": NamespaceConfig(default_ttl=3600, max_entries=500),
                "static": NamespaceConfig(default_ttl=7200, max_entries=1000),
            }
        return {
            "api": NamespaceConfig(default_ttl=600, max_entries=1000),
            "user": NamespaceConfig(default_ttl=1800, max_entries=200),
            "static": NamespaceConfig(default_ttl=3600, max_entries=500),
        }


def load_settings() -> Settings:
    """Build settings from the current environment."""
    return Settings(**{k: v for k, v in os.environ.items() if v != ""})


global_settings = load_settings()
