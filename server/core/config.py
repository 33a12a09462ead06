"""Environment-driven configuration with Pydantic v2."""

from typing import List, Literal, Optional
from pathlib import Path
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings driven entirely by environment variables."""

    # Server Configuration
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000, ge=1024, le=65535)
    debug: bool = Field(default=False)
    workers: int = Field(default=1, ge=1, le=8)
    cors_origins: List[str] = Field(default=["http://localhost:8080"])

    # Cache Configuration
    redis_url: str = Field(default="redis://localhost:6379")
    redis_connect_attempts: int = Field(default=10, ge=1, le=100)
    redis_retry_step_ms: int = Field(default=50, ge=1)
    redis_retry_cap_ms: int = Field(default=2000, ge=1)
    redis_socket_timeout: float = Field(default=5.0, gt=0)
    cache_key_prefix: str = Field(default="app", min_length=1)
    places_search_ttl: int = Field(default=86400, ge=1)   # 1 day
    places_details_ttl: int = Field(default=604800, ge=1)  # 7 days

    # Metering
    google_maps_daily_limit: int = Field(default=1000, ge=0)
    usage_file: str = Field(default="data/usage.json")
    quota_fail_open: bool = Field(default=True)

    # Upstream APIs
    google_maps_api_key: Optional[str] = Field(default=None)
    places_api_base: str = Field(default="https://places.googleapis.com/v1")
    maps_timeout: int = Field(default=10, ge=1, le=60)

    open_webui_base_url: str = Field(default="http://localhost:8080")
    open_webui_api_key: Optional[str] = Field(default=None)
    llm_model: Optional[str] = Field(default=None)  # None = first model Open WebUI lists
    llm_timeout: int = Field(default=30, ge=5, le=300)

    # Rate Limiting (per client IP, all /api/ routes)
    rate_limit_enabled: bool = Field(default=True)
    rate_limit_requests: int = Field(default=100, ge=1)
    rate_limit_window: int = Field(default=900, ge=1)  # seconds

    # Operator endpoints; unset disables them
    admin_token: Optional[str] = Field(default=None)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: Literal["json", "console"] = Field(default="json")
    log_file: Optional[str] = Field(default=None)

    # Health Check
    health_check_interval: int = Field(default=30, ge=1)

    @field_validator("open_webui_api_key", "google_maps_api_key", "admin_token")
    @classmethod
    def strip_quotes(cls, v):
        """Keys copied from dashboards often arrive wrapped in quotes."""
        if v is None:
            return v
        v = v.strip().strip("\"'").strip()
        return v or None

    @property
    def usage_path(self) -> Path:
        """Ledger location, relative paths resolved against the working directory."""
        return Path(self.usage_file)

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.debug

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
        "env_parse_none_str": "none",
    }
