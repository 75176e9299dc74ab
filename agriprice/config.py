from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    environment: str = Field(default="development", alias="ENVIRONMENT")

    # data.gov.in daily mandi price resource
    data_gov_api_key: str | None = Field(default=None, alias="DATA_GOV_API_KEY")
    data_gov_base_url: str = Field(default="https://api.data.gov.in/resource", alias="DATA_GOV_BASE_URL")
    data_gov_resource_id: str = Field(
        default="9ef84268-d588-465a-a308-a864a43d0070",
        alias="DATA_GOV_RESOURCE_ID",
    )
    provider_timeout: float = Field(default=15.0, alias="PROVIDER_TIMEOUT")

    # Supabase Configuration (optional, cache and database tiers are skipped without it)
    supabase_url: str | None = Field(default=None, alias="SUPABASE_URL")
    supabase_anon_key: str | None = Field(default=None, alias="SUPABASE_ANON_KEY")
    supabase_service_key: str | None = Field(default=None, alias="SUPABASE_SERVICE_KEY")

    memory_cache_ttl: int = Field(default=600, alias="MEMORY_CACHE_TTL")
    default_window_days: int = Field(default=30, alias="DEFAULT_WINDOW_DAYS")
    max_trend_days: int = Field(default=30, alias="MAX_TREND_DAYS")
    probe_batch_size: int = Field(default=7, alias="PROBE_BATCH_SIZE")
    default_limit: int = Field(default=100, alias="DEFAULT_LIMIT")

    fuzzy_threshold: float = Field(
        default=0.70,
        alias="FUZZY_THRESHOLD",
        description="Minimum name similarity for a market correction",
    )
    fuzzy_locality_threshold: float = Field(
        default=0.75,
        alias="FUZZY_LOCALITY_THRESHOLD",
        description="Acceptance threshold when the match must respect a claimed district/state",
    )
    fuzzy_locality_bonus: float = Field(default=0.10, alias="FUZZY_LOCALITY_BONUS")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True,  # Treat empty strings as not set
        populate_by_name=True,
    )

    @field_validator("fuzzy_threshold", "fuzzy_locality_threshold", "fuzzy_locality_bonus")
    @classmethod
    def validate_unit_interval(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("fuzzy thresholds must lie in [0, 1]")
        return v

    @field_validator("probe_batch_size", "default_window_days", "max_trend_days", "default_limit")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be a positive integer")
        return v

    @property
    def supabase_key(self) -> str | None:
        """Service key when available, anon key otherwise."""
        return self.supabase_service_key or self.supabase_anon_key

    @property
    def supabase_enabled(self) -> bool:
        """Check if Supabase is properly configured."""
        return bool(self.supabase_url and self.supabase_key)

    @property
    def provider_enabled(self) -> bool:
        return bool(self.data_gov_api_key)


@lru_cache
def get_settings() -> Settings:
    return Settings()
