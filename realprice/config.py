"""Application configuration using Pydantic settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    # Document store ("memory://" or "redis://host:port/db")
    document_store_url: str = "memory://"
    redis_key_prefix: str = "realprice"

    # App Settings
    debug: bool = False
    log_level: str = "INFO"
    log_dir: str = ""  # Empty disables JSON file logging
    metrics_port: int = 9108  # Prometheus exporter for the worker, 0 disables

    # ==========================================================================
    # Query Cache Settings
    # ==========================================================================
    cache_stale_seconds: int = 300  # 5 minutes
    store_lookup_stale_seconds: int = 900  # Store maps change rarely
    cache_gc_seconds: int = 1800  # Drop unused entries after 30 minutes

    # ==========================================================================
    # Archival Settings
    # ==========================================================================
    # "per-advertisement": history key derived from the advertisement id
    # "fresh": new push key per archival (concurrent sessions may duplicate)
    archive_history_key_policy: str = "per-advertisement"
    archive_sweep_enabled: bool = True
    archive_sweep_interval_minutes: int = 15

    # ==========================================================================
    # Listing Settings
    # ==========================================================================
    default_validity_days: int = 7
    max_validity_days: int = 7
    placeholder_image_url: str = "https://placehold.co/600x400.png"

    # Geo
    earth_radius_km: float = 6371.0
    geolocation_timeout_seconds: float = 10.0

    # ==========================================================================
    # AI & LLM Configuration
    # ==========================================================================
    openai_api_key: str = ""
    llm_model: str = "gpt-4o-mini"
    llm_vision_model: str = "gpt-4o-mini"
    llm_temperature: float = 0.3
    llm_max_tokens: int = 500
    llm_timeout_seconds: float = 30.0
    related_products_limit: int = 5

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
