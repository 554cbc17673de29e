"""
Configuration management for the storefront sync service
"""
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import List


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "Storefront Sync Service"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"
    log_dir: str = "logs"
    log_to_file: bool = True

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 3001
    cors_origins: List[str] = ["http://localhost:5173"]

    # Database
    database_url: str = "sqlite:///./storesync.db"

    # Shopify Admin API
    shopify_api_version: str = "2024-07"
    http_timeout_seconds: float = 60.0

    # Paging / rate limits
    sync_page_size: int = 250  # Shopify hard cap
    rate_limit_backoff_seconds: float = 2.0  # Fixed wait after a 429
    page_delay_seconds: float = 0.1  # Courtesy delay between pages
    shop_delay_seconds: float = 0.5  # Between shops on the recent-orders pass

    # Sync Schedules
    enable_scheduler: bool = True
    full_sync_interval_minutes: int = 30
    recent_orders_interval_minutes: int = 60
    recent_orders_window_hours: int = 24

    # Response cache
    analytics_cache_ttl_seconds: int = 300

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
