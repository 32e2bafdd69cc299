"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class BalanceLedgerConfig(BaseSettings):
    """Balance ledger service configuration"""

    # Database configuration
    database_url: str = "sqlite:///balance_ledger.db"  # memory://, sqlite:///..., postgresql://...
    lock_timeout_seconds: Optional[float] = None  # None = wait until the lock is granted
    sqlite_busy_timeout_seconds: float = 60.0
    database_pool_min: int = 1  # PostgreSQL connection pool bounds
    database_pool_max: int = 40  # at least the number of server worker threads

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_prefix: str = "/api"
    history_page_size: int = 50

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    class Config:
        env_prefix = "BALANCE_LEDGER_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = BalanceLedgerConfig()


def get_config() -> BalanceLedgerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> BalanceLedgerConfig:
    """Reload configuration from environment"""
    global config
    config = BalanceLedgerConfig()
    return config
