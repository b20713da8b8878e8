"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class LedgerConfig(BaseSettings):
    """Vehicle finance ledger configuration"""
    
    # Database configuration
    database_url: str = "sqlite:///vehicle_finance.db"  # Default SQLite
    use_sqlite: bool = True
    
    # Calendar configuration
    timezone: str = "America/Bogota"  # Business day boundaries are local
    skipped_dates_horizon_months: int = 12  # Recurring rules expand this far past today
    up_to_date_tolerance: str = "0.01"  # Net position band treated as "exactly current"
    
    # Remote calendar-exceptions service
    calendar_service_url: str = ""  # Empty = use local calendar exceptions
    calendar_service_timeout: float = 2.0
    calendar_service_api_key: str = ""
    
    # Listing configuration
    default_page_size: int = 50
    max_page_size: int = 500
    
    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8091
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout
    
    class Config:
        env_prefix = "VF_"
        env_file = ".env"
        case_sensitive = False
    
    @property
    def sqlite_path(self) -> str:
        """Filesystem path portion of a sqlite:/// URL"""
        prefix = "sqlite:///"
        if self.database_url.startswith(prefix):
            return self.database_url[len(prefix):] or ":memory:"
        return self.database_url


# Global configuration instance
config = LedgerConfig()


def get_config() -> LedgerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LedgerConfig:
    """Reload configuration from environment"""
    global config
    config = LedgerConfig()
    return config
