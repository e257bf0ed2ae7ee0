"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
Per-group business settings (savings/loan/meeting) are not configuration; they
live in storage and are read through the settings provider.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class ShgConfig(BaseSettings):
    """SHG finance core configuration"""
    
    # Database configuration
    database_url: str = "sqlite:///shg_finance.db"  # memory:// for the in-memory backend
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout
    
    # Business calendar
    timezone: str = "Asia/Kolkata"
    
    # File storage configuration
    app_env: str = "development"
    proof_storage_root: str = "uploads"
    
    # Business rules configuration
    loan_witness_count: int = 2
    ledger_notes_max_length: int = 500
    
    class Config:
        env_prefix = "SHG_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = ShgConfig()


def get_config() -> ShgConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> ShgConfig:
    """Reload configuration from environment"""
    global config
    config = ShgConfig()
    return config
