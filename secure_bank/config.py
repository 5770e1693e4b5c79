"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from decimal import Decimal

from pydantic_settings import BaseSettings
from typing import Optional

# Only accepted outside production
DEVELOPMENT_JWT_SECRET = "temporary-secret-for-interview"


class BankConfig(BaseSettings):
    """SecureBank backend configuration"""

    # Environment ("production" disables the development key fallbacks)
    node_env: str = "development"

    # Database configuration
    database_path: str = "bank.db"

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: str = "http://localhost:3000"  # Comma separated

    # Key material (64 hex chars = 32 bytes each)
    encryption_key: str = ""
    ssn_index_key: str = ""

    # Session configuration
    jwt_secret: str = DEVELOPMENT_JWT_SECRET
    jwt_algorithm: str = "HS256"
    token_lifetime_days: int = 7
    session_ttl_minutes: int = 60
    session_renewal_threshold_minutes: int = 30
    session_safety_window_seconds: int = 120
    session_cookie_name: str = "session"

    # Password hashing (scrypt N = 2 ** password_hash_cost)
    password_hash_cost: int = 14

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Business rules configuration
    transactions_page_default: int = 20
    transactions_page_max: int = 100
    max_deposit_amount: Decimal = Decimal("1000000.00")
    account_number_max_attempts: int = 0  # 0 = retry until unique

    # Migration configuration
    auto_migrate: bool = True

    @property
    def is_production(self) -> bool:
        return self.node_env.strip().lower() == "production"

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


# Global configuration instance
config = BankConfig()


def get_config() -> BankConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> BankConfig:
    """Reload configuration from environment"""
    global config
    config = BankConfig()
    return config
