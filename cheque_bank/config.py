"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class ChequeBankConfig(BaseSettings):
    """Cheque bank settlement service configuration"""

    model_config = SettingsConfigDict(
        env_prefix="CHEQUEBANK_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Storage configuration
    storage_backend: str = "sqlite"  # sqlite or memory
    database_path: str = "chequebank.db"

    # Identity of this settlement instance; bound into every cheque commitment
    bank_address: str = "0x000000000000000000000000000000000000c0DE"

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Security configuration
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expiry_hours: int = 24
    challenge_ttl_seconds: int = 300

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    # Feature flags
    enable_audit_logging: bool = True


# Global configuration instance
config = ChequeBankConfig()


def get_config() -> ChequeBankConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> ChequeBankConfig:
    """Reload configuration from environment"""
    global config
    config = ChequeBankConfig()
    return config
