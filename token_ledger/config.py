"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class TokenLedgerConfig(BaseSettings):
    """Token ledger service configuration"""
    
    # Storage configuration
    database_url: str = "sqlite:///token_ledger.db"  # "memory" for in-memory storage
    
    # Deployment parameters (applied once, on first start)
    token_name: str = "Ledger Token"
    token_symbol: str = "LGT"
    token_decimals: int = 18
    token_total_supply: str = "100000"  # Decimal string; may exceed 64 bits
    burn_sentinel: str = "0x0000000000000000000000000000000000000000"
    deployer_account: str = ""
    metadata_path: Optional[str] = None  # Where to publish token metadata JSON
    
    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090
    
    # Security configuration
    auth_enabled: bool = True
    jwt_secret: str = "change-me-in-production-token-ledger-secret"
    jwt_algorithm: str = "HS256"
    jwt_expiry_hours: int = 24
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    
    # Dispatcher configuration
    request_queue_size: int = 0  # 0 = unbounded
    
    class Config:
        env_prefix = "TOKEN_LEDGER_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = TokenLedgerConfig()


def get_config() -> TokenLedgerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> TokenLedgerConfig:
    """Reload configuration from environment"""
    global config
    config = TokenLedgerConfig()
    return config
