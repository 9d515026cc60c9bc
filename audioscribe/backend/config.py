"""
Configuration settings for the ledger backend.
"""
from pydantic_settings import BaseSettings


class BackendSettings(BaseSettings):
    """Backend settings loaded from environment variables."""
    
    host: str = "0.0.0.0"
    port: int = 8001
    debug: bool = False
    
    database_url: str = "sqlite:///./audioscribe.db"
    
    # JWT
    secret_key: str = "your-secret-key-change-in-production"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 30 * 24 * 60  # 30 days
    
    class Config:
        env_prefix = "AUDIOSCRIBE_BACKEND_"
        env_file = ".env"


# Global settings instance
settings = BackendSettings()
