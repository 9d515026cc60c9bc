"""
Configuration settings for the processing service.
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    
    # Server settings
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False
    
    # Ledger / status backend
    backend_url: str = "http://localhost:8001"
    backend_token: str | None = None  # Bearer token for the ledger backend
    request_timeout: float = 30.0
    
    # Pipeline simulation
    progress_increment: int = 10
    progress_tick_seconds: float = 0.2
    step_settle_seconds: float = 0.3
    step_delay_scale: float = 1.0  # 0 disables simulated step work
    
    # Quality gate
    min_transcription_length: int = 10
    
    # Job settings
    job_id_utc_offset_hours: int = 8  # Date stamp in job ids (Asia/Kuala_Lumpur)
    default_processing_days: int = 21
    
    class Config:
        env_prefix = "AUDIOSCRIBE_"
        env_file = ".env"


# Global settings instance
settings = Settings()
