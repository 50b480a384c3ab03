"""Application configuration."""

from pathlib import Path
from typing import Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""
    
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")
    
    # API Settings
    API_V1_STR: str = "/v1"
    PROJECT_NAME: str = "Invoice Export"
    
    # CORS
    ALLOWED_HOSTS: list[str] = ["http://localhost:3000", "http://localhost:3001"]
    
    # Upstream data endpoint
    EXPORT_API_BASE_URL: str = "http://localhost:3000/api"
    EXPORT_HTTP_TIMEOUT: float = 30.0
    EXPORT_MAX_ATTEMPTS: int = 3
    
    # Chart rendering
    CHART_WIDTH: int = 600
    CHART_HEIGHT: int = 400
    CHART_DPI: int = 100
    CHART_SETTLE_SECONDS: float = 0.1
    
    # Artifact storage
    EXPORT_DIR: Path = Path("exports")
    
    # Observability
    LOG_LEVEL: str = "INFO"
    
    @field_validator("EXPORT_API_BASE_URL")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize base URL so paths can be appended."""
        return v.rstrip("/")
    
    @field_validator("EXPORT_MAX_ATTEMPTS")
    @classmethod
    def at_least_one_attempt(cls, v: int) -> int:
        """Reject retry ceilings below one attempt."""
        if v < 1:
            raise ValueError("EXPORT_MAX_ATTEMPTS must be >= 1")
        return v
    
    @field_validator("LOG_LEVEL")
    @classmethod
    def upper_log_level(cls, v: Any) -> str:
        """Normalize log level name."""
        return str(v).upper()


settings = Settings()
