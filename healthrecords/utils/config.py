"""
Configuration management for the health records service.
Handles storage locations, upload limits, AI analysis and email settings.
"""

from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings as PydanticBaseSettings
from pydantic_settings import SettingsConfigDict


class Settings(PydanticBaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore"
    )

    debug: bool = Field(False)
    environment: str = Field("development")
    host: str = Field("0.0.0.0")
    port: int = Field(3001)

    # Storage
    database_url: str = Field("sqlite:///./data/health_records.db")
    upload_dir: Path = Field(Path("uploads"))
    share_dir: Path = Field(Path("storage/shares"))

    # Upload limits
    max_upload_bytes: int = Field(10 * 1024 * 1024)
    max_upload_files: int = Field(10)
    max_image_bytes: int = Field(50 * 1024 * 1024)
    max_attachment_bytes: int = Field(500 * 1024)
    temp_file_max_age_hours: int = Field(24)

    # Processing pipeline
    processing_delay_seconds: float = Field(3.0)
    auto_analyze: bool = Field(True)

    # AI analysis (OpenAI-compatible chat completions endpoint)
    enable_ai_analysis: bool = Field(True)
    llm_api_key: Optional[str] = Field(None)
    llm_endpoint: str = Field("https://api.mistral.ai/v1/chat/completions")
    llm_model: str = Field("open-mixtral-8x7b")
    llm_max_tokens: int = Field(4096)
    llm_temperature: float = Field(0.3)
    request_timeout: int = Field(30)

    enable_caching: bool = Field(True)
    cache_ttl: int = Field(3600)

    # Email delivery
    smtp_host: Optional[str] = Field(None)
    smtp_port: int = Field(587)
    smtp_username: Optional[str] = Field(None)
    smtp_password: Optional[str] = Field(None)
    smtp_use_tls: bool = Field(True)
    email_sender: str = Field("records@revado.health")
    share_link_ttl_days: int = Field(7)

    calendar_timezone: str = Field("UTC")

    cors_origins: List[str] = Field(
        default_factory=lambda: [
            "http://localhost:5173",
            "http://localhost:5174",
            "https://localhost:5173",
        ]
    )

    # Logging
    log_level: str = Field("INFO")
    enable_structured_logging: bool = Field(True)
    compliance_log_file: Optional[str] = Field(None)

    @property
    def llm_configured(self) -> bool:
        return bool(self.llm_api_key) and self.llm_api_key != "your-api-key-here"

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host)


# Global settings instance
settings = Settings()


class LatencyConfig:
    """Latency thresholds used when logging slow operations (ms)."""

    WARNING_ANALYSIS_LATENCY = 1500
    CRITICAL_ANALYSIS_LATENCY = 3000
    WARNING_PDF_LATENCY = 800
    WARNING_STORAGE_LATENCY = 250
