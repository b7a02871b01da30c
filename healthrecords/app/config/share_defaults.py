"""Configuration defaults for shared record summaries."""

from __future__ import annotations

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..models.share import ShareDefaults


class ShareDefaultsSettings(BaseSettings):
    """Environment-backed fallbacks for share emails and PDFs (``SHARE_*``)."""

    model_config = SettingsConfigDict(
        env_prefix="SHARE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    patient_name: str = "Patient"
    patient_email: str = "patient@email.com"
    recipient_name: str = "Healthcare Provider"
    app_name: str = "Revado Health"


@lru_cache(maxsize=1)
def get_share_defaults() -> ShareDefaults:
    """Return cached share defaults as a Pydantic model."""

    settings = ShareDefaultsSettings()
    return ShareDefaults(**settings.model_dump())

