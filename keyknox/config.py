"""Library configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from keyknox.services.keyknox_client import DEFAULT_API_URL, DEFAULT_TIMEOUT


class Settings(BaseSettings):
    """Keyknox sync settings (``KEYKNOX_*`` environment variables)."""

    model_config = SettingsConfigDict(
        env_prefix="KEYKNOX_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = False

    # Service
    api_url: str = DEFAULT_API_URL
    request_timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0)

    # Local store
    identity: str = "default"
    key_entries_dir: Path = Path("./keyknox-entries")
