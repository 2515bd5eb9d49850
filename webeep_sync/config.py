"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

STORE_FILE = "store.json"
TOKEN_FILE = "token.json"


class Settings(BaseSettings):
    """WeBeep Sync process settings.

    These are deployment-level knobs. Preferences the user edits at runtime
    (download folder, autosync, per-course flags) live in the persisted
    ``SettingsStore`` instead.
    """

    model_config = SettingsConfigDict(
        env_prefix="WEBEEP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False

    # Remote service
    moodle_url: str = "https://webeep.polimi.it"
    moodle_lang: str = "it"
    ws_service: str = "moodle_mobile_app"
    request_timeout: float = Field(default=60.0, gt=0)
    materials_section_names: list[str] = Field(default_factory=lambda: ["Materials", "Materiali"])

    # Resilience
    reconnect_interval: float = Field(default=5.0, gt=0)
    max_concurrent_downloads: int = Field(default=4, ge=1, le=32)

    # Paths
    data_dir: Path = Path.home() / ".webeep-sync"
    default_download_path: Path = Path.home() / "WeBeep Sync"

    @property
    def store_path(self) -> Path:
        """Location of the persisted user settings and file index."""
        return self.data_dir / STORE_FILE

    @property
    def token_path(self) -> Path:
        """Location of the stored bearer token."""
        return self.data_dir / TOKEN_FILE

    @property
    def base_url(self) -> str:
        """Remote service base URL without a trailing slash."""
        return self.moodle_url.rstrip("/")
