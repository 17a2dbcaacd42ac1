from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Secrets(BaseSettings):
    """Provider credentials, loaded from the environment or a secrets management service."""

    model_config = SettingsConfigDict(
        env_prefix="REELCAST_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    mux_token_id: Optional[str] = Field(default=None, description="Mux access token id.")
    mux_token_secret: Optional[str] = Field(default=None, description="Mux access token secret.")
    cloudflare_api_token: Optional[str] = Field(default=None, description="Cloudflare Stream API token.")

    @classmethod
    def from_settings(cls, settings: "Settings") -> "Secrets":
        return cls()


class Settings(BaseSettings):
    """Centralised runtime configuration for the reelcast pipeline."""

    model_config = SettingsConfigDict(
        env_prefix="REELCAST_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "reelcast"
    environment: str = Field(default="development", description="Deployment environment label.")
    version: str = Field(default="0.1.0", description="Version reported by the catalog API.")
    log_level: str = Field(default="info")
    log_format: Literal["json", "console"] = Field(default="json", description="structlog renderer for stderr.")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./reelcast.db",
        description="SQLAlchemy compatible DSN for the catalog.",
    )

    intake_dir: Path = Field(default_factory=lambda: Path("uploads"), description="Directory scanned for new media.")
    processed_dir: Optional[Path] = Field(default=None, description="Holding area for published files.")
    duplicates_dir: Optional[Path] = Field(default=None, description="Holding area for duplicate files.")
    failed_dir: Optional[Path] = Field(default=None, description="Holding area for files that failed a step.")
    preview_dir: Path = Field(default_factory=lambda: Path("public/previews"), description="Fast-start preview output.")
    media_extensions: tuple[str, ...] = Field(
        default=(".mp4", ".mov", ".webm", ".avi", ".mkv", ".m4v"),
        description="Recognised media extensions in the intake directory.",
    )

    probe_timeout_s: float = Field(default=60.0, description="Timeout for a single ffprobe call.")
    transcode_timeout_s: float = Field(default=900.0, description="Timeout for a single ffmpeg call.")
    placeholder_mode: Literal["image", "color"] = Field(default="image", description="Placeholder flavour.")
    preview_enabled: bool = Field(default=True, description="Generate the local fast-start preview.")
    preview_height: int = Field(default=360, description="Preview height in pixels.")

    ingest_concurrency: int = Field(default=1, ge=1, description="Files processed in parallel per batch.")

    primary_provider: Literal["mux"] = Field(default="mux")
    secondary_providers: tuple[str, ...] = Field(default=(), description="Best-effort providers, e.g. 'cloudflare'.")
    mux_api_url: str = Field(default="https://api.mux.com")
    mux_video_quality: str = Field(default="plus")
    mux_cors_origin: str = Field(default="*")
    cloudflare_api_url: str = Field(default="https://api.cloudflare.com/client/v4")
    cloudflare_account_id: Optional[str] = None
    cloudflare_max_duration_s: int = Field(default=3600)
    provider_timeout_s: float = Field(default=30.0, description="Per-call timeout for provider API requests.")
    upload_timeout_s: float = Field(default=1800.0, description="Timeout for a single bulk byte upload.")

    reconcile_max_attempts: int = Field(default=20, ge=1, description="Passes allowed in continuous mode.")
    reconcile_delay_s: float = Field(default=30.0, ge=0, description="Delay between continuous passes.")
    reconcile_lock_ttl_s: int = Field(default=3600, ge=1, description="Lifetime of the reconciler lease, renewed before every pass.")

    catalog_export_path: Optional[Path] = Field(
        default=None,
        description="Presentation document rewritten after each process/reconcile run.",
    )
    download_history_path: Path = Field(default_factory=lambda: Path("data/download-history.json"))
    twitter_cookies_file: Optional[Path] = None

    secrets: Secrets = Field(default_factory=Secrets, description="Holds sensitive configuration.")

    @property
    def processed_path(self) -> Path:
        return self.processed_dir or self.intake_dir / "processed"

    @property
    def duplicates_path(self) -> Path:
        return self.duplicates_dir or self.intake_dir / "duplicates"

    @property
    def failed_path(self) -> Path:
        return self.failed_dir or self.intake_dir / "failed"

    @property
    def normalized_extensions(self) -> frozenset[str]:
        return frozenset(ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in self.media_extensions)


@lru_cache()
def get_settings() -> Settings:
    load_dotenv(".env", override=False)

    _ENV_ALIAS_MAP = {
        "REELCAST_ENV": "REELCAST_ENVIRONMENT",
        "REELCAST_DB_URL": "REELCAST_DATABASE_URL",
        "MUX_TOKEN_ID": "REELCAST_MUX_TOKEN_ID",
        "MUX_TOKEN_SECRET": "REELCAST_MUX_TOKEN_SECRET",
    }

    for source, target in _ENV_ALIAS_MAP.items():
        value = os.getenv(source)
        if value and not os.getenv(target):
            os.environ[target] = value

    settings = Settings()

    # In a real deployment the credentials would come from a vault
    # instead of just loading them from the environment.
    settings.secrets = Secrets.from_settings(settings)
    return settings


__all__ = ["Settings", "Secrets", "get_settings"]
