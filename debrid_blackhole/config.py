"""
Application settings loaded from the environment (and an optional .env file).
"""

import os
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CACHE_DIR = Path.home() / ".cache" / "debrid-blackhole"


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # OAuth2
    debrid_link_client_id: str = ""

    # Destinations
    downloads: str = ""
    in_progress: str = ""

    # Downloader backend: "aria2", "http" (alias "fetch") or empty to print links
    downloader: str = ""

    # Polling
    poll_interval: float = 30.0
    device_poll_interval: float = 5.0
    lock_poll_interval: float = 1.0

    # Cached credential and its authorization lock
    token_file: str = str(DEFAULT_CACHE_DIR / "access_token.json")
    lock_file: str = ""

    # Remove the torrent from the seedbox once every file was downloaded
    remove_after_download: bool = False

    # SMTP notifier
    smtp_host: str = ""
    smtp_port: Optional[int] = None
    smtp_user: str = ""
    smtp_pass: str = ""
    smtp_insecure_tls: bool = False
    mail_from: str = ""
    mail_to: str = ""

    # Mailjet notifier
    mj_apikey_public: str = ""
    mj_apikey_private: str = ""

    # aria2 JSON-RPC backend
    aria2_rpc_url: str = "http://localhost:6800/jsonrpc"
    aria2_secret: str = ""
    aria2_spawn: bool = False
    aria2_poll_interval: float = 2.0

    # HTTP transport
    http_retry_attempts: int = 3
    http_timeout: float = 60.0

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"  # "text" or "json"
    log_file: Optional[str] = None

    @property
    def destination(self) -> str:
        """Final destination directory for completed files."""
        return resolve_path(self.downloads)

    @property
    def temp_destination(self) -> str:
        """In-progress directory, falling back to the final destination."""
        return resolve_path(self.in_progress) or self.destination

    @property
    def token_path(self) -> str:
        return resolve_path(self.token_file)

    @property
    def lock_path(self) -> str:
        return resolve_path(self.lock_file) or f"{self.token_path}.lock"

    @property
    def mail_recipients(self) -> list[str]:
        return [addr.strip() for addr in self.mail_to.split(",") if addr.strip()]


def resolve_path(value: Optional[str]) -> str:
    """Expand ``~`` and environment variables; empty stays empty."""
    if not value:
        return ""
    return os.path.abspath(os.path.expandvars(os.path.expanduser(value)))
