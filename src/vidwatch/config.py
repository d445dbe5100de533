"""Configuration management using pydantic-settings."""

from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

from pydantic_settings import BaseSettings, SettingsConfigDict

# Settings that may be changed at runtime by a connected foreground instance
RUNTIME_OVERRIDABLE = ("feed_url", "poll_interval")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Feed (Google Sheets gviz endpoint by default)
    feed_url: str = ""  # e.g. https://docs.google.com/spreadsheets/d/<id>/gviz/tq?tqx=out:json
    feed_prefix: str = "("  # JSON starts after the first occurrence
    feed_suffix: str = ")"  # JSON ends before the last occurrence
    title_lookup_url: str = "https://noembed.com/embed?url=https://www.youtube.com/watch?v={video_id}"

    # Foreground application
    app_name: str = "Video Playlist"
    app_url: str = "http://localhost:8000/"

    # Timing (seconds)
    poll_interval: int = 300
    http_timeout: float = 15.0
    title_lookup_timeout: float = 5.0
    notification_timeout: float = 300.0

    # Notifications
    stack_threshold: int = 3  # Larger batches collapse into one summary
    notify_on_first_run: bool = False

    # Response cache
    cache_prefix: str = "vp"
    cache_version: str = "v6"
    cache_allowed_hosts: str = (
        "fonts.googleapis.com,fonts.gstatic.com,cdn.jsdelivr.net,cdnjs.cloudflare.com"
    )
    precache_urls: str = ""

    data_dir: Path = Path.home() / ".vidwatch"

    @staticmethod
    def _split_csv(value: str) -> list[str]:
        """Split a comma-separated string into a trimmed list."""
        return [item.strip() for item in value.split(",") if item.strip()]

    @property
    def cache_name(self) -> str:
        """Name of the current cache generation."""
        return f"{self.cache_prefix}-{self.cache_version}"

    @property
    def app_origin(self) -> str:
        """Scheme and authority of the foreground application."""
        parts = urlsplit(self.app_url)
        return f"{parts.scheme}://{parts.netloc}"

    @property
    def cache_allowed_hosts_list(self) -> list[str]:
        """Get trusted external hosts as a list."""
        return [host.lower() for host in self._split_csv(self.cache_allowed_hosts)]

    @property
    def precache_urls_list(self) -> list[str]:
        """Get assets to pre-cache on install as a list."""
        return self._split_csv(self.precache_urls)

    @property
    def db_path(self) -> Path:
        """SQLite database holding the known set and runtime overrides."""
        return self.data_dir / "state.db"

    @property
    def cache_db_path(self) -> Path:
        """SQLite database holding cache generations."""
        return self.data_dir / "cache.db"

    @property
    def socket_path(self) -> Path:
        """Unix socket foreground instances connect to."""
        return self.data_dir / "agent.sock"

    @property
    def pid_file(self) -> Path:
        return self.data_dir / "daemon.pid"

    @property
    def log_file(self) -> Path:
        return self.data_dir / "daemon.log"

    def ensure_directories(self) -> None:
        """Create the data directory if it doesn't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def apply_overrides(self, overrides: dict[str, Any]) -> list[str]:
        """Apply runtime overrides in place.

        Unknown keys and values that fail conversion are ignored.

        Args:
            overrides: Mapping of setting name to new value

        Returns:
            Names of the settings that were changed
        """
        changed = []
        for name, value in overrides.items():
            if name not in RUNTIME_OVERRIDABLE or value is None:
                continue
            if name == "poll_interval":
                try:
                    value = int(value)
                except (TypeError, ValueError):
                    continue
                if value <= 0:
                    continue
            else:
                value = str(value)
            if getattr(self, name) != value:
                setattr(self, name, value)
                changed.append(name)
        return changed


# Global settings instance
settings = Settings()
