"""
Instay Dashboard Configuration Settings
"""
from pathlib import Path
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Paths (use INSTAY_ prefix)
    data_path: Path = Field(
        default=Path("./data"),
        alias="INSTAY_DATA_PATH",
        description="Directory holding the durable JSON stores"
    )
    snapshot_path: Path = Field(
        default=Path("./instay_output.csv"),
        alias="INSTAY_SNAPSHOT_PATH",
        description="Locally cached guest export (CSV)"
    )
    archive_path: Path = Field(
        default=Path("./instay_archive"),
        alias="INSTAY_ARCHIVE_PATH",
        description="Directory of archived guest exports"
    )
    remote_name_map_path: Optional[Path] = Field(
        default=None,
        alias="INSTAY_REMOTE_NAME_MAP",
        description="Shared name-map JSON merged into the local map at startup"
    )

    # Store file names (relative to data_path)
    name_map_filename: str = "phone_name_map.json"
    occurrence_index_filename: str = "instay_archives_phone_index.json"
    blocklist_filename: str = "sent_template_blocklist.json"

    # Bird messaging API (no prefix - standard env var names)
    bird_api_key: str = Field(default="", alias="BIRD_API_KEY")
    bird_workspace_id: str = Field(default="", alias="BIRD_WORKSPACE_ID")
    bird_channel_id: str = Field(default="", alias="BIRD_CHANNEL_ID")
    bird_api_url: str = Field(default="https://api.bird.com", alias="BIRD_API_URL")
    bird_timeout: float = Field(default=30.0, alias="BIRD_TIMEOUT")
    message_fetch_limit: int = Field(default=500, alias="INSTAY_MESSAGE_LIMIT")

    # Polling intervals (seconds)
    snapshot_poll_seconds: int = Field(default=30, alias="INSTAY_SNAPSHOT_POLL_SECONDS")
    archive_poll_seconds: int = Field(default=30, alias="INSTAY_ARCHIVE_POLL_SECONDS")
    message_poll_seconds: int = Field(default=3, alias="INSTAY_MESSAGE_POLL_SECONDS")

    # System/bot senders that never appear in the guest list (comma-separated)
    excluded_names_raw: str = Field(
        default="LTG:AI-Maintenance,Mercure Hyde Park",
        alias="INSTAY_EXCLUDED_NAMES",
        description="Display names hidden from the guest list (comma-separated)"
    )

    # Extra directories scanned for loose guest exports (comma-separated)
    local_archive_dirs_raw: str = Field(
        default="",
        alias="INSTAY_LOCAL_ARCHIVE_DIRS",
        description="Directories scanned for guest CSV exports (comma-separated)"
    )
    archive_keywords_raw: str = Field(
        default="instay,output,guest",
        alias="INSTAY_ARCHIVE_KEYWORDS",
        description="Filename keywords identifying guest exports (comma-separated)"
    )

    @property
    def excluded_names(self) -> list[str]:
        """Parse comma-separated excluded names into list."""
        return _split_csv(self.excluded_names_raw)

    @property
    def local_archive_dirs(self) -> list[Path]:
        """Directories scanned for loose exports, archive directory first."""
        dirs = [self.archive_path, self.snapshot_path.parent]
        dirs.extend(Path(d) for d in _split_csv(self.local_archive_dirs_raw))
        return dirs

    @property
    def archive_keywords(self) -> list[str]:
        return [k.lower() for k in _split_csv(self.archive_keywords_raw)]

    @property
    def bird_enabled(self) -> bool:
        """Check if the Bird messaging API is configured."""
        return bool(self.bird_api_key and self.bird_workspace_id and self.bird_channel_id)

    @property
    def name_map_path(self) -> Path:
        return self.data_path / self.name_map_filename

    @property
    def occurrence_index_path(self) -> Path:
        return self.data_path / self.occurrence_index_filename

    @property
    def blocklist_path(self) -> Path:
        return self.data_path / self.blocklist_filename


def _split_csv(raw: str) -> list[str]:
    if not raw:
        return []
    return [x.strip() for x in raw.split(",") if x.strip()]


settings = Settings()
