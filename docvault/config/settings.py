"""Configuration settings for docvault."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


def _default_data_dir() -> Path:
    return Path.home() / ".local" / "share" / "docvault"


@dataclass
class StorageConfig:
    """Where encrypted objects and metadata records live."""

    storage_dir: Path = field(default_factory=lambda: _default_data_dir() / "objects")
    records_dir: Path = field(default_factory=lambda: _default_data_dir() / "records")
    max_file_size_mb: int = 100
    default_expiry_days: Optional[int] = None  # None = files never expire

    @property
    def max_file_size(self) -> int:
        """Upload limit in bytes (0 or less disables the limit)."""
        return self.max_file_size_mb * 1024 * 1024


@dataclass
class SweepConfig:
    """Configuration for the expiration sweeper."""

    interval_hours: float = 24.0

    @property
    def interval_seconds(self) -> float:
        return self.interval_hours * 3600


@dataclass
class Settings:
    """Main settings container."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    sweep: SweepConfig = field(default_factory=SweepConfig)

    # Logging
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from environment variables."""
        settings = cls()

        if data_dir := os.getenv("DOCVAULT_STORAGE_DIR"):
            settings.storage.storage_dir = Path(data_dir)

        if records_dir := os.getenv("DOCVAULT_RECORDS_DIR"):
            settings.storage.records_dir = Path(records_dir)

        if max_size := os.getenv("DOCVAULT_MAX_FILE_SIZE_MB"):
            settings.storage.max_file_size_mb = int(max_size)

        if expiry := os.getenv("DOCVAULT_DEFAULT_EXPIRY_DAYS"):
            settings.storage.default_expiry_days = int(expiry) or None

        if interval := os.getenv("DOCVAULT_SWEEP_INTERVAL_HOURS"):
            settings.sweep.interval_hours = float(interval)

        if log_level := os.getenv("LOG_LEVEL"):
            settings.log_level = log_level

        if log_file := os.getenv("DOCVAULT_LOG_FILE"):
            settings.log_file = Path(log_file)

        return settings


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def configure(settings: Optional[Settings]) -> None:
    """Set the global settings instance (None reloads from the environment)."""
    global _settings
    _settings = settings
