"""Configuration module for docvault."""

from .settings import Settings, StorageConfig, SweepConfig, configure, get_settings

__all__ = [
    "Settings",
    "StorageConfig",
    "SweepConfig",
    "configure",
    "get_settings",
]
