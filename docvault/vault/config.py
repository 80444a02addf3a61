"""Vault configuration for the docvault encryption system."""

import os
from dataclasses import dataclass, field

GIB = 1024 * 1024 * 1024


def _default_role_quotas() -> dict[str, int]:
    # -1 means unlimited
    return {"user": 1 * GIB, "admin": -1}


@dataclass
class VaultConfig:
    """Configuration for encryption and vault operations."""

    # Key derivation (scrypt)
    scrypt_n: int = 2**14
    scrypt_r: int = 8
    scrypt_p: int = 1
    key_size: int = 32  # 256 bits for AES-256

    # Streaming encryption
    chunk_size: int = 64 * 1024  # 64KB chunks
    nonce_size: int = 16  # AES-CTR counter block

    # PIN hashing (argon2id)
    pin_length: int = 6
    argon2_time_cost: int = 3
    argon2_memory_cost: int = 65536  # KiB
    argon2_parallelism: int = 4

    # Access capabilities
    capability_ttl_seconds: int = 60

    # Quotas
    default_vault_quota: int = 5 * GIB
    role_quotas: dict[str, int] = field(default_factory=_default_role_quotas)
    default_team_quota: int = 10 * GIB
    team_quotas: dict[str, int] = field(default_factory=dict)

    # File naming
    encrypted_extension: str = ".enc"

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """
        Load configuration from environment variables.

        Environment variables:
            VAULT_CHUNK_SIZE: Streaming chunk size in bytes (default: 65536)
            VAULT_CAPABILITY_TTL: Capability lifetime in seconds (default: 60)
            VAULT_DEFAULT_QUOTA: Default personal vault quota in bytes (default: 5GB)
            VAULT_USER_QUOTA: Quota for the "user" role in bytes (default: 1GB)
            VAULT_TEAM_QUOTA: Default team storage quota in bytes (default: 10GB)
        """
        config = cls()

        if chunk_size := os.getenv("VAULT_CHUNK_SIZE"):
            config.chunk_size = int(chunk_size)

        if ttl := os.getenv("VAULT_CAPABILITY_TTL"):
            config.capability_ttl_seconds = int(ttl)

        if quota := os.getenv("VAULT_DEFAULT_QUOTA"):
            config.default_vault_quota = int(quota)

        if user_quota := os.getenv("VAULT_USER_QUOTA"):
            config.role_quotas["user"] = int(user_quota)

        if team_quota := os.getenv("VAULT_TEAM_QUOTA"):
            config.default_team_quota = int(team_quota)

        return config


# Global configuration instance
_config: VaultConfig | None = None


def get_vault_config() -> VaultConfig:
    """Get the global vault configuration."""
    global _config
    if _config is None:
        _config = VaultConfig.from_env()
    return _config


def set_vault_config(config: VaultConfig) -> None:
    """Set the global vault configuration."""
    global _config
    _config = config
