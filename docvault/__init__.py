"""docvault - Encrypted document storage with a PIN-gated vault."""

__version__ = "0.1.0"

from .vault import (
    DocVaultError,
    Principal,
    StoredFile,
    VaultMembership,
    build_services,
)

__all__ = [
    "__version__",
    "DocVaultError",
    "Principal",
    "StoredFile",
    "VaultMembership",
    "build_services",
]
