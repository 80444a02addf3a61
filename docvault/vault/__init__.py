"""Encrypted storage and PIN-gated vault for docvault.

Every stored file is encrypted at rest with AES-256-CTR under a key derived
from DOCVAULT_SECRET. Files can be promoted into the vault behind a 6-digit
PIN, optionally with a self-destruct deadline.

Usage:
    from docvault.vault import build_services, Principal

    services = build_services()
    owner = Principal(user_id="alice")

    with open("report.pdf", "rb") as f:
        stored = services.files.upload(f, owner, "report.pdf", "application/pdf")

    membership = services.controller.promote(stored.id, owner, "482913")
    capability = services.controller.gate(membership.id, owner, "482913")
    for chunk in services.controller.open_capability(capability.token, owner):
        ...
"""

# Exceptions
from .exceptions import (
    AlreadyInVaultError,
    AuthorizationError,
    CapabilityError,
    ConfigurationError,
    CorruptObjectError,
    DocVaultError,
    FileNotFoundInStoreError,
    FileTooLargeError,
    IntegrityMismatchError,
    IntegrityReadError,
    InvalidPinFormatError,
    InvalidSecretError,
    MembershipExpiredError,
    MembershipNotFoundError,
    NotFoundError,
    NotOwnerError,
    QuotaExceededError,
    StorageIOError,
    TeamQuotaExceededError,
    TransferAbortedError,
    ValidationError,
    VaultAccessRevokedError,
)

# Configuration
from .config import (
    VaultConfig,
    get_vault_config,
    set_vault_config,
)

# Models
from .models import (
    ActivityAction,
    ActivityEvent,
    Capability,
    MembershipState,
    Principal,
    QuotaStatus,
    StoredFile,
    VaultMembership,
)

# Crypto primitives
from .keys import KeyDerivation, KeyProvider, ScryptKeyProvider, StaticKeyProvider
from .crypto import StreamCipher
from .integrity import IntegrityVerifier

# Storage and vault
from .records import RecordStore
from .activity import ActivityLog, MemoryActivitySink
from .quota import QuotaLedger, QuotaPolicy, RecordQuotaLedger
from .file_store import FileStore
from .controller import VaultAccessController
from .sweeper import ExpirationSweeper, SweepReport
from .services import VaultServices, build_services

__all__ = [
    # Exceptions
    "DocVaultError",
    "ConfigurationError",
    "StorageIOError",
    "IntegrityReadError",
    "CorruptObjectError",
    "IntegrityMismatchError",
    "TransferAbortedError",
    "FileTooLargeError",
    "ValidationError",
    "InvalidPinFormatError",
    "AlreadyInVaultError",
    "AuthorizationError",
    "NotOwnerError",
    "VaultAccessRevokedError",
    "QuotaExceededError",
    "TeamQuotaExceededError",
    "InvalidSecretError",
    "NotFoundError",
    "FileNotFoundInStoreError",
    "MembershipNotFoundError",
    "MembershipExpiredError",
    "CapabilityError",
    # Configuration
    "VaultConfig",
    "get_vault_config",
    "set_vault_config",
    # Models
    "ActivityAction",
    "ActivityEvent",
    "Capability",
    "MembershipState",
    "Principal",
    "QuotaStatus",
    "StoredFile",
    "VaultMembership",
    # Crypto
    "KeyDerivation",
    "KeyProvider",
    "ScryptKeyProvider",
    "StaticKeyProvider",
    "StreamCipher",
    "IntegrityVerifier",
    # Storage and vault
    "RecordStore",
    "ActivityLog",
    "MemoryActivitySink",
    "QuotaLedger",
    "QuotaPolicy",
    "RecordQuotaLedger",
    "FileStore",
    "VaultAccessController",
    "ExpirationSweeper",
    "SweepReport",
    "VaultServices",
    "build_services",
]
