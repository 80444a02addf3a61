"""Exceptions for the docvault storage and vault system.

Every error carries a ``retryable`` flag (I/O problems may succeed on retry,
format and authorization problems will not) and a ``public_message`` that is
safe to show to untrusted callers. The full message is meant for internal logs.
"""

from typing import Optional


class DocVaultError(Exception):
    """Base exception for storage and vault operations."""

    retryable = False
    public_message = "The request could not be completed."

    def __init__(self, message: str = ""):
        super().__init__(message or self.public_message)


class ConfigurationError(DocVaultError):
    """Raised when required configuration (the root secret) is missing."""

    public_message = "Service is not configured."


# I/O errors: retryable by the caller


class StorageIOError(DocVaultError):
    """Raised when stored objects cannot be read or written."""

    retryable = True
    public_message = "Storage is temporarily unavailable."


class IntegrityReadError(StorageIOError):
    """Raised when a stream cannot be read while computing its digest."""


# Format / corruption errors: not retryable


class CorruptObjectError(DocVaultError):
    """Raised when an encrypted object is truncated or malformed."""

    public_message = "File is unreadable."

    def __init__(self, message: str = "Encrypted object is truncated or malformed."):
        super().__init__(message)


class IntegrityMismatchError(DocVaultError):
    """Raised when content does not match its recorded digest."""

    public_message = "File is corrupted or has been tampered with."


class TransferAbortedError(DocVaultError):
    """Raised when a caller cancels a running encryption or decryption."""

    public_message = "Transfer was cancelled."

    def __init__(self, message: str = "Transfer aborted by caller."):
        super().__init__(message)


class FileTooLargeError(DocVaultError):
    """Raised when an upload exceeds the configured size limit."""

    public_message = "File exceeds the maximum allowed size."


# Validation errors


class ValidationError(DocVaultError):
    """Raised when a request is malformed."""

    public_message = "Invalid request."


class InvalidPinFormatError(ValidationError):
    """Raised when a PIN is not exactly six digits."""

    public_message = "A 6-digit PIN is required."

    def __init__(self, message: str = "A 6-digit PIN is required."):
        super().__init__(message)


class AlreadyInVaultError(ValidationError):
    """Raised when promoting a file that already has a vault membership."""

    public_message = "File already in vault."

    def __init__(self, message: str = "File already in vault."):
        super().__init__(message)


# Authorization errors


class AuthorizationError(DocVaultError):
    """Raised when the caller is not allowed to perform an operation."""

    public_message = "Access denied."


class NotOwnerError(AuthorizationError):
    """Raised when a non-owner attempts to modify a file or membership."""

    public_message = "You do not have permission to modify this file."


class VaultAccessRevokedError(AuthorizationError):
    """Raised when vault access was revoked for a user or department."""

    public_message = "Vault access has been revoked."


class QuotaExceededError(AuthorizationError):
    """Raised when admitting a file would exceed the effective vault quota."""

    public_message = "Vault quota exceeded."

    def __init__(self, quota: int, usage: int, requested: int, team_id: Optional[str] = None):
        self.quota = quota
        self.usage = usage
        self.requested = requested
        self.team_id = team_id
        scope = f"Team {team_id} storage quota" if team_id else "Vault quota"
        super().__init__(
            f"{scope} exceeded: usage={usage} requested={requested} quota={quota}"
        )

    @property
    def remaining(self) -> int:
        return self.quota - self.usage


class TeamQuotaExceededError(QuotaExceededError):
    """Raised when an upload would exceed its team's storage quota."""

    public_message = "Team storage quota exceeded."


class InvalidSecretError(AuthorizationError):
    """Raised when a vault PIN does not match.

    The message is the same for every vault entry.
    """

    public_message = "Invalid vault PIN."

    def __init__(self, message: str = "Invalid vault PIN."):
        super().__init__(message)


# Not-found errors


class NotFoundError(DocVaultError):
    """Raised when a record does not exist."""

    public_message = "Not found."


class FileNotFoundInStoreError(NotFoundError):
    """Raised when a stored file is missing or deleted."""

    public_message = "File not found."

    def __init__(self, file_id: str = ""):
        message = f"File not found: {file_id}" if file_id else "File not found."
        super().__init__(message)


class MembershipNotFoundError(NotFoundError):
    """Raised when a vault membership is missing or not visible to the caller."""

    public_message = "Vault file not found."

    def __init__(self, message: str = "Vault file not found."):
        super().__init__(message)


class MembershipExpiredError(MembershipNotFoundError):
    """Raised when a membership is past its destruct deadline but not yet swept."""


class CapabilityError(NotFoundError):
    """Raised when an access capability is unknown, used, or expired."""

    public_message = "Access link is no longer valid."

    def __init__(self, message: str = "Access capability is invalid or expired."):
        super().__init__(message)
