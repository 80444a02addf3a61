"""Key derivation for file encryption.

A single symmetric key is derived from the long-lived root secret with scrypt
and shared read-only by every cipher in the process. The salt is a fixed
constant: the root secret is the entropy source, and the same secret must
always produce the same key so that existing objects stay readable.
"""

import os
import threading
from typing import Optional, Protocol, Union

from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from ..utils.logging import get_logger
from .config import VaultConfig, get_vault_config
from .exceptions import ConfigurationError

logger = get_logger(__name__)

SECRET_ENV_VAR = "DOCVAULT_SECRET"
KDF_SALT = b"docvault.file-key.v1"


class KeyProvider(Protocol):
    """Anything that can hand out the process-wide file key."""

    @property
    def key(self) -> bytes:
        ...


class KeyDerivation:
    """Derives the file encryption key from the root secret using scrypt."""

    @staticmethod
    def derive_key(
        secret: Union[str, bytes],
        n: int = 2**14,
        r: int = 8,
        p: int = 1,
        length: int = 32,
    ) -> bytes:
        """
        Derive a 256-bit key from the root secret.

        Args:
            secret: Root secret (str is UTF-8 encoded)
            n: scrypt CPU/memory cost
            r: scrypt block size
            p: scrypt parallelism
            length: Key length in bytes

        Returns:
            Derived key
        """
        if isinstance(secret, str):
            secret = secret.encode("utf-8")
        if not secret:
            raise ConfigurationError("Root secret must not be empty")

        kdf = Scrypt(salt=KDF_SALT, length=length, n=n, r=r, p=p)
        return kdf.derive(secret)


class ScryptKeyProvider:
    """
    Lazily derives and caches the file key.

    Derivation happens at most once per instance, guarded by a lock so that
    concurrent first requests do not run scrypt twice.
    """

    def __init__(self, secret: Union[str, bytes], config: Optional[VaultConfig] = None):
        if not secret:
            raise ConfigurationError(f"{SECRET_ENV_VAR} is not set")
        self._secret = secret
        self._config = config or get_vault_config()
        self._key: Optional[bytes] = None
        self._lock = threading.Lock()

    @classmethod
    def from_env(
        cls,
        var: str = SECRET_ENV_VAR,
        config: Optional[VaultConfig] = None,
    ) -> "ScryptKeyProvider":
        """
        Build a provider from the environment.

        Raises:
            ConfigurationError: If the variable is missing or empty
        """
        secret = os.getenv(var)
        if not secret:
            raise ConfigurationError(f"{var} is not set")
        return cls(secret, config)

    @property
    def key(self) -> bytes:
        if self._key is None:
            with self._lock:
                if self._key is None:
                    self._key = KeyDerivation.derive_key(
                        self._secret,
                        n=self._config.scrypt_n,
                        r=self._config.scrypt_r,
                        p=self._config.scrypt_p,
                        length=self._config.key_size,
                    )
                    logger.debug("Derived file encryption key")
        return self._key

    def __repr__(self) -> str:
        return f"ScryptKeyProvider(derived={self._key is not None})"


class StaticKeyProvider:
    """Provider around an already-known key (tests and tooling)."""

    def __init__(self, key: bytes):
        if len(key) != 32:
            raise ValueError(f"Key must be 32 bytes, got {len(key)}")
        self._key = bytes(key)

    @property
    def key(self) -> bytes:
        return self._key

    def __repr__(self) -> str:
        return "StaticKeyProvider()"
