"""Content digests for integrity verification.

Digests are SHA-256 over the plaintext, computed in a single streaming pass.
A digest mismatch and an unreadable stream are reported differently: the first
means the content was corrupted or tampered with, the second is an
infrastructure problem.
"""

import hashlib
import hmac
from pathlib import Path
from typing import BinaryIO, Iterable

from .exceptions import IntegrityReadError

DEFAULT_ALGORITHM = "sha256"

# Default chunk size for reading large files (8 MB)
DEFAULT_CHUNK_SIZE = 8 * 1024 * 1024


class IntegrityVerifier:
    """Computes and checks content digests."""

    def __init__(self, algorithm: str = DEFAULT_ALGORITHM, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.algorithm = algorithm
        self.chunk_size = chunk_size

    def new_hasher(self):
        """Return a fresh incremental hasher for callers that feed chunks themselves."""
        return hashlib.new(self.algorithm)

    def digest(self, stream: BinaryIO) -> str:
        """
        Calculate the digest of a binary stream.

        Args:
            stream: Binary file-like object

        Returns:
            Hexadecimal digest string

        Raises:
            IntegrityReadError: If the stream cannot be read
        """
        hasher = self.new_hasher()
        try:
            while chunk := stream.read(self.chunk_size):
                hasher.update(chunk)
        except OSError as e:
            raise IntegrityReadError(f"Cannot read stream for hashing: {e}") from e
        return hasher.hexdigest()

    def digest_chunks(self, chunks: Iterable[bytes]) -> str:
        """Calculate the digest of an iterable of byte chunks."""
        hasher = self.new_hasher()
        try:
            for chunk in chunks:
                hasher.update(chunk)
        except OSError as e:
            raise IntegrityReadError(f"Cannot read stream for hashing: {e}") from e
        return hasher.hexdigest()

    def digest_file(self, file_path: Path) -> str:
        """
        Calculate the digest of a file.

        Raises:
            IntegrityReadError: If the file is missing or unreadable
        """
        try:
            with open(file_path, "rb") as f:
                return self.digest(f)
        except OSError as e:
            raise IntegrityReadError(f"Cannot open {file_path}: {e}") from e

    @staticmethod
    def matches(actual_hex: str, expected_hex: str) -> bool:
        """Constant-time comparison of two hex digests (case-insensitive)."""
        return hmac.compare_digest(
            actual_hex.lower().encode("ascii", "replace"),
            expected_hex.lower().encode("ascii", "replace"),
        )

    def verify(self, stream: BinaryIO, expected_hex: str) -> bool:
        """
        Verify a stream matches an expected digest.

        Returns:
            True if the digest matches, False otherwise

        Raises:
            IntegrityReadError: If the stream cannot be read
        """
        return self.matches(self.digest(stream), expected_hex)

    def verify_chunks(self, chunks: Iterable[bytes], expected_hex: str) -> bool:
        """Verify an iterable of chunks against an expected digest."""
        return self.matches(self.digest_chunks(chunks), expected_hex)

    def verify_file(self, file_path: Path, expected_hex: str) -> bool:
        """Verify a file on disk against an expected digest."""
        return self.matches(self.digest_file(file_path), expected_hex)
