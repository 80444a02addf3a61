"""Streaming file encryption.

Uses the cryptography library for AES-256 in counter mode. Files are
transformed chunk by chunk so that large uploads never sit in memory.

Object format:
    [nonce (16 bytes)] [ciphertext (same length as plaintext)]
"""

import os
import threading
import uuid
from pathlib import Path
from typing import BinaryIO, Callable, Iterator, Optional

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .config import VaultConfig, get_vault_config
from .exceptions import CorruptObjectError, StorageIOError, TransferAbortedError
from .keys import KeyProvider

NONCE_SIZE = 16  # AES block size, required by CTR mode
KEY_SIZE = 32  # 256 bits for AES-256


def _check_cancel(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise TransferAbortedError()


class StreamCipher:
    """
    AES-256-CTR streaming cipher keyed by the process-wide file key.

    Each call to encrypt() draws a fresh random nonce, so encrypting the
    same plaintext twice produces different objects.
    """

    def __init__(self, keys: KeyProvider, config: Optional[VaultConfig] = None):
        """
        Initialize with a key provider.

        Args:
            keys: Provider of the 32-byte file key
            config: Vault configuration (uses global if not provided)
        """
        self._keys = keys
        self.config = config or get_vault_config()
        if self.config.nonce_size != NONCE_SIZE:
            raise ValueError(f"Nonce must be {NONCE_SIZE} bytes for AES-CTR")

    def _cipher(self, nonce: bytes) -> Cipher:
        key = self._keys.key
        if len(key) != KEY_SIZE:
            raise ValueError(f"Key must be {KEY_SIZE} bytes, got {len(key)}")
        if len(nonce) != NONCE_SIZE:
            raise CorruptObjectError(f"Nonce must be {NONCE_SIZE} bytes, got {len(nonce)}")
        return Cipher(algorithms.AES(key), modes.CTR(nonce))

    def encrypt(
        self,
        source: BinaryIO,
        dest: BinaryIO,
        on_chunk: Optional[Callable[[bytes], None]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> bytes:
        """
        Encrypt a plaintext stream into dest.

        Args:
            source: Readable binary stream with plaintext
            dest: Writable binary stream; receives nonce then ciphertext
            on_chunk: Called with every plaintext chunk (e.g. for hashing)
            cancel: Event that aborts the transfer when set

        Returns:
            The nonce used for this object

        Raises:
            StorageIOError: If reading or writing fails
            TransferAbortedError: If cancel is set mid-stream
        """
        nonce = os.urandom(NONCE_SIZE)
        encryptor = self._cipher(nonce).encryptor()

        try:
            dest.write(nonce)
            while True:
                _check_cancel(cancel)
                chunk = source.read(self.config.chunk_size)
                if not chunk:
                    break
                if on_chunk is not None:
                    on_chunk(chunk)
                dest.write(encryptor.update(chunk))
            dest.write(encryptor.finalize())
        except OSError as e:
            raise StorageIOError(f"Encryption stream failed: {e}") from e

        return nonce

    def _read_nonce(self, source: BinaryIO) -> bytes:
        try:
            nonce = source.read(NONCE_SIZE)
        except OSError as e:
            raise StorageIOError(f"Could not read encrypted object: {e}") from e
        if len(nonce) < NONCE_SIZE:
            raise CorruptObjectError(
                f"Encrypted object shorter than its {NONCE_SIZE}-byte nonce prefix"
            )
        return nonce

    def iter_decrypt(
        self,
        source: BinaryIO,
        cancel: Optional[threading.Event] = None,
    ) -> Iterator[bytes]:
        """
        Iterate over decrypted chunks of an encrypted stream.

        The nonce prefix is read eagerly, so a truncated object fails on the
        call itself rather than on first iteration.

        Raises:
            CorruptObjectError: If the nonce prefix is missing or truncated
            StorageIOError: If reading fails
        """
        nonce = self._read_nonce(source)
        decryptor = self._cipher(nonce).decryptor()
        return self._decrypt_chunks(source, decryptor, cancel)

    def _decrypt_chunks(self, source, decryptor, cancel) -> Iterator[bytes]:
        try:
            while True:
                _check_cancel(cancel)
                chunk = source.read(self.config.chunk_size)
                if not chunk:
                    break
                yield decryptor.update(chunk)
            tail = decryptor.finalize()
            if tail:
                yield tail
        except OSError as e:
            raise StorageIOError(f"Decryption stream failed: {e}") from e

    def decrypt(
        self,
        source: BinaryIO,
        dest: BinaryIO,
        cancel: Optional[threading.Event] = None,
    ) -> int:
        """
        Decrypt an encrypted stream into dest.

        Returns:
            Number of plaintext bytes written
        """
        written = 0
        try:
            for chunk in self.iter_decrypt(source, cancel):
                dest.write(chunk)
                written += len(chunk)
        except OSError as e:
            raise StorageIOError(f"Could not write decrypted output: {e}") from e
        return written

    def encrypt_file(
        self,
        input_path: Path,
        output_path: Path,
        on_chunk: Optional[Callable[[bytes], None]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> bytes:
        """
        Encrypt a file to disk.

        The output only appears once the whole object has been written;
        on any failure the partial file is removed.

        Returns:
            The nonce used for this object
        """
        try:
            with open(input_path, "rb") as infile:
                return write_atomic(
                    Path(output_path),
                    lambda outfile: self.encrypt(infile, outfile, on_chunk, cancel),
                )
        except OSError as e:
            raise StorageIOError(f"Cannot read {input_path}: {e}") from e

    def decrypt_file(
        self,
        input_path: Path,
        output_path: Path,
        cancel: Optional[threading.Event] = None,
    ) -> int:
        """
        Decrypt a file to disk.

        Returns:
            Number of plaintext bytes written
        """
        try:
            with open(input_path, "rb") as infile:
                return write_atomic(
                    Path(output_path),
                    lambda outfile: self.decrypt(infile, outfile, cancel),
                )
        except OSError as e:
            raise StorageIOError(f"Cannot read {input_path}: {e}") from e


def write_atomic(path: Path, writer: Callable[[BinaryIO], object]):
    """
    Run writer against a temporary sibling of path, then move it into place.

    Returns whatever writer returns. The temporary file is removed if the
    writer raises, including on TransferAbortedError.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.partial")

    try:
        with open(temp_path, "wb") as outfile:
            result = writer(outfile)
        os.replace(temp_path, path)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise

    return result
