"""Encrypted file storage.

Uploads are encrypted and hashed in a single pass. The encrypted object is
written to a temporary sibling and moved into place, and the metadata record is
committed only once the object is complete. A failed commit removes the object
again, so a reader never sees a record without bytes.

Layout:
    storage_dir/<stored_name>          encrypted object
    records_dir/files/<file_id>.yaml   StoredFile metadata
"""

import threading
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import BinaryIO, Callable, Iterator, Optional

from ..config.settings import StorageConfig
from ..utils.logging import get_logger
from .activity import ActivityLog
from .crypto import StreamCipher, write_atomic
from .exceptions import (
    FileNotFoundInStoreError,
    FileTooLargeError,
    IntegrityMismatchError,
    IntegrityReadError,
    NotOwnerError,
    StorageIOError,
    ValidationError,
)
from .integrity import IntegrityVerifier
from .models import ActivityAction, Principal, StoredFile, utcnow
from .quota import QuotaLedger
from .records import RecordStore

logger = get_logger(__name__)

FILES_COLLECTION = "files"


class FileStore:
    """Upload, download, verify and delete encrypted files."""

    def __init__(
        self,
        store: RecordStore,
        cipher: StreamCipher,
        storage_dir: Path,
        verifier: Optional[IntegrityVerifier] = None,
        activity: Optional[ActivityLog] = None,
        storage_config: Optional[StorageConfig] = None,
        clock: Callable[[], datetime] = utcnow,
        ledger: Optional[QuotaLedger] = None,
    ):
        """
        Initialize the file store.

        Args:
            store: Metadata record store
            cipher: Stream cipher keyed with the file key
            storage_dir: Directory holding encrypted objects
            verifier: Digest calculator (SHA-256 by default)
            activity: Activity event emitter
            storage_config: Size limit and default expiry
            clock: Returns the current aware datetime
            ledger: Team storage budget; team uploads are not counted without one
        """
        self.store = store
        self.cipher = cipher
        self.storage_dir = Path(storage_dir)
        self.verifier = verifier or IntegrityVerifier()
        self.activity = activity or ActivityLog(clock=clock)
        self.storage_config = storage_config or StorageConfig()
        self.clock = clock
        self.ledger = ledger

    def object_path(self, file: StoredFile) -> Path:
        """Path of the encrypted object for a file."""
        return self.storage_dir / file.stored_name

    def _stored_name(self, original_name: str) -> str:
        suffix = Path(original_name).suffix.lower()
        if not suffix[1:].isalnum():
            suffix = ""
        return f"{uuid.uuid4().hex}{suffix}{self.cipher.config.encrypted_extension}"

    def _resolve_expiry(self, expires_at: Optional[datetime], now: datetime) -> Optional[datetime]:
        if expires_at is not None:
            if expires_at.tzinfo is None:
                raise ValidationError("expires_at must be timezone-aware")
            if expires_at <= now:
                raise ValidationError("expires_at must be in the future")
            return expires_at

        days = self.storage_config.default_expiry_days
        if days:
            return now + timedelta(days=days)
        return None

    def upload(
        self,
        source: BinaryIO,
        owner: Principal,
        original_name: str,
        content_type: str = "application/octet-stream",
        team_id: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        cancel: Optional[threading.Event] = None,
    ) -> StoredFile:
        """
        Encrypt and store an uploaded file.

        Args:
            source: Readable binary stream with the plaintext
            owner: Uploading principal
            original_name: Client-supplied file name
            content_type: MIME type
            team_id: Optional team the file is shared with
            expires_at: Optional future expiry
            cancel: Event that aborts the upload when set

        Returns:
            The committed StoredFile

        Raises:
            ValidationError: If expires_at is not in the future
            FileTooLargeError: If the stream exceeds the size limit
            TeamQuotaExceededError: If the file does not fit its team's quota
            TransferAbortedError: If cancelled; nothing is committed
            StorageIOError: If the object or record cannot be written
        """
        now = self.clock()
        expires_at = self._resolve_expiry(expires_at, now)

        file_id = uuid.uuid4().hex
        stored_name = self._stored_name(original_name)
        object_path = self.storage_dir / stored_name

        hasher = self.verifier.new_hasher()
        limit = self.storage_config.max_file_size
        size = 0

        def on_chunk(chunk: bytes) -> None:
            nonlocal size
            size += len(chunk)
            if limit > 0 and size > limit:
                raise FileTooLargeError(
                    f"Upload exceeds {self.storage_config.max_file_size_mb} MB limit"
                )
            hasher.update(chunk)

        nonce = write_atomic(
            object_path,
            lambda dest: self.cipher.encrypt(source, dest, on_chunk=on_chunk, cancel=cancel),
        )

        stored = StoredFile(
            id=file_id,
            owner_id=owner.user_id,
            team_id=team_id,
            original_name=Path(original_name).name,
            stored_name=stored_name,
            size=size,
            content_type=content_type,
            nonce=nonce.hex(),
            digest=hasher.hexdigest(),
            uploaded_at=now,
            expires_at=expires_at,
        )

        try:
            self._commit(stored)
        except BaseException:
            object_path.unlink(missing_ok=True)
            raise

        logger.info(f"Stored file {file_id} ({size} bytes) for user {owner.user_id}")
        self.activity.emit(ActivityAction.UPLOAD, owner.user_id, file_id, stored.original_name)
        return stored

    def _commit(self, stored: StoredFile) -> None:
        """Count a team file against its budget, then write the record."""
        counted = stored.team_id is not None and self.ledger is not None
        if counted:
            self.ledger.reserve_team(stored.team_id, stored.size)
        try:
            self.store.put(FILES_COLLECTION, stored.id, stored.to_dict())
        except BaseException:
            if counted:
                self.ledger.release_team(stored.team_id, stored.size)
            raise

    def get(self, file_id: str) -> Optional[StoredFile]:
        """Load file metadata, or None if unknown."""
        try:
            data = self.store.get(FILES_COLLECTION, file_id)
        except ValueError:
            return None
        return StoredFile.from_dict(data) if data else None

    def require(self, file_id: str, caller: Principal) -> StoredFile:
        """
        Load a live file visible to the caller.

        Deleted files and files owned by someone else are reported as
        missing so that other users cannot tell which ids exist.

        Raises:
            FileNotFoundInStoreError: If missing, deleted or not visible
        """
        file = self.get(file_id)
        if file is None or file.is_deleted or file.owner_id != caller.user_id:
            raise FileNotFoundInStoreError(file_id)
        return file

    def iter_plaintext(
        self,
        file: StoredFile,
        cancel: Optional[threading.Event] = None,
    ) -> Iterator[bytes]:
        """
        Stream the decrypted content of a file.

        The object is closed when the generator finishes or is closed early.
        """
        path = self.object_path(file)
        try:
            handle = open(path, "rb")
        except OSError as e:
            raise StorageIOError(f"Cannot open object for file {file.id}: {e}") from e

        with handle:
            yield from self.cipher.iter_decrypt(handle, cancel)

    def download(
        self,
        file_id: str,
        caller: Principal,
        dest: Path,
        cancel: Optional[threading.Event] = None,
        verify: bool = False,
    ) -> StoredFile:
        """
        Decrypt a file to dest.

        Args:
            file_id: File to download
            caller: Requesting principal
            dest: Output path; only appears once fully written
            cancel: Event that aborts the download when set
            verify: Check the digest while decrypting

        Returns:
            The downloaded StoredFile

        Raises:
            IntegrityMismatchError: If verify is set and the content does not match
        """
        file = self.require(file_id, caller)
        write_atomic(Path(dest), lambda out: self._write_plaintext(file, out, cancel, verify))
        self.activity.emit(ActivityAction.DOWNLOAD, caller.user_id, file.id)
        return file

    def _write_plaintext(self, file: StoredFile, out: BinaryIO, cancel, verify: bool) -> int:
        hasher = self.verifier.new_hasher()
        written = 0
        for chunk in self.iter_plaintext(file, cancel):
            out.write(chunk)
            hasher.update(chunk)
            written += len(chunk)

        if verify and not self.verifier.matches(hasher.hexdigest(), file.digest):
            logger.warning(f"Integrity mismatch for file {file.id} during download")
            raise IntegrityMismatchError(f"File {file.id} does not match its recorded digest")
        return written

    def verify(self, file_id: str, caller: Principal) -> bool:
        """
        Check a stored file against the digest recorded at upload.

        Returns:
            True if the decrypted content matches, False if it does not

        Raises:
            IntegrityReadError: If the object cannot be read
        """
        file = self.require(file_id, caller)
        try:
            matches = self.verifier.verify_chunks(self.iter_plaintext(file), file.digest)
        except StorageIOError as e:
            if isinstance(e, IntegrityReadError):
                raise
            raise IntegrityReadError(str(e)) from e

        if not matches:
            logger.warning(f"Integrity mismatch for file {file.id}")
        return matches

    def delete(self, file_id: str, caller: Principal) -> StoredFile:
        """
        Soft-delete a file owned by the caller.

        The encrypted object stays on disk; the sweeper reconciles any vault
        membership that pointed at it.

        Raises:
            FileNotFoundInStoreError: If missing or already deleted
            NotOwnerError: If the caller does not own the file
        """
        file = self.get(file_id)
        if file is None or file.is_deleted:
            raise FileNotFoundInStoreError(file_id)
        if file.owner_id != caller.user_id:
            raise NotOwnerError(f"User {caller.user_id} does not own file {file_id}")

        file = self.mark_deleted(file, remove_object=False)
        self.activity.emit(ActivityAction.DELETE, caller.user_id, file.id)
        return file

    def mark_deleted(self, file: StoredFile, remove_object: bool = True) -> StoredFile:
        """
        Flip is_deleted on a file and optionally remove its bytes.

        The bytes go first: if they cannot be removed the record stays live, so
        the next sweep tries again. A missing object is tolerated. A team file
        hands its bytes back to the team budget the first time it is deleted.

        Raises:
            StorageIOError: If the object exists but cannot be removed
        """
        if remove_object:
            try:
                self.object_path(file).unlink(missing_ok=True)
            except OSError as e:
                raise StorageIOError(f"Cannot remove object for file {file.id}: {e}") from e

        was_live = False

        def flip(data: dict) -> dict:
            nonlocal was_live
            was_live = not data.get("is_deleted", False)
            data["is_deleted"] = True
            return data

        self.store.update(FILES_COLLECTION, file.id, flip)
        file.is_deleted = True

        if was_live and file.team_id and self.ledger is not None:
            self.ledger.release_team(file.team_id, file.size)

        return file

    def expire(self, file: StoredFile) -> StoredFile:
        """Delete a file whose lifetime has passed, bytes included."""
        file = self.mark_deleted(file, remove_object=True)
        logger.info(f"File {file.id} expired")
        self.activity.emit(ActivityAction.FILE_EXPIRED, file.owner_id, file.id)
        return file

    def list_files(self, owner_id: str, include_deleted: bool = False) -> list[StoredFile]:
        """List files owned by a user, oldest first."""
        files = [
            f for f in self.load_all()
            if f.owner_id == owner_id and (include_deleted or not f.is_deleted)
        ]
        return sorted(files, key=lambda f: f.uploaded_at)

    def load_all(self) -> list[StoredFile]:
        """Load every file record."""
        return [StoredFile.from_dict(data) for data in self.store.load_all(FILES_COLLECTION)]
