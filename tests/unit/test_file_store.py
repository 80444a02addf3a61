"""Unit tests for the encrypted file store."""

import hashlib
import io
import threading
from datetime import timedelta
from pathlib import Path

import pytest


class TestUpload:
    """Tests for the upload pipeline."""

    def test_upload_records_metadata(self, uploaded_file, sample_content, owner, clock):
        assert uploaded_file.owner_id == owner.user_id
        assert uploaded_file.original_name == "report.txt"
        assert uploaded_file.content_type == "text/plain"
        assert uploaded_file.size == len(sample_content)
        assert uploaded_file.digest == hashlib.sha256(sample_content).hexdigest()
        assert len(bytes.fromhex(uploaded_file.nonce)) == 16
        assert uploaded_file.uploaded_at == clock.now
        assert uploaded_file.expires_at is None
        assert not uploaded_file.is_deleted

    def test_object_encrypted_at_rest(self, file_store, uploaded_file, sample_content):
        """The object on disk is nonce + ciphertext, never the plaintext."""
        data = file_store.object_path(uploaded_file).read_bytes()

        assert data[:16].hex() == uploaded_file.nonce
        assert len(data) == 16 + len(sample_content)
        assert b"quarterly report" not in data

    def test_stored_name_keeps_suffix(self, uploaded_file):
        assert uploaded_file.stored_name.endswith(".txt.enc")
        assert "report" not in uploaded_file.stored_name

    def test_record_persisted(self, file_store, uploaded_file):
        assert file_store.get(uploaded_file.id) == uploaded_file

    def test_too_large_commits_nothing(self, file_store, owner, records):
        """Exceeding the 1 MB limit leaves no object and no record."""
        from docvault.vault.exceptions import FileTooLargeError

        with pytest.raises(FileTooLargeError):
            file_store.upload(io.BytesIO(b"x" * (1024 * 1024 + 1)), owner, "big.bin")

        assert list(file_store.storage_dir.iterdir()) == []
        assert records.load_all("files") == []

    def test_cancelled_upload_commits_nothing(self, file_store, owner, records, sample_content):
        from docvault.vault.exceptions import TransferAbortedError

        cancel = threading.Event()
        cancel.set()

        with pytest.raises(TransferAbortedError):
            file_store.upload(io.BytesIO(sample_content), owner, "report.txt", cancel=cancel)

        assert list(file_store.storage_dir.iterdir()) == []
        assert records.load_all("files") == []

    def test_failed_commit_removes_object(self, file_store, owner, records, sample_content, monkeypatch):
        from docvault.vault.exceptions import StorageIOError

        def fail(*args, **kwargs):
            raise StorageIOError("records offline")

        monkeypatch.setattr(records, "put", fail)

        with pytest.raises(StorageIOError):
            file_store.upload(io.BytesIO(sample_content), owner, "report.txt")

        assert list(file_store.storage_dir.iterdir()) == []

    def test_expiry_must_be_future(self, file_store, owner, clock):
        from docvault.vault.exceptions import ValidationError

        with pytest.raises(ValidationError):
            file_store.upload(io.BytesIO(b"data"), owner, "a.txt", expires_at=clock.now)

    def test_expiry_recorded(self, file_store, owner, clock):
        expires = clock.now + timedelta(days=3)
        stored = file_store.upload(io.BytesIO(b"data"), owner, "a.txt", expires_at=expires)

        assert file_store.get(stored.id).expires_at == expires

    def test_default_expiry(self, file_store, owner, clock):
        file_store.storage_config.default_expiry_days = 7
        stored = file_store.upload(io.BytesIO(b"data"), owner, "a.txt")

        assert stored.expires_at == clock.now + timedelta(days=7)

    def test_upload_emits_activity(self, uploaded_file, activity_sink):
        from docvault.vault.models import ActivityAction

        assert activity_sink.actions() == [ActivityAction.UPLOAD]
        assert activity_sink.events[0].file_id == uploaded_file.id


class TestDownload:
    """Tests for reading files back."""

    def test_download_roundtrip(self, file_store, uploaded_file, owner, tmp_path: Path, sample_content):
        dest = tmp_path / "downloads" / "report.txt"
        file_store.download(uploaded_file.id, owner, dest)

        assert dest.read_bytes() == sample_content

    def test_download_by_other_user(self, file_store, uploaded_file, stranger, tmp_path: Path):
        """Foreign files look missing."""
        from docvault.vault.exceptions import FileNotFoundInStoreError

        with pytest.raises(FileNotFoundInStoreError):
            file_store.download(uploaded_file.id, stranger, tmp_path / "x")

    def test_iter_plaintext_closed_early(self, file_store, uploaded_file, sample_content):
        """Closing the generator early releases the object."""
        chunks = file_store.iter_plaintext(uploaded_file)
        first = next(chunks)
        chunks.close()

        assert sample_content.startswith(first)

    def test_verified_download(self, file_store, uploaded_file, owner, tmp_path: Path, sample_content):
        dest = tmp_path / "checked.txt"
        file_store.download(uploaded_file.id, owner, dest, verify=True)

        assert dest.read_bytes() == sample_content

    def test_verified_download_tampered(self, file_store, uploaded_file, owner, tmp_path: Path):
        """A mismatch discards the output instead of handing out bad bytes."""
        from docvault.vault.exceptions import IntegrityMismatchError

        path = file_store.object_path(uploaded_file)
        data = bytearray(path.read_bytes())
        data[-1] ^= 0x01
        path.write_bytes(bytes(data))

        with pytest.raises(IntegrityMismatchError):
            file_store.download(uploaded_file.id, owner, tmp_path / "checked.txt", verify=True)
        assert not (tmp_path / "checked.txt").exists()

    def test_missing_object(self, file_store, uploaded_file, owner, tmp_path: Path):
        from docvault.vault.exceptions import StorageIOError

        file_store.object_path(uploaded_file).unlink()

        with pytest.raises(StorageIOError):
            file_store.download(uploaded_file.id, owner, tmp_path / "x")
        assert not (tmp_path / "x").exists()


class TestVerify:
    """Tests for integrity verification of stored files."""

    def test_verify_intact(self, file_store, uploaded_file, owner):
        assert file_store.verify(uploaded_file.id, owner)

    def test_verify_tampered(self, file_store, uploaded_file, owner):
        """One flipped ciphertext bit is detected."""
        path = file_store.object_path(uploaded_file)
        data = bytearray(path.read_bytes())
        data[100] ^= 0x80
        path.write_bytes(bytes(data))

        assert not file_store.verify(uploaded_file.id, owner)

    def test_verify_truncated(self, file_store, uploaded_file, owner):
        path = file_store.object_path(uploaded_file)
        path.write_bytes(path.read_bytes()[:-10])

        assert not file_store.verify(uploaded_file.id, owner)

    def test_verify_unreadable_is_error(self, file_store, uploaded_file, owner):
        """A missing object is an I/O problem, not a mismatch."""
        from docvault.vault.exceptions import IntegrityReadError

        file_store.object_path(uploaded_file).unlink()

        with pytest.raises(IntegrityReadError):
            file_store.verify(uploaded_file.id, owner)


class TestDelete:
    """Tests for owner deletion."""

    def test_soft_delete(self, file_store, uploaded_file, owner):
        from docvault.vault.exceptions import FileNotFoundInStoreError

        file_store.delete(uploaded_file.id, owner)

        assert file_store.get(uploaded_file.id).is_deleted
        assert file_store.object_path(uploaded_file).exists()
        with pytest.raises(FileNotFoundInStoreError):
            file_store.require(uploaded_file.id, owner)

    def test_delete_twice(self, file_store, uploaded_file, owner):
        from docvault.vault.exceptions import FileNotFoundInStoreError

        file_store.delete(uploaded_file.id, owner)
        with pytest.raises(FileNotFoundInStoreError):
            file_store.delete(uploaded_file.id, owner)

    def test_delete_by_other_user(self, file_store, uploaded_file, stranger):
        from docvault.vault.exceptions import NotOwnerError

        with pytest.raises(NotOwnerError):
            file_store.delete(uploaded_file.id, stranger)
        assert not file_store.get(uploaded_file.id).is_deleted

    def test_mark_deleted_removes_bytes(self, file_store, uploaded_file):
        file_store.mark_deleted(uploaded_file)

        assert not file_store.object_path(uploaded_file).exists()
        # Missing object tolerated
        file_store.mark_deleted(uploaded_file)

    def test_unremovable_object_keeps_record_live(self, file_store, uploaded_file, monkeypatch):
        """If the bytes cannot be removed the record is not flagged deleted."""
        from docvault.vault.exceptions import StorageIOError

        target = file_store.object_path(uploaded_file)
        original_unlink = Path.unlink

        def unlink(self, missing_ok=False):
            if self == target:
                raise PermissionError(13, "Permission denied", str(self))
            return original_unlink(self, missing_ok=missing_ok)

        monkeypatch.setattr(Path, "unlink", unlink)

        with pytest.raises(StorageIOError):
            file_store.mark_deleted(uploaded_file)

        assert not file_store.get(uploaded_file.id).is_deleted
        assert target.exists()


class TestListFiles:
    """Tests for listing."""

    def test_list_own_files(self, file_store, owner, stranger, clock):
        first = file_store.upload(io.BytesIO(b"1"), owner, "one.txt")
        clock.advance(minutes=1)
        second = file_store.upload(io.BytesIO(b"2"), owner, "two.txt")
        file_store.upload(io.BytesIO(b"3"), stranger, "theirs.txt")

        assert [f.id for f in file_store.list_files(owner.user_id)] == [first.id, second.id]

    def test_list_hides_deleted(self, file_store, uploaded_file, owner):
        file_store.delete(uploaded_file.id, owner)

        assert file_store.list_files(owner.user_id) == []
        assert len(file_store.list_files(owner.user_id, include_deleted=True)) == 1


class TestTeamStorage:
    """Tests for the team storage budget."""

    def test_team_upload_counted(self, file_store, ledger, owner, sample_content):
        stored = file_store.upload(io.BytesIO(sample_content), owner, "brief.txt", team_id="legal")

        assert stored.team_id == "legal"
        assert ledger.team_usage("legal") == len(sample_content)

    def test_personal_upload_not_counted(self, ledger, uploaded_file):
        assert ledger.team_usage("legal") == 0

    def test_over_team_quota_commits_nothing(self, file_store, ledger, vault_config, owner, records):
        """100-byte team quota with 60 bytes used: a 50-byte upload is rejected."""
        from docvault.vault.exceptions import QuotaExceededError, TeamQuotaExceededError

        vault_config.team_quotas["legal"] = 100
        first = file_store.upload(io.BytesIO(b"a" * 60), owner, "one.txt", team_id="legal")

        with pytest.raises(TeamQuotaExceededError) as exc_info:
            file_store.upload(io.BytesIO(b"b" * 50), owner, "two.txt", team_id="legal")

        assert isinstance(exc_info.value, QuotaExceededError)
        assert exc_info.value.team_id == "legal"
        assert ledger.team_usage("legal") == 60
        assert [f.id for f in file_store.load_all()] == [first.id]
        assert list(file_store.storage_dir.iterdir()) == [file_store.object_path(first)]

    def test_failed_commit_releases_team_usage(self, file_store, ledger, owner, records, monkeypatch):
        from docvault.vault.exceptions import StorageIOError

        original_put = records.put

        def put(collection, key, data):
            if collection == "files":
                raise StorageIOError("records offline")
            return original_put(collection, key, data)

        monkeypatch.setattr(records, "put", put)

        with pytest.raises(StorageIOError):
            file_store.upload(io.BytesIO(b"data"), owner, "a.txt", team_id="legal")

        assert ledger.team_usage("legal") == 0
        assert list(file_store.storage_dir.iterdir()) == []

    def test_delete_releases_team_usage(self, file_store, ledger, owner):
        stored = file_store.upload(io.BytesIO(b"x" * 40), owner, "a.txt", team_id="legal")

        file_store.delete(stored.id, owner)

        assert ledger.team_usage("legal") == 0

    def test_released_once(self, file_store, ledger, owner):
        """Deleting an already deleted file does not release twice."""
        keep = file_store.upload(io.BytesIO(b"k" * 30), owner, "keep.txt", team_id="legal")
        gone = file_store.upload(io.BytesIO(b"g" * 40), owner, "gone.txt", team_id="legal")

        file_store.delete(gone.id, owner)
        file_store.mark_deleted(file_store.get(gone.id))

        assert ledger.team_usage("legal") == keep.size

    def test_expire_releases_team_usage(self, file_store, ledger, owner, clock):
        stored = file_store.upload(
            io.BytesIO(b"x" * 40), owner, "a.txt",
            team_id="legal",
            expires_at=clock.now + timedelta(days=1),
        )

        file_store.expire(stored)

        assert ledger.team_usage("legal") == 0
        assert not file_store.object_path(stored).exists()
