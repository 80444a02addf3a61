"""Shared pytest fixtures for docvault tests."""

import io
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

MB = 1024 * 1024
GB = 1024 * MB

TEST_KEY = bytes(range(32))


class FakeClock:
    """Manually advanced clock returning aware datetimes."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    """Clock fixed at 2026-01-01 12:00 UTC."""
    return FakeClock()


@pytest.fixture
def vault_config():
    """Vault configuration with cheap argon2 parameters and small chunks."""
    from docvault.vault.config import VaultConfig

    return VaultConfig(
        chunk_size=1024,
        argon2_time_cost=1,
        argon2_memory_cost=8,
        argon2_parallelism=1,
        default_vault_quota=1 * GB,
    )


@pytest.fixture
def keys():
    """Key provider around a fixed test key."""
    from docvault.vault.keys import StaticKeyProvider

    return StaticKeyProvider(TEST_KEY)


@pytest.fixture
def cipher(keys, vault_config):
    from docvault.vault.crypto import StreamCipher

    return StreamCipher(keys, vault_config)


@pytest.fixture
def records(tmp_path: Path):
    """Empty record store in a temporary directory."""
    from docvault.vault.records import RecordStore

    store = RecordStore(tmp_path / "records")
    store.ensure_root()
    return store


@pytest.fixture
def activity_sink():
    """Sink that collects emitted activity events."""
    from docvault.vault.activity import MemoryActivitySink

    return MemoryActivitySink()


@pytest.fixture
def activity(activity_sink, clock):
    from docvault.vault.activity import ActivityLog

    return ActivityLog(activity_sink, clock=clock)


@pytest.fixture
def storage_config(tmp_path: Path):
    """Storage settings with a 1 MB upload limit."""
    from docvault.config.settings import StorageConfig

    return StorageConfig(
        storage_dir=tmp_path / "objects",
        records_dir=tmp_path / "records",
        max_file_size_mb=1,
    )


@pytest.fixture
def file_store(records, cipher, activity, storage_config, clock, ledger):
    """File store writing encrypted objects under tmp_path/objects."""
    from docvault.vault.file_store import FileStore

    return FileStore(
        records,
        cipher,
        storage_config.storage_dir,
        activity=activity,
        storage_config=storage_config,
        clock=clock,
        ledger=ledger,
    )


@pytest.fixture
def ledger(records, vault_config):
    from docvault.vault.quota import QuotaPolicy, RecordQuotaLedger

    return RecordQuotaLedger(records, QuotaPolicy(vault_config))


@pytest.fixture
def controller(records, file_store, ledger, activity, vault_config, clock):
    from docvault.vault.controller import VaultAccessController

    return VaultAccessController(records, file_store, ledger, activity, vault_config, clock)


@pytest.fixture
def sweeper(file_store, controller, clock):
    from docvault.vault.sweeper import ExpirationSweeper

    return ExpirationSweeper(file_store, controller, interval_seconds=3600, clock=clock)


@pytest.fixture
def owner():
    """The principal who owns the test files."""
    from docvault.vault.models import Principal

    return Principal(user_id="alice")


@pytest.fixture
def stranger():
    """A principal who owns nothing."""
    from docvault.vault.models import Principal

    return Principal(user_id="mallory")


@pytest.fixture
def sample_content() -> bytes:
    """A few KB of non-repeating content spanning several chunks."""
    return b"".join(f"line {i:05d} of the quarterly report\n".encode() for i in range(200))


@pytest.fixture
def uploaded_file(file_store, owner, sample_content):
    """A file uploaded by the owner."""
    return file_store.upload(io.BytesIO(sample_content), owner, "report.txt", "text/plain")


@pytest.fixture
def seed_file(records, clock):
    """
    Factory writing file metadata directly, without an encrypted object.

    Lets quota tests use large sizes without writing large files.
    """
    import uuid

    from docvault.vault.models import StoredFile

    def _seed(owner_id: str, size: int) -> StoredFile:
        stored = StoredFile(
            id=uuid.uuid4().hex,
            owner_id=owner_id,
            original_name="big.bin",
            stored_name=f"{uuid.uuid4().hex}.bin.enc",
            size=size,
            content_type="application/octet-stream",
            nonce="00" * 16,
            digest="0" * 64,
            uploaded_at=clock(),
        )
        records.put("files", stored.id, stored.to_dict())
        return stored

    return _seed
