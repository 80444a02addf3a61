"""Wiring of the storage and vault components."""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from ..config.settings import Settings, get_settings
from .activity import ActivityLog, ActivitySink
from .config import VaultConfig, get_vault_config
from .controller import VaultAccessController
from .crypto import StreamCipher
from .file_store import FileStore
from .integrity import IntegrityVerifier
from .keys import KeyProvider, ScryptKeyProvider
from .models import utcnow
from .quota import QuotaPolicy, RecordQuotaLedger
from .records import RecordStore
from .sweeper import ExpirationSweeper


@dataclass
class VaultServices:
    """Everything a caller needs to store files and run the vault."""

    records: RecordStore
    files: FileStore
    ledger: RecordQuotaLedger
    controller: VaultAccessController
    sweeper: ExpirationSweeper
    activity: ActivityLog


def build_services(
    settings: Optional[Settings] = None,
    keys: Optional[KeyProvider] = None,
    config: Optional[VaultConfig] = None,
    sink: Optional[ActivitySink] = None,
    clock: Callable[[], datetime] = utcnow,
) -> VaultServices:
    """
    Assemble the services from settings.

    Args:
        settings: Paths and limits (uses global if not provided)
        keys: File key provider (derived from DOCVAULT_SECRET if not provided)
        config: Vault configuration (uses global if not provided)
        sink: Activity sink (logs events if not provided)
        clock: Returns the current aware datetime

    Raises:
        ConfigurationError: If no key provider is given and the secret is unset
    """
    settings = settings or get_settings()
    config = config or get_vault_config()
    keys = keys or ScryptKeyProvider.from_env(config=config)

    records = RecordStore(settings.storage.records_dir)
    records.ensure_root()
    settings.storage.storage_dir.mkdir(parents=True, exist_ok=True)

    activity = ActivityLog(sink, clock=clock)
    ledger = RecordQuotaLedger(records, QuotaPolicy(config))
    files = FileStore(
        records,
        StreamCipher(keys, config),
        settings.storage.storage_dir,
        verifier=IntegrityVerifier(),
        activity=activity,
        storage_config=settings.storage,
        clock=clock,
        ledger=ledger,
    )
    controller = VaultAccessController(records, files, ledger, activity, config, clock)
    sweeper = ExpirationSweeper(
        files,
        controller,
        interval_seconds=settings.sweep.interval_seconds,
        clock=clock,
    )

    return VaultServices(
        records=records,
        files=files,
        ledger=ledger,
        controller=controller,
        sweeper=sweeper,
        activity=activity,
    )
