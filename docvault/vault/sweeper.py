"""Background expiration sweeper.

Each sweep runs three passes, in order:

1. files past expires_at are deleted with their bytes, and any vault
   membership on them is closed;
2. vault memberships past their self-destruct deadline are expired;
3. memberships whose file is deleted or missing are closed.

Capabilities that expired without being redeemed are forgotten as well.

A failure on one item is logged and recorded in the report; the sweep moves on
to the next item.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from ..utils.logging import get_logger
from .controller import VaultAccessController
from .file_store import FileStore
from .models import utcnow

logger = get_logger(__name__)

DEFAULT_INTERVAL_SECONDS = 24 * 3600


@dataclass
class SweepReport:
    """Outcome of one sweep."""

    files_expired: int = 0
    memberships_expired: int = 0
    orphans_removed: int = 0
    capabilities_pruned: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        """Files and vault entries removed."""
        return self.files_expired + self.memberships_expired + self.orphans_removed


class ExpirationSweeper:
    """
    Periodically deletes expired files and self-destructing vault entries.

    Runs in a daemon thread once started; run_once() performs a single
    synchronous sweep.
    """

    def __init__(
        self,
        files: FileStore,
        controller: VaultAccessController,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
        on_sweep: Optional[Callable[[SweepReport], None]] = None,
    ) -> None:
        """
        Initialize the sweeper.

        Args:
            files: File store to sweep
            controller: Vault controller owning the memberships
            interval_seconds: Seconds between sweeps
            clock: Returns the current aware datetime
            on_sweep: Callback with the report after every background sweep
        """
        self.files = files
        self.controller = controller
        self.interval_seconds = interval_seconds
        self.clock = clock
        self.on_sweep = on_sweep

        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._sweep_lock = threading.Lock()

    def run_once(self) -> SweepReport:
        """Run one full sweep and return what it did."""
        with self._sweep_lock:
            report = SweepReport()
            now = self.clock()

            self._expire_files(now, report)
            self._expire_memberships(now, report)
            self._remove_orphans(report)
            report.capabilities_pruned = self.controller.prune_capabilities(now)

        if report.total or report.errors:
            logger.info(
                f"Sweep: {report.files_expired} files expired, "
                f"{report.memberships_expired} vault entries expired, "
                f"{report.orphans_removed} orphans removed, {len(report.errors)} errors"
            )
        return report

    def _expire_files(self, now: datetime, report: SweepReport) -> None:
        for file in self.files.load_all():
            if file.is_deleted or not file.is_expired(now):
                continue
            try:
                self.files.expire(file)
                membership = self.controller.membership_for_file(file.id)
                if membership is not None:
                    self.controller.drop_membership(membership)
                report.files_expired += 1
            except Exception as e:
                logger.error(f"Failed to expire file {file.id}: {e}")
                report.errors.append(f"file {file.id}: {e}")

    def _expire_memberships(self, now: datetime, report: SweepReport) -> None:
        for membership in self.controller.due_for_destruction(now):
            try:
                if self.controller.expire(membership):
                    report.memberships_expired += 1
            except Exception as e:
                logger.error(f"Failed to expire vault entry {membership.id}: {e}")
                report.errors.append(f"vault {membership.id}: {e}")

    def _remove_orphans(self, report: SweepReport) -> None:
        for membership in self.controller.list_memberships():
            try:
                file = self.files.get(membership.file_id)
                if file is not None and not file.is_deleted:
                    continue
                if self.controller.drop_membership(membership):
                    logger.info(f"Removed orphaned vault entry {membership.id}")
                    report.orphans_removed += 1
            except Exception as e:
                logger.error(f"Failed to remove orphaned vault entry {membership.id}: {e}")
                report.errors.append(f"orphan {membership.id}: {e}")

    def start(self) -> None:
        """Start sweeping in a background thread (first sweep runs immediately)."""
        if self._thread is not None and self._thread.is_alive():
            logger.warning("Sweeper already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._sweep_loop,
            name="docvault-sweeper",
            daemon=True,
        )
        self._thread.start()
        logger.info(f"Started expiration sweeper (every {self.interval_seconds:.0f}s)")

    def stop(self, timeout: Optional[float] = 10.0) -> None:
        """Stop the sweeper and wait for the current sweep to finish."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("Stopped expiration sweeper")

    def is_running(self) -> bool:
        """Check if the sweeper thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until stop() is called. Returns True if stopped."""
        return self._stop_event.wait(timeout)

    def _sweep_loop(self) -> None:
        """Main loop running in the background thread."""
        while not self._stop_event.is_set():
            try:
                report = self.run_once()
                if self.on_sweep is not None:
                    self.on_sweep(report)
            except Exception as e:
                logger.error(f"Error in sweeper loop: {e}")

            self._stop_event.wait(self.interval_seconds)

    def __enter__(self) -> "ExpirationSweeper":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()
