"""PIN-gated vault access.

A StoredFile can be promoted into the vault by its owner. A vault membership
moves through NONE -> ACTIVE -> (REMOVED | EXPIRED) and is never resurrected;
re-promoting a file creates a new membership.

Reading a vaulted file takes two steps. gate() checks the PIN and hands out a
short-lived, single-use Capability. redeem() (or open_capability()) consumes
it before decryption. A malformed, missing, foreign or expired membership is
reported as "not found" after a dummy hash check, so response timing does not
tell a caller which ids exist.
"""

import re
import secrets
import threading
import uuid
from datetime import datetime, timedelta
from typing import Callable, Iterator, Optional

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from ..utils.logging import get_logger
from .activity import ActivityLog
from .config import VaultConfig, get_vault_config
from .exceptions import (
    AlreadyInVaultError,
    CapabilityError,
    CorruptObjectError,
    InvalidPinFormatError,
    InvalidSecretError,
    MembershipExpiredError,
    MembershipNotFoundError,
    NotOwnerError,
    ValidationError,
)
from .file_store import FileStore
from .models import (
    ActivityAction,
    Capability,
    MembershipState,
    Principal,
    QuotaStatus,
    StoredFile,
    VaultMembership,
    utcnow,
)
from .quota import QuotaLedger
from .records import RecordStore

logger = get_logger(__name__)

MEMBERSHIPS_COLLECTION = "vault"
FILE_INDEX_COLLECTION = "vault_by_file"
TOMBSTONES_COLLECTION = "vault_closed"


class VaultAccessController:
    """
    Promotes files into the vault and guards access with a 6-digit PIN.

    Example:
        controller = VaultAccessController(store, files, ledger)
        membership = controller.promote(file.id, owner, "482913")
        capability = controller.gate(membership.id, owner, "482913")
        for chunk in controller.open_capability(capability.token, owner):
            ...
    """

    def __init__(
        self,
        store: RecordStore,
        files: FileStore,
        ledger: QuotaLedger,
        activity: Optional[ActivityLog] = None,
        config: Optional[VaultConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.files = files
        self.ledger = ledger
        self.activity = activity or files.activity
        self.config = config or get_vault_config()
        self.clock = clock

        self._pin_pattern = re.compile(rf"^[0-9]{{{self.config.pin_length}}}$")
        self._hasher = PasswordHasher(
            time_cost=self.config.argon2_time_cost,
            memory_cost=self.config.argon2_memory_cost,
            parallelism=self.config.argon2_parallelism,
        )
        self._dummy_hash: Optional[str] = None

        self._capabilities: dict[str, Capability] = {}
        self._capability_lock = threading.Lock()

        self._membership_locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # PIN handling

    def _check_pin_format(self, raw_pin: str) -> None:
        if not isinstance(raw_pin, str) or not self._pin_pattern.fullmatch(raw_pin):
            raise InvalidPinFormatError()

    def hash_secret(self, raw_pin: str) -> str:
        """
        Hash a PIN with argon2id.

        Raises:
            InvalidPinFormatError: If the PIN is not exactly six ASCII digits
        """
        self._check_pin_format(raw_pin)
        return self._hasher.hash(raw_pin)

    def _verify_pin(self, pin_hash: str, raw_pin: str) -> bool:
        try:
            return self._hasher.verify(pin_hash, raw_pin)
        except VerifyMismatchError:
            return False
        except InvalidHashError as e:
            raise CorruptObjectError("Stored PIN hash is malformed") from e
        except VerificationError:
            return False

    def _burn_verification(self, raw_pin: str) -> None:
        """Spend the same work as a real verification, discarding the result."""
        if self._dummy_hash is None:
            self._dummy_hash = self._hasher.hash(secrets.token_hex(8))
        self._verify_pin(self._dummy_hash, raw_pin)

    # Lookups

    def get_membership(self, membership_id: str) -> Optional[VaultMembership]:
        """Load a membership, or None if it does not exist."""
        try:
            data = self.store.get(MEMBERSHIPS_COLLECTION, membership_id)
        except ValueError:
            return None
        return VaultMembership.from_dict(data) if data else None

    def membership_for_file(self, file_id: str) -> Optional[VaultMembership]:
        """The active membership of a file, if any."""
        index = self.store.get(FILE_INDEX_COLLECTION, file_id)
        if not index:
            return None
        return self.get_membership(index["membership_id"])

    def state(self, membership_id: str) -> MembershipState:
        """Lifecycle state of a membership id."""
        if self.get_membership(membership_id) is not None:
            return MembershipState.ACTIVE
        try:
            closed = self.store.get(TOMBSTONES_COLLECTION, membership_id)
        except ValueError:
            return MembershipState.NONE
        if closed:
            return MembershipState(closed["state"])
        return MembershipState.NONE

    def list_memberships(self, owner_id: Optional[str] = None) -> list[VaultMembership]:
        """List active memberships, optionally only those of one owner."""
        memberships = [
            VaultMembership.from_dict(data)
            for data in self.store.load_all(MEMBERSHIPS_COLLECTION)
        ]
        if owner_id is not None:
            memberships = [m for m in memberships if m.owner_id == owner_id]
        return sorted(memberships, key=lambda m: m.created_at)

    def due_for_destruction(self, now: Optional[datetime] = None) -> list[VaultMembership]:
        """Memberships whose self-destruct deadline has passed."""
        now = now or self.clock()
        return [m for m in self.list_memberships() if m.is_lapsed(now)]

    def quota_status(self, principal: Principal) -> QuotaStatus:
        """Effective vault quota and current usage of a principal."""
        return self.ledger.status(principal)

    # Transitions

    def promote(
        self,
        file_id: str,
        owner: Principal,
        raw_pin: str,
        self_destruct: bool = False,
        destruct_after: Optional[datetime] = None,
    ) -> VaultMembership:
        """
        Move a file into the vault behind a PIN.

        Args:
            file_id: File to promote
            owner: Caller; must own the file
            raw_pin: Six ASCII digits
            self_destruct: Destroy the file once destruct_after has passed
            destruct_after: Future deadline, required with self_destruct

        Returns:
            The new ACTIVE membership (never contains the PIN)

        Raises:
            InvalidPinFormatError: If the PIN is malformed
            ValidationError: If the self-destruct options are inconsistent
            FileNotFoundInStoreError: If the file is missing, deleted or foreign
            AlreadyInVaultError: If the file already has a membership
            VaultAccessRevokedError: If vault access is revoked
            QuotaExceededError: If the file does not fit the remaining quota
        """
        self._check_pin_format(raw_pin)

        now = self.clock()
        if self_destruct:
            if destruct_after is None:
                raise ValidationError("self_destruct requires destruct_after")
            if destruct_after.tzinfo is None:
                raise ValidationError("destruct_after must be timezone-aware")
            if destruct_after <= now:
                raise ValidationError("destruct_after must be in the future")
        elif destruct_after is not None:
            raise ValidationError("destruct_after is only valid with self_destruct")

        file = self.files.require(file_id, owner)
        if self.store.get(FILE_INDEX_COLLECTION, file.id) is not None:
            raise AlreadyInVaultError()

        self.ledger.check(owner, file.size)

        membership = VaultMembership(
            id=uuid.uuid4().hex,
            file_id=file.id,
            owner_id=owner.user_id,
            pin_hash=self._hasher.hash(raw_pin),
            self_destruct=self_destruct,
            destruct_after=destruct_after,
            created_at=now,
        )

        claimed = self.store.create(FILE_INDEX_COLLECTION, file.id, {
            "membership_id": membership.id,
            "owner_id": owner.user_id,
            "size": file.size,
        })
        if not claimed:
            raise AlreadyInVaultError()

        status = self.ledger.reserve(owner, file.size)
        try:
            self.store.put(MEMBERSHIPS_COLLECTION, membership.id, membership.to_dict())
        except BaseException:
            self.ledger.release(owner.user_id, file.size)
            self.store.delete(FILE_INDEX_COLLECTION, file.id)
            raise

        if not status.unlimited and status.usage > status.quota:
            logger.warning(
                f"Vault quota overshoot for user {owner.user_id}: "
                f"usage={status.usage} quota={status.quota}"
            )
            self.activity.emit(
                ActivityAction.VAULT_QUOTA_OVERSHOOT,
                owner.user_id,
                file.id,
                f"usage={status.usage} quota={status.quota}",
            )

        logger.info(f"File {file.id} added to vault as {membership.id}")
        self.activity.emit(ActivityAction.VAULT_ADD, owner.user_id, file.id)
        return membership

    def _membership_lock(self, membership_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._membership_locks.setdefault(membership_id, threading.Lock())

    def gate(self, membership_id: str, caller: Principal, candidate_pin: str) -> Capability:
        """
        Check a PIN and issue a single-use capability.

        A wrong PIN changes nothing. A correct PIN increments access_count
        and stamps last_accessed_at.

        Raises:
            InvalidPinFormatError: If the candidate is malformed (no hashing done)
            MembershipNotFoundError: If missing, foreign, or the file is gone
            MembershipExpiredError: If past its self-destruct deadline
            InvalidSecretError: If the PIN does not match
        """
        self._check_pin_format(candidate_pin)

        now = self.clock()
        membership = self.get_membership(membership_id)
        if membership is None or membership.owner_id != caller.user_id:
            self._burn_verification(candidate_pin)
            raise MembershipNotFoundError()

        file = self.files.get(membership.file_id)
        if file is None or file.is_deleted:
            self._burn_verification(candidate_pin)
            raise MembershipNotFoundError()

        if membership.is_lapsed(now):
            self._burn_verification(candidate_pin)
            raise MembershipExpiredError()

        if not self._verify_pin(membership.pin_hash, candidate_pin):
            logger.info(f"Invalid PIN for vault entry {membership.id}")
            raise InvalidSecretError()

        def touch(data: dict) -> dict:
            data["access_count"] = int(data.get("access_count", 0)) + 1
            data["last_accessed_at"] = now.isoformat()
            return data

        with self._membership_lock(membership.id):
            updated = self.store.update(MEMBERSHIPS_COLLECTION, membership.id, touch)
        if updated is None:
            raise MembershipNotFoundError()

        capability = Capability(
            token=secrets.token_urlsafe(32),
            membership_id=membership.id,
            file_id=membership.file_id,
            owner_id=caller.user_id,
            expires_at=now + timedelta(seconds=self.config.capability_ttl_seconds),
        )
        with self._capability_lock:
            self._drop_expired_capabilities(now)
            self._capabilities[capability.token] = capability

        self.activity.emit(ActivityAction.VAULT_ACCESS, caller.user_id, membership.file_id)
        return capability

    def _drop_expired_capabilities(self, now: datetime) -> int:
        # Caller holds _capability_lock
        expired = [t for t, c in self._capabilities.items() if c.expires_at <= now]
        for token in expired:
            del self._capabilities[token]
        return len(expired)

    def prune_capabilities(self, now: Optional[datetime] = None) -> int:
        """
        Forget capabilities that expired without being redeemed.

        Returns:
            Number of capabilities dropped
        """
        now = now or self.clock()
        with self._capability_lock:
            return self._drop_expired_capabilities(now)

    def live_capabilities(self) -> int:
        """Number of issued capabilities not yet redeemed or pruned."""
        with self._capability_lock:
            return len(self._capabilities)

    def redeem(self, token: str, caller: Principal) -> StoredFile:
        """
        Consume a capability.

        Returns:
            The file the capability grants access to

        Raises:
            CapabilityError: If unknown, already used, expired or not the caller's
            MembershipNotFoundError: If the membership went away since gate()
        """
        now = self.clock()
        with self._capability_lock:
            capability = self._capabilities.get(token)
            if capability is None or capability.owner_id != caller.user_id:
                raise CapabilityError()
            del self._capabilities[token]

        if capability.expires_at <= now:
            raise CapabilityError()

        membership = self.get_membership(capability.membership_id)
        file = self.files.get(capability.file_id)
        if membership is None or file is None or file.is_deleted:
            raise MembershipNotFoundError()
        return file

    def open_capability(
        self,
        token: str,
        caller: Principal,
        cancel: Optional[threading.Event] = None,
    ) -> Iterator[bytes]:
        """Redeem a capability and stream the decrypted file."""
        file = self.redeem(token, caller)
        return self.files.iter_plaintext(file, cancel)

    def _close(self, membership: VaultMembership, state: MembershipState) -> bool:
        """
        Delete a membership, its file index and its quota reservation.

        Returns:
            True if this call closed it, False if it was already gone
        """
        with self.store.transaction():
            if not self.store.delete(MEMBERSHIPS_COLLECTION, membership.id):
                return False
            index = self.store.get(FILE_INDEX_COLLECTION, membership.file_id)
            if index and index.get("membership_id") == membership.id:
                self.store.delete(FILE_INDEX_COLLECTION, membership.file_id)
                self.ledger.release(membership.owner_id, int(index.get("size", 0)))
            self.store.put(TOMBSTONES_COLLECTION, membership.id, {
                "state": state.value,
                "file_id": membership.file_id,
                "closed_at": self.clock().isoformat(),
            })

        with self._locks_guard:
            self._membership_locks.pop(membership.id, None)
        return True

    def remove(self, membership_id: str, caller: Principal) -> bool:
        """
        Take a file out of the vault. The file itself is untouched.

        Removing an already-removed membership is a no-op.

        Returns:
            True if removed by this call

        Raises:
            NotOwnerError: If the membership belongs to someone else
        """
        membership = self.get_membership(membership_id)
        if membership is None:
            return False
        if membership.owner_id != caller.user_id:
            raise NotOwnerError(f"User {caller.user_id} does not own vault entry {membership_id}")

        with self._membership_lock(membership.id):
            if not self._close(membership, MembershipState.REMOVED):
                return False

        logger.info(f"Vault entry {membership.id} removed")
        self.activity.emit(ActivityAction.VAULT_REMOVE, caller.user_id, membership.file_id)
        return True

    def drop_membership(self, membership: VaultMembership) -> bool:
        """Close a membership whose file is gone, releasing its quota."""
        return self._close(membership, MembershipState.EXPIRED)

    def expire(self, membership: VaultMembership) -> bool:
        """
        Self-destruct a membership: destroy the file and its bytes, then close it.

        If the bytes cannot be removed the membership stays ACTIVE (and lapsed)
        so the next sweep retries.

        Returns:
            True if this call expired it
        """
        with self._membership_lock(membership.id):
            if self.get_membership(membership.id) is None:
                return False

            file = self.files.get(membership.file_id)
            if file is not None and not file.is_deleted:
                self.files.mark_deleted(file, remove_object=True)

            if not self._close(membership, MembershipState.EXPIRED):
                return False

        logger.info(f"Vault entry {membership.id} self-destructed")
        self.activity.emit(ActivityAction.VAULT_EXPIRED, membership.owner_id, membership.file_id)
        return True
