"""Data models for stored files and vault memberships.

Records are plain dataclasses serialized with to_dict()/from_dict() so the
record store can persist them as YAML.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


def _dump_dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if isinstance(value, datetime) else value


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (or datetime) into an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


class MembershipState(Enum):
    """Lifecycle states of a vault membership."""

    NONE = "none"  # no membership row
    ACTIVE = "active"
    REMOVED = "removed"
    EXPIRED = "expired"


class ActivityAction(Enum):
    """Kinds of activity events emitted to the activity sink."""

    UPLOAD = "upload"
    DOWNLOAD = "download"
    DELETE = "delete"
    FILE_EXPIRED = "file_expired"
    VAULT_ADD = "vault_add"
    VAULT_ACCESS = "vault_access"
    VAULT_REMOVE = "vault_remove"
    VAULT_EXPIRED = "vault_expired"
    VAULT_QUOTA_OVERSHOOT = "vault_quota_overshoot"


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, as supplied by the surrounding service.

    Attributes:
        user_id: Stable user identifier
        role: Role name used to look up the role quota
        department_id: Optional department
        department_bonus: Extra vault bytes granted by the department
        vault_quota: Personal quota override (None = configured default)
        vault_access: False when vault access was revoked for the user
        department_vault_access: False when revoked for the whole department
    """

    user_id: str
    role: str = "user"
    department_id: Optional[str] = None
    department_bonus: int = 0
    vault_quota: Optional[int] = None
    vault_access: bool = True
    department_vault_access: bool = True


@dataclass
class StoredFile:
    """One encrypted object in blob storage plus its metadata."""

    id: str
    owner_id: str
    original_name: str
    stored_name: str
    size: int
    content_type: str
    nonce: str  # hex
    digest: str  # sha256 hex of the plaintext
    uploaded_at: datetime = field(default_factory=utcnow)
    team_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    is_deleted: bool = False

    def is_expired(self, now: datetime) -> bool:
        """True once the declared lifetime has passed."""
        return self.expires_at is not None and self.expires_at <= now

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for YAML serialization."""
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "team_id": self.team_id,
            "original_name": self.original_name,
            "stored_name": self.stored_name,
            "size": self.size,
            "content_type": self.content_type,
            "nonce": self.nonce,
            "digest": self.digest,
            "uploaded_at": _dump_dt(self.uploaded_at),
            "expires_at": _dump_dt(self.expires_at),
            "is_deleted": self.is_deleted,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StoredFile":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            owner_id=str(data["owner_id"]),
            team_id=data.get("team_id"),
            original_name=data["original_name"],
            stored_name=data["stored_name"],
            size=int(data["size"]),
            content_type=data.get("content_type", "application/octet-stream"),
            nonce=data["nonce"],
            digest=data["digest"],
            uploaded_at=parse_datetime(data.get("uploaded_at")) or utcnow(),
            expires_at=parse_datetime(data.get("expires_at")),
            is_deleted=bool(data.get("is_deleted", False)),
        )


@dataclass
class VaultMembership:
    """Gate record binding a StoredFile to the PIN-protected vault."""

    id: str
    file_id: str
    owner_id: str
    pin_hash: str
    access_count: int = 0
    last_accessed_at: Optional[datetime] = None
    self_destruct: bool = False
    destruct_after: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)

    def is_lapsed(self, now: datetime) -> bool:
        """True when the self-destruct deadline has passed."""
        return (
            self.self_destruct
            and self.destruct_after is not None
            and self.destruct_after <= now
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for YAML serialization."""
        return {
            "id": self.id,
            "file_id": self.file_id,
            "owner_id": self.owner_id,
            "pin_hash": self.pin_hash,
            "access_count": self.access_count,
            "last_accessed_at": _dump_dt(self.last_accessed_at),
            "self_destruct": self.self_destruct,
            "destruct_after": _dump_dt(self.destruct_after),
            "created_at": _dump_dt(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VaultMembership":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            file_id=data["file_id"],
            owner_id=str(data["owner_id"]),
            pin_hash=data["pin_hash"],
            access_count=int(data.get("access_count", 0)),
            last_accessed_at=parse_datetime(data.get("last_accessed_at")),
            self_destruct=bool(data.get("self_destruct", False)),
            destruct_after=parse_datetime(data.get("destruct_after")),
            created_at=parse_datetime(data.get("created_at")) or utcnow(),
        )

    def __repr__(self) -> str:
        return f"VaultMembership(id={self.id!r}, file_id={self.file_id!r})"


@dataclass(frozen=True)
class Capability:
    """Single-use permission to stream-decrypt one vaulted file."""

    token: str
    membership_id: str
    file_id: str
    owner_id: str
    expires_at: datetime

    def __repr__(self) -> str:
        return f"Capability(file_id={self.file_id!r}, expires_at={self.expires_at.isoformat()})"


@dataclass(frozen=True)
class QuotaStatus:
    """Effective vault quota for a principal. A quota of -1 is unlimited."""

    quota: int
    usage: int

    @property
    def unlimited(self) -> bool:
        return self.quota == -1

    @property
    def remaining(self) -> int:
        return -1 if self.unlimited else self.quota - self.usage

    def admits(self, size: int) -> bool:
        return self.unlimited or self.usage + size <= self.quota


@dataclass
class ActivityEvent:
    """One entry for the external activity log."""

    action: ActivityAction
    user_id: str
    file_id: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)
    details: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "user_id": self.user_id,
            "file_id": self.file_id,
            "timestamp": _dump_dt(self.timestamp),
            "details": self.details,
        }
