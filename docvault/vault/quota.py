"""Vault quota accounting.

The effective quota of a principal is the larger of their personal quota and
the quota configured for their role, plus any department bonus. A quota of -1
means unlimited, and no bonus is added to it.

Vault usage is tracked per user in the record store. Admission is
check-then-commit: the check is advisory and reserve() increments atomically,
so two promotions racing past the check can overshoot. reserve() reports the
post-commit status so the caller can surface the overshoot.

Team storage is a separate budget. Every live file shared with a team counts
against it, vaulted or not. reserve_team() checks and increments under one
lock, so a team never overshoots.
"""

from typing import Optional, Protocol

from ..utils.logging import get_logger
from .config import VaultConfig, get_vault_config
from .exceptions import QuotaExceededError, TeamQuotaExceededError, VaultAccessRevokedError
from .models import Principal, QuotaStatus
from .records import RecordStore

logger = get_logger(__name__)

UNLIMITED = -1
USAGE_COLLECTION = "quota_usage"
TEAM_USAGE_COLLECTION = "team_usage"


class QuotaLedger(Protocol):
    """External per-user and per-team byte budget."""

    def status(self, principal: Principal) -> QuotaStatus:
        ...

    def check(self, principal: Principal, size: int) -> QuotaStatus:
        ...

    def reserve(self, principal: Principal, size: int) -> QuotaStatus:
        ...

    def release(self, user_id: str, size: int) -> int:
        ...

    def reserve_team(self, team_id: str, size: int) -> QuotaStatus:
        ...

    def release_team(self, team_id: str, size: int) -> int:
        ...


class QuotaPolicy:
    """Computes effective quotas from role and department settings."""

    def __init__(self, config: Optional[VaultConfig] = None):
        self.config = config or get_vault_config()

    def effective_quota(self, principal: Principal) -> int:
        """
        Effective vault quota in bytes.

        Args:
            principal: Caller with role and department facts

        Returns:
            Quota in bytes, or -1 for unlimited
        """
        quota = principal.vault_quota
        if quota is None:
            quota = self.config.default_vault_quota

        role_quota = self.config.role_quotas.get(principal.role)
        if role_quota is not None and (role_quota == UNLIMITED or role_quota > quota):
            quota = role_quota

        if quota != UNLIMITED and principal.department_bonus > 0:
            quota += principal.department_bonus

        return quota

    def team_quota(self, team_id: str) -> int:
        """Storage quota of a team in bytes, or -1 for unlimited."""
        return self.config.team_quotas.get(team_id, self.config.default_team_quota)

    @staticmethod
    def ensure_access(principal: Principal) -> None:
        """
        Raise if vault access is revoked for the user or their department.
        """
        if not principal.vault_access:
            raise VaultAccessRevokedError(
                f"Vault access has been revoked for user {principal.user_id}"
            )
        if not principal.department_vault_access:
            raise VaultAccessRevokedError(
                f"Vault access has been revoked for department {principal.department_id}"
            )


class RecordQuotaLedger:
    """QuotaLedger backed by the record store."""

    def __init__(self, store: RecordStore, policy: Optional[QuotaPolicy] = None):
        self.store = store
        self.policy = policy or QuotaPolicy()

    def usage(self, user_id: str) -> int:
        """Bytes currently held in the vault by a user."""
        record = self.store.get(USAGE_COLLECTION, user_id)
        return int(record["bytes"]) if record else 0

    def status(self, principal: Principal) -> QuotaStatus:
        """Current quota and usage for a principal."""
        return QuotaStatus(
            quota=self.policy.effective_quota(principal),
            usage=self.usage(principal.user_id),
        )

    def check(self, principal: Principal, size: int) -> QuotaStatus:
        """
        Advisory admission check.

        Raises:
            VaultAccessRevokedError: If vault access is revoked
            QuotaExceededError: If size does not fit in the remaining budget
        """
        self.policy.ensure_access(principal)
        status = self.status(principal)
        if not status.admits(size):
            logger.info(
                f"Vault quota exceeded for user {principal.user_id}: "
                f"usage={status.usage} size={size} quota={status.quota}"
            )
            raise QuotaExceededError(status.quota, status.usage, size)
        return status

    def reserve(self, principal: Principal, size: int) -> QuotaStatus:
        """
        Atomically add size to the principal's usage.

        Returns:
            Status after the increment (usage may exceed quota on a race)
        """
        with self.store.transaction():
            new_usage = self.usage(principal.user_id) + size
            self.store.put(USAGE_COLLECTION, principal.user_id, {
                "user_id": principal.user_id,
                "bytes": new_usage,
            })
        return QuotaStatus(quota=self.policy.effective_quota(principal), usage=new_usage)

    def release(self, user_id: str, size: int) -> int:
        """
        Atomically subtract size from a user's usage (never below zero).

        Returns:
            New usage
        """
        with self.store.transaction():
            new_usage = max(0, self.usage(user_id) - size)
            self.store.put(USAGE_COLLECTION, user_id, {
                "user_id": user_id,
                "bytes": new_usage,
            })
        return new_usage

    def team_usage(self, team_id: str) -> int:
        """Bytes currently stored for a team."""
        record = self.store.get(TEAM_USAGE_COLLECTION, team_id)
        return int(record["bytes"]) if record else 0

    def team_status(self, team_id: str) -> QuotaStatus:
        """Current storage quota and usage of a team."""
        return QuotaStatus(quota=self.policy.team_quota(team_id), usage=self.team_usage(team_id))

    def reserve_team(self, team_id: str, size: int) -> QuotaStatus:
        """
        Admit size bytes into a team's budget.

        Returns:
            Status after the increment

        Raises:
            TeamQuotaExceededError: If size does not fit; usage is unchanged
        """
        with self.store.transaction():
            status = self.team_status(team_id)
            if not status.admits(size):
                logger.info(
                    f"Team quota exceeded for team {team_id}: "
                    f"usage={status.usage} size={size} quota={status.quota}"
                )
                raise TeamQuotaExceededError(status.quota, status.usage, size, team_id=team_id)

            new_usage = status.usage + size
            self.store.put(TEAM_USAGE_COLLECTION, team_id, {
                "team_id": team_id,
                "bytes": new_usage,
            })
        return QuotaStatus(quota=status.quota, usage=new_usage)

    def release_team(self, team_id: str, size: int) -> int:
        """Subtract size from a team's usage (never below zero)."""
        with self.store.transaction():
            new_usage = max(0, self.team_usage(team_id) - size)
            self.store.put(TEAM_USAGE_COLLECTION, team_id, {
                "team_id": team_id,
                "bytes": new_usage,
            })
        return new_usage
