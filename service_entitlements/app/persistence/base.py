"""
Identity store interface shared by the in-memory and PostgreSQL backends.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from shared.metrics import MetricsCollector
from ..models import AuthProvider, EntitlementsUpdate, User
from ..rules.policy import EntitlementPolicy


Clock = Callable[[], datetime]


def utc_clock() -> datetime:
    return datetime.now(timezone.utc)


class IdentityStore(ABC):
    """Authoritative record of users and their entitlement state.

    Every mutating operation is atomic per user: concurrent callers for the
    same user serialize, and a failed operation leaves no partial state.
    Returned users are copies; mutating them never affects the store.
    """

    def __init__(self, policy: Optional[EntitlementPolicy] = None, clock: Optional[Clock] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.policy = policy or EntitlementPolicy()
        self._clock = clock or utc_clock
        self.metrics = metrics

    async def start(self):
        """Acquire backend resources."""

    async def stop(self):
        """Release backend resources."""

    @abstractmethod
    async def get_or_create(self, provider: AuthProvider, username: str, email: str = "") -> User:
        """Return the user with username, creating it with default entitlements if absent."""

    @abstractmethod
    async def get_user(self, user_id: str) -> User:
        """Return the user by surrogate id, applying any elapsed window reset."""

    @abstractmethod
    async def get_user_by_username(self, username: str) -> User:
        """Return the user by username, applying any elapsed window reset."""

    @abstractmethod
    async def check_and_increment(self, user_id: str) -> User:
        """Consume one message from the user's allowance.

        Raises UserNotFoundError or DailyLimitReachedError; a window reset
        is persisted even when the limit check then fails.
        """

    @abstractmethod
    async def set_entitlements(self, username: str, update: EntitlementsUpdate) -> User:
        """Overwrite the supplied entitlement fields for username."""

    @abstractmethod
    async def health_check(self) -> Dict[str, str]:
        """Report backend health."""

    def _now(self) -> datetime:
        return self._clock()

    def _record_quota(self, decision: str):
        if self.metrics:
            self.metrics.increment_counter("quota_checks_total", decision=decision)
