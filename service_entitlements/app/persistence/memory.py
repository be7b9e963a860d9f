"""
In-memory identity store for local runs and tests.
"""

import threading
import uuid
from typing import Dict, Optional

from shared.errors import DailyLimitReachedError, UserNotFoundError
from shared.logging import get_logger
from ..models import AuthProvider, EntitlementsUpdate, User
from .base import IdentityStore


class InMemoryIdentityStore(IdentityStore):
    """Identity store kept in process memory.

    A single lock guards every read-modify-write. Nothing awaits while the
    lock is held, so it is safe from both the event loop and worker threads.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.logger = get_logger("entitlements.persistence.memory")
        self._lock = threading.Lock()
        self._users: Dict[str, User] = {}
        self._ids_by_username: Dict[str, str] = {}

    async def get_or_create(self, provider: AuthProvider, username: str, email: str = "") -> User:
        with self._lock:
            user_id = self._ids_by_username.get(username)
            if user_id is not None:
                return self._users[user_id].model_copy(deep=True)

            now = self._now()
            user = User(
                id=str(uuid.uuid4()),
                auth_provider=provider,
                username=username,
                email=email,
                created_at=now,
                last_active=now,
                entitlements=self.policy.default_entitlements(now),
            )
            self._users[user.id] = user
            self._ids_by_username[username] = user.id

        self.logger.info("Created user", user_id=user.id, provider=AuthProvider(provider).value)
        return user.model_copy(deep=True)

    async def get_user(self, user_id: str) -> User:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise UserNotFoundError(user_id)
            return self._refresh_window(user).model_copy(deep=True)

    async def get_user_by_username(self, username: str) -> User:
        with self._lock:
            user_id = self._ids_by_username.get(username)
            if user_id is None:
                raise UserNotFoundError(username, field="username")
            return self._refresh_window(self._users[user_id]).model_copy(deep=True)

    async def check_and_increment(self, user_id: str) -> User:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise UserNotFoundError(user_id)

            now = self._now()
            limit: Optional[int] = None
            entitlements, reset = self.policy.apply_reset(user.entitlements, now)
            if entitlements.messages_used >= entitlements.daily_message_limit:
                if reset:
                    self._users[user_id] = user.model_copy(update={"entitlements": entitlements})
                limit = entitlements.daily_message_limit
            else:
                entitlements = entitlements.model_copy(
                    update={"messages_used": entitlements.messages_used + 1}
                )
                user = user.model_copy(update={"entitlements": entitlements, "last_active": now})
                self._users[user_id] = user

        if limit is not None:
            self._record_quota("denied")
            self.logger.info("Daily message limit reached", user_id=user_id, limit=limit)
            raise DailyLimitReachedError(user_id, limit)

        self._record_quota("allowed")
        return user.model_copy(deep=True)

    async def set_entitlements(self, username: str, update: EntitlementsUpdate) -> User:
        with self._lock:
            user_id = self._ids_by_username.get(username)
            if user_id is None:
                raise UserNotFoundError(username, field="username")
            user = self._users[user_id]
            user = user.model_copy(update={"entitlements": update.apply_to(user.entitlements)})
            self._users[user_id] = user

        self.logger.info("Updated entitlements", user_id=user_id,
                         daily_message_limit=user.entitlements.daily_message_limit)
        return user.model_copy(deep=True)

    async def health_check(self) -> Dict[str, str]:
        with self._lock:
            count = len(self._users)
        return {"status": "healthy", "backend": "memory", "users": str(count)}

    def _refresh_window(self, user: User) -> User:
        # Caller holds the lock.
        entitlements, reset = self.policy.apply_reset(user.entitlements, self._now())
        if reset:
            user = user.model_copy(update={"entitlements": entitlements})
            self._users[user.id] = user
        return user
