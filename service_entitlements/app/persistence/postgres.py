"""
PostgreSQL identity store.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

import asyncpg

from shared.errors import DailyLimitReachedError, StoreError, UserNotFoundError
from shared.logging import get_logger
from ..models import (
    AuthProvider,
    Entitlements,
    EntitlementsUpdate,
    Subscription,
    SubscriptionPlatform,
    SubscriptionType,
    User,
)
from .base import IdentityStore


STORAGE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)

UPDATE_ENTITLEMENTS_SQL = """
    UPDATE users SET
        daily_message_limit = $2,
        messages_used = $3,
        last_reset = $4,
        subscription_type = $5,
        subscription_platform = $6,
        original_transaction_id = $7,
        subscription_expires_at = $8,
        subscription_last_verified = $9,
        last_active = COALESCE($10, last_active)
    WHERE id = $1
    RETURNING *
"""


class PostgresIdentityStore(IdentityStore):
    """Identity store backed by a `users` table.

    Each operation runs in its own transaction. check_and_increment locks
    the user row with SELECT ... FOR UPDATE; get_or_create relies on the
    unique username constraint and refetches on conflict.
    """

    def __init__(self, dsn: str, *args, min_size: int = 2, max_size: int = 10,
                 create_schema: bool = True, **kwargs):
        super().__init__(*args, **kwargs)
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.create_schema = create_schema
        self.logger = get_logger("entitlements.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Open the connection pool and create the schema if asked to."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=30
            )

            if self.create_schema:
                await self._create_tables()

            self.logger.info("PostgreSQL identity store started")

        except STORAGE_ERRORS as e:
            self.logger.error("Failed to start PostgreSQL identity store", error=str(e))
            raise StoreError("start", str(e)) from e

    async def stop(self):
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL identity store stopped")

    async def _create_tables(self):
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id UUID PRIMARY KEY,
                    auth_provider VARCHAR(20) NOT NULL,
                    username VARCHAR(255) NOT NULL UNIQUE,
                    email VARCHAR(255) NOT NULL DEFAULT '',
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL,
                    last_active TIMESTAMP WITH TIME ZONE NOT NULL,
                    daily_message_limit INTEGER NOT NULL,
                    messages_used INTEGER NOT NULL DEFAULT 0,
                    last_reset TIMESTAMP WITH TIME ZONE NOT NULL,
                    subscription_type VARCHAR(20) NOT NULL DEFAULT 'free',
                    subscription_platform VARCHAR(20) NOT NULL DEFAULT 'none',
                    original_transaction_id VARCHAR(255),
                    subscription_expires_at TIMESTAMP WITH TIME ZONE,
                    subscription_last_verified TIMESTAMP WITH TIME ZONE
                );
            """)

    async def get_or_create(self, provider: AuthProvider, username: str, email: str = "") -> User:
        now = self._now()
        entitlements = self.policy.default_entitlements(now)
        try:
            async with self._acquire("get_or_create") as conn:
                async with conn.transaction():
                    row = await conn.fetchrow("""
                        INSERT INTO users (
                            id, auth_provider, username, email, created_at, last_active,
                            daily_message_limit, messages_used, last_reset,
                            subscription_type, subscription_platform
                        ) VALUES ($1, $2, $3, $4, $5, $5, $6, 0, $5, $7, $8)
                        ON CONFLICT (username) DO NOTHING
                        RETURNING *
                    """,
                        uuid.uuid4(),
                        AuthProvider(provider).value,
                        username,
                        email,
                        now,
                        entitlements.daily_message_limit,
                        entitlements.subscription.type.value,
                        entitlements.subscription.platform.value,
                    )
                    created = row is not None
                    if row is None:
                        row = await conn.fetchrow("SELECT * FROM users WHERE username = $1", username)
        except STORAGE_ERRORS as e:
            self.logger.error("Failed to get or create user", username=username, error=str(e))
            raise StoreError("get_or_create", str(e)) from e

        if row is None:
            raise StoreError("get_or_create", "user vanished after insert conflict")

        user = self._row_to_user(row)
        if created:
            self.logger.info("Created user", user_id=user.id, provider=user.auth_provider.value)
        return user

    async def get_user(self, user_id: str) -> User:
        uid = self._parse_id(user_id)
        return await self._fetch_and_refresh("SELECT * FROM users WHERE id = $1 FOR UPDATE",
                                             uid, user_id, "id")

    async def get_user_by_username(self, username: str) -> User:
        return await self._fetch_and_refresh("SELECT * FROM users WHERE username = $1 FOR UPDATE",
                                             username, username, "username")

    async def check_and_increment(self, user_id: str) -> User:
        uid = self._parse_id(user_id)
        limit: Optional[int] = None
        try:
            async with self._acquire("check_and_increment") as conn:
                async with conn.transaction():
                    row = await conn.fetchrow("SELECT * FROM users WHERE id = $1 FOR UPDATE", uid)
                    if row is None:
                        raise UserNotFoundError(user_id)

                    now = self._now()
                    user = self._row_to_user(row)
                    entitlements, reset = self.policy.apply_reset(user.entitlements, now)
                    if entitlements.messages_used >= entitlements.daily_message_limit:
                        # The reset still commits; the limit error is raised after the transaction.
                        if reset:
                            await self._write_entitlements(conn, uid, entitlements)
                        limit = entitlements.daily_message_limit
                    else:
                        entitlements = entitlements.model_copy(
                            update={"messages_used": entitlements.messages_used + 1}
                        )
                        row = await self._write_entitlements(conn, uid, entitlements, last_active=now)
        except STORAGE_ERRORS as e:
            self.logger.error("Failed to check message quota", user_id=user_id, error=str(e))
            raise StoreError("check_and_increment", str(e)) from e

        if limit is not None:
            self._record_quota("denied")
            self.logger.info("Daily message limit reached", user_id=user_id, limit=limit)
            raise DailyLimitReachedError(user_id, limit)

        self._record_quota("allowed")
        return self._row_to_user(row)

    async def set_entitlements(self, username: str, update: EntitlementsUpdate) -> User:
        try:
            async with self._acquire("set_entitlements") as conn:
                async with conn.transaction():
                    row = await conn.fetchrow(
                        "SELECT * FROM users WHERE username = $1 FOR UPDATE", username
                    )
                    if row is None:
                        raise UserNotFoundError(username, field="username")

                    user = self._row_to_user(row)
                    entitlements = update.apply_to(user.entitlements)
                    row = await self._write_entitlements(conn, uuid.UUID(user.id), entitlements)
        except STORAGE_ERRORS as e:
            self.logger.error("Failed to set entitlements", username=username, error=str(e))
            raise StoreError("set_entitlements", str(e)) from e

        user = self._row_to_user(row)
        self.logger.info("Updated entitlements", user_id=user.id,
                         daily_message_limit=user.entitlements.daily_message_limit)
        return user

    async def health_check(self) -> Dict[str, str]:
        """Check database health."""
        if not self.pool:
            return {"status": "unhealthy", "backend": "postgres", "error": "pool not started"}
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return {"status": "healthy", "backend": "postgres"}
        except STORAGE_ERRORS as e:
            return {"status": "unhealthy", "backend": "postgres", "error": str(e)}

    async def _fetch_and_refresh(self, query: str, key: Any, label: str, field: str) -> User:
        try:
            async with self._acquire("get_user") as conn:
                async with conn.transaction():
                    row = await conn.fetchrow(query, key)
                    if row is None:
                        raise UserNotFoundError(label, field=field)

                    user = self._row_to_user(row)
                    entitlements, reset = self.policy.apply_reset(user.entitlements, self._now())
                    if reset:
                        row = await self._write_entitlements(conn, uuid.UUID(user.id), entitlements)
        except STORAGE_ERRORS as e:
            self.logger.error("Failed to load user", field=field, key=label, error=str(e))
            raise StoreError("get_user", str(e)) from e

        return self._row_to_user(row)

    async def _write_entitlements(self, conn, uid: uuid.UUID, entitlements: Entitlements,
                                  last_active: Optional[datetime] = None):
        subscription = entitlements.subscription
        return await conn.fetchrow(
            UPDATE_ENTITLEMENTS_SQL,
            uid,
            entitlements.daily_message_limit,
            entitlements.messages_used,
            entitlements.last_reset,
            subscription.type.value,
            subscription.platform.value,
            subscription.original_transaction_id,
            subscription.expires_at,
            subscription.last_verified,
            last_active,
        )

    def _acquire(self, operation: str):
        if self.pool is None:
            raise StoreError(operation, "pool not started")
        return self.pool.acquire()

    @staticmethod
    def _parse_id(user_id: str) -> uuid.UUID:
        try:
            return uuid.UUID(str(user_id))
        except ValueError:
            raise UserNotFoundError(user_id)

    @staticmethod
    def _row_to_user(row) -> User:
        """Convert database row to User."""
        return User(
            id=str(row["id"]),
            auth_provider=AuthProvider(row["auth_provider"]),
            username=row["username"],
            email=row["email"] or "",
            created_at=row["created_at"],
            last_active=row["last_active"],
            entitlements=Entitlements(
                daily_message_limit=row["daily_message_limit"],
                messages_used=row["messages_used"],
                last_reset=row["last_reset"],
                subscription=Subscription(
                    type=SubscriptionType(row["subscription_type"]),
                    platform=SubscriptionPlatform(row["subscription_platform"]),
                    original_transaction_id=row["original_transaction_id"],
                    expires_at=row["subscription_expires_at"],
                    last_verified=row["subscription_last_verified"],
                ),
            ),
        )
