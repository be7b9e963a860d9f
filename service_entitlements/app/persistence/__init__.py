"""
Identity store backends.
"""

from typing import Optional

from shared.config import BaseConfig
from shared.metrics import MetricsCollector
from ..rules.policy import EntitlementPolicy
from .base import Clock, IdentityStore
from .memory import InMemoryIdentityStore
from .postgres import PostgresIdentityStore


def build_identity_store(config: BaseConfig, policy: Optional[EntitlementPolicy] = None,
                         clock: Optional[Clock] = None,
                         metrics: Optional[MetricsCollector] = None) -> IdentityStore:
    """Create the store selected by config.store_backend."""
    policy = policy or EntitlementPolicy.from_config(config)
    backend = config.store_backend.lower()
    if backend == "memory":
        return InMemoryIdentityStore(policy, clock, metrics)
    if backend == "postgres":
        return PostgresIdentityStore(
            config.postgres_dsn,
            policy,
            clock,
            metrics,
            min_size=config.postgres_pool_min_size,
            max_size=config.postgres_pool_max_size,
            create_schema=config.postgres_create_schema,
        )
    raise ValueError(f"Unknown store backend: {config.store_backend}")


__all__ = [
    "IdentityStore",
    "InMemoryIdentityStore",
    "PostgresIdentityStore",
    "build_identity_store",
]
