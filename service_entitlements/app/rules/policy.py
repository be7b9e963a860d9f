"""
Entitlement policy: default limits, window reset and tier transitions.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Tuple

from shared.config import BaseConfig
from ..models import (
    Entitlements,
    EntitlementsUpdate,
    Subscription,
    SubscriptionType,
)


FREE_USER_MESSAGE_LIMIT = 5
PREMIUM_USER_MESSAGE_LIMIT = 10000
MESSAGES_RESET_WINDOW = timedelta(minutes=1)


@dataclass(frozen=True)
class EntitlementPolicy:
    """Rules applied to every quota-consuming and administrative operation.

    The reset window stands in for "daily"; it is measured from the last
    reset rather than aligned to calendar days.
    """

    free_daily_message_limit: int = FREE_USER_MESSAGE_LIMIT
    premium_daily_message_limit: int = PREMIUM_USER_MESSAGE_LIMIT
    reset_window: timedelta = MESSAGES_RESET_WINDOW

    @classmethod
    def from_config(cls, config: BaseConfig) -> "EntitlementPolicy":
        return cls(
            free_daily_message_limit=config.free_daily_message_limit,
            premium_daily_message_limit=config.premium_daily_message_limit,
            reset_window=timedelta(seconds=config.message_reset_window_seconds),
        )

    def default_entitlements(self, now: datetime) -> Entitlements:
        """Entitlements of a freshly created user."""
        return Entitlements(
            daily_message_limit=self.free_daily_message_limit,
            messages_used=0,
            last_reset=now,
            subscription=Subscription(),
        )

    def window_elapsed(self, last_reset: datetime, now: datetime) -> bool:
        return now - last_reset > self.reset_window

    def apply_reset(self, entitlements: Entitlements, now: datetime) -> Tuple[Entitlements, bool]:
        """Zero the usage counter if the window has rolled over.

        Returns the (possibly new) entitlements and whether a reset happened.
        """
        if not self.window_elapsed(entitlements.last_reset, now):
            return entitlements, False
        return entitlements.model_copy(update={"messages_used": 0, "last_reset": now}), True

    def apply_subscription(self, subscription: Subscription) -> EntitlementsUpdate:
        """Build the update for moving a user onto subscription.

        Premium raises the limit to the premium ceiling and clears usage;
        free restores the free limit and keeps usage as it is.
        """
        if subscription.type == SubscriptionType.PREMIUM:
            return EntitlementsUpdate(
                daily_message_limit=self.premium_daily_message_limit,
                messages_used=0,
                subscription=subscription,
            )
        return EntitlementsUpdate(
            daily_message_limit=self.free_daily_message_limit,
            subscription=subscription,
        )
