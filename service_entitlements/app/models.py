"""
User and entitlement data models for the Entitlements service.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class AuthProvider(str, Enum):
    """How a user authenticated."""
    GOOGLE = "google"
    APPLE = "apple"
    GUEST = "guest"


class SubscriptionType(str, Enum):
    """Subscription tiers."""
    FREE = "free"
    PREMIUM = "premium"


class SubscriptionPlatform(str, Enum):
    """Store the subscription was purchased through."""
    NONE = "none"
    APPLE = "apple"
    GOOGLE = "google"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Subscription(BaseModel):
    """Subscription fields as reported by the purchase platform."""
    type: SubscriptionType = Field(SubscriptionType.FREE, description="Subscription tier")
    platform: SubscriptionPlatform = Field(SubscriptionPlatform.NONE, description="Purchase platform")
    original_transaction_id: Optional[str] = Field(None, description="Platform transaction id")
    expires_at: Optional[datetime] = Field(None, description="Subscription expiry")
    last_verified: Optional[datetime] = Field(None, description="Last receipt verification")


class Entitlements(BaseModel):
    """Usage allowance and consumption for the current window."""
    daily_message_limit: int = Field(..., ge=0, description="Messages allowed per window")
    messages_used: int = Field(0, ge=0, description="Messages consumed in the current window")
    last_reset: datetime = Field(default_factory=utcnow, description="Start of the current window")
    subscription: Subscription = Field(default_factory=Subscription)


class EntitlementsUpdate(BaseModel):
    """Partial entitlement overwrite; fields left unset keep their stored value."""
    daily_message_limit: Optional[int] = Field(None, ge=0)
    messages_used: Optional[int] = Field(None, ge=0)
    last_reset: Optional[datetime] = None
    subscription: Optional[Subscription] = None

    def apply_to(self, current: Entitlements) -> Entitlements:
        """Return a copy of current with the supplied fields overwritten."""
        changes = {
            name: getattr(self, name)
            for name in type(self).model_fields
            if getattr(self, name) is not None
        }
        return current.model_copy(update=changes, deep=True)


class User(BaseModel):
    """A user record owned by the identity store."""
    id: str = Field(..., description="Internal surrogate id")
    auth_provider: AuthProvider
    username: str = Field(..., description="Device id for guests, provider handle otherwise")
    email: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    last_active: datetime = Field(default_factory=utcnow)
    entitlements: Entitlements
